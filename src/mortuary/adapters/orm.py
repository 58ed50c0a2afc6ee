import logging
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    event,
    text,
)
from sqlalchemy.orm import registry, relationship
from sqlalchemy.types import TypeDecorator

from mortuary.domain import corrections, model, trays, verification

logger = logging.getLogger(__name__)

# SQLAlchemy 2.0 pattern: use registry
mapper_registry = registry()
metadata = mapper_registry.metadata


def _enum(enum_cls):
    return Enum(
        enum_cls,
        native_enum=False,
        length=40,
        values_callable=lambda members: [m.value for m in members],
    )


class FieldMismatchList(TypeDecorator):
    """Stores a list of FieldMismatch as JSON objects."""

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return []
        return [m.to_dict() for m in value]

    def process_result_value(self, value, dialect):
        return [verification.FieldMismatch.from_dict(item) for item in value or []]


cases = Table(
    "cases",
    metadata,
    Column("code", String(32), primary_key=True),
    Column("hc", String(64), nullable=False, index=True),
    Column("document_type", String(32), nullable=False),
    Column("document_number", String(64), nullable=False),
    Column("full_name", String(255), nullable=False),
    Column("service", String(128), nullable=False),
    Column("bed_number", String(32)),
    Column("is_legal_case", Boolean, nullable=False, default=False),
    Column("state", _enum(model.CaseState), nullable=False),
    Column("hold_reason", String(500)),
    Column("hold_origin", _enum(model.HoldOrigin)),
    Column("tray_code", String(32)),
    Column("created_by", String(64), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True)),
)

# At most one open case per patient
Index(
    "uq_cases_open_hc",
    cases.c.hc,
    unique=True,
    sqlite_where=text("state <> 'released'"),
    postgresql_where=text("state <> 'released'"),
)

trays_table = Table(
    "trays",
    metadata,
    Column("code", String(32), primary_key=True),
    Column("state", _enum(trays.TrayState), nullable=False),
    Column("notes", String(500)),
    # a case can occupy at most one tray
    Column("case_code", String(32), unique=True),
    Column("assigned_by", String(64)),
    Column("assigned_at", DateTime(timezone=True)),
    Column("released_by", String(64)),
    Column("released_at", DateTime(timezone=True)),
    Column("status_observations", String(500)),
    Column("status_changed_at", DateTime(timezone=True)),
    Column("version", Integer, nullable=False),
)

tray_occupancies = Table(
    "tray_occupancies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tray_code", String(32), ForeignKey("trays.code"), nullable=False, index=True),
    Column("case_code", String(32), nullable=False, index=True),
    Column("assigned_by", String(64), nullable=False),
    Column("assigned_at", DateTime(timezone=True), nullable=False),
    Column("notes", String(500)),
    Column("released_by", String(64)),
    Column("released_at", DateTime(timezone=True)),
    Column("release_kind", _enum(trays.ReleaseKind)),
    Column("release_reason", String(100)),
    Column("release_observations", String(500)),
)

verification_attempts = Table(
    "verification_attempts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("case_code", String(32), nullable=False, index=True),
    Column("guard_id", String(64), nullable=False),
    Column("verified_at", DateTime(timezone=True), nullable=False),
    Column("observed_hc", String(64)),
    Column("observed_document_number", String(64)),
    Column("observed_full_name", String(255)),
    Column("observed_service", String(128)),
    Column("observed_code", String(64)),
    Column("hc_match", Boolean, nullable=False),
    Column("document_number_match", Boolean, nullable=False),
    Column("full_name_match", Boolean, nullable=False),
    Column("service_match", Boolean, nullable=False),
    Column("code_match", Boolean, nullable=False),
    Column("verdict", _enum(verification.Verdict), nullable=False),
    Column("rejection_reason", String(500)),
    Column("observations", Text),
    Column("correction_request_id", Integer, ForeignKey("correction_requests.id")),
)

correction_requests = Table(
    "correction_requests",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("case_code", String(32), nullable=False, index=True),
    Column("requested_by", String(64), nullable=False),
    Column("responsible_user_id", String(64), nullable=False),
    Column("mismatches", FieldMismatchList, nullable=False),
    Column("problem_description", String(1000), nullable=False),
    Column("observations", Text),
    Column("state", _enum(corrections.CorrectionState), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("resolved_by", String(64)),
    Column("resolved_at", DateTime(timezone=True)),
    Column("resolution_description", String(1000)),
    Column("resolution_observations", Text),
    Column("wristband_reprinted", Boolean, nullable=False, default=False),
    Column("reprinted_at", DateTime(timezone=True)),
)

# At most one pending correction request per case
Index(
    "uq_correction_requests_pending_case",
    correction_requests.c.case_code,
    unique=True,
    sqlite_where=text("state = 'pending'"),
    postgresql_where=text("state = 'pending'"),
)

custody_transfers = Table(
    "custody_transfers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("case_code", String(32), nullable=False, index=True),
    Column("from_user_id", String(64), nullable=False),
    Column("to_user_id", String(64), nullable=False),
    Column("from_location", String(64), nullable=False),
    Column("to_location", String(64), nullable=False),
    Column("transferred_at", DateTime(timezone=True), nullable=False),
    Column("observations", Text),
)


def start_mappers():
    logger.info("Starting mappers")
    mapper_registry.map_imperatively(model.Case, cases)
    mapper_registry.map_imperatively(trays.TrayOccupancy, tray_occupancies)
    mapper_registry.map_imperatively(
        trays.Tray,
        trays_table,
        version_id_col=trays_table.c.version,
        properties={
            "occupancies": relationship(
                trays.TrayOccupancy, order_by=tray_occupancies.c.id, lazy="selectin"
            ),
        },
    )
    mapper_registry.map_imperatively(corrections.CorrectionRequest, correction_requests)
    mapper_registry.map_imperatively(
        verification.VerificationAttempt,
        verification_attempts,
        properties={
            "correction_request": relationship(corrections.CorrectionRequest),
        },
    )
    mapper_registry.map_imperatively(model.CustodyTransfer, custody_transfers)


@event.listens_for(model.Case, "load")
def receive_case_load(case, _):
    case.events = []


@event.listens_for(trays.Tray, "load")
def receive_tray_load(tray, _):
    tray.events = []


@event.listens_for(corrections.CorrectionRequest, "load")
def receive_correction_load(request, _):
    request.events = []
