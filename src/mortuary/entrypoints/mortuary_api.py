"""
Mortuary API Entrypoint - Thin API with Command Dispatch
API receives payloads and dispatches commands through message bus;
reads go straight to views.
"""
import os
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import create_engine
import logging

import config
from mortuary import views
from mortuary.adapters import orm
from mortuary.domain import commands, exceptions
from mortuary.service_layer import messagebus
from mortuary.service_layer.unit_of_work import AbstractUnitOfWork, SqlAlchemyUnitOfWork
from shared.domain.identity import ActingUser, Role

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Mortuary Custody API",
    description="Case lifecycle, wristband verification, tray allocation and release gate",
    version="1.0.0"
)


# Initialize database and ORM mappers (Cosmic Python pattern)
@app.on_event("startup")
async def startup_event():
    engine = create_engine(config.get_postgres_uri())
    orm.metadata.create_all(engine)
    orm.start_mappers()
    logger.info("Mortuary database initialized")


def get_uow() -> AbstractUnitOfWork:
    return SqlAlchemyUnitOfWork()


def get_acting_user(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> ActingUser:
    """Identity is established upstream; the gateway forwards it as headers."""
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="X-User-Id and X-User-Role headers are required")
    try:
        role = Role(x_user_role)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown role {x_user_role}")
    return ActingUser(user_id=x_user_id, role=role)


def _status_for(error: exceptions.MortuaryError) -> int:
    if isinstance(error, exceptions.ValidationError):
        return 400
    if isinstance(error, exceptions.NotFound):
        return 404
    if isinstance(error, exceptions.DependencyUnavailable):
        return 503
    return 409


@app.exception_handler(exceptions.MortuaryError)
async def mortuary_error_handler(request, error: exceptions.MortuaryError):
    body = {"error": type(error).__name__, "detail": str(error)}
    if isinstance(error, exceptions.BlockedByHold):
        body["reasons"] = error.reasons
    if isinstance(error, exceptions.DependencyUnavailable):
        body["sources"] = error.sources
        body["retryable"] = True
    if isinstance(error, exceptions.InvalidTransition):
        body["permitted"] = error.permitted
    return JSONResponse(status_code=_status_for(error), content=body)


def _dispatch(command, uow: AbstractUnitOfWork):
    results = messagebus.handle(command, uow)
    return results.pop(0)


# ---------- Request models ----------

class RegisterCaseRequest(BaseModel):
    hc: str
    document_type: str
    document_number: str
    full_name: str
    service: str
    bed_number: Optional[str] = None
    is_legal_case: bool = False
    code: Optional[str] = None


class TransferCustodyRequest(BaseModel):
    code: str
    observations: Optional[str] = None


class VerificationRequest(BaseModel):
    hc: str
    document_number: str
    full_name: str
    service: str
    code: str
    observations: Optional[str] = None


class ResolveCorrectionRequestBody(BaseModel):
    description: str
    wristband_reprinted: bool
    observations: Optional[str] = None


class CreateTrayRequest(BaseModel):
    code: str
    notes: Optional[str] = None


class AssignTrayRequest(BaseModel):
    case_code: str
    notes: Optional[str] = None


class ReleaseTrayRequest(BaseModel):
    notes: Optional[str] = None


class ManualReleaseRequest(BaseModel):
    reason: str
    observations: str


class ObservationsRequest(BaseModel):
    observations: Optional[str] = None


class ReasonRequest(BaseModel):
    reason: str


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "mortuary-custody-api",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# ---------- Cases and custody ----------

@app.post("/api/v1/cases", status_code=201)
def register_case(body: RegisterCaseRequest, user: ActingUser = Depends(get_acting_user),
                  uow: AbstractUnitOfWork = Depends(get_uow)):
    code = _dispatch(commands.RegisterCase(acting_user=user, **body.model_dump()), uow)
    return {"code": code}


@app.get("/api/v1/cases/{case_code}")
def get_case(case_code: str, uow: AbstractUnitOfWork = Depends(get_uow)):
    case = views.get_case(case_code, uow)
    if case is None:
        raise HTTPException(status_code=404, detail=f"Case {case_code} not found")
    return case


@app.post("/api/v1/custody/transfers")
def transfer_custody(body: TransferCustodyRequest, user: ActingUser = Depends(get_acting_user),
                     uow: AbstractUnitOfWork = Depends(get_uow)):
    return _dispatch(
        commands.TransferCustody(acting_user=user, code=body.code, observations=body.observations), uow
    )


@app.get("/api/v1/cases/{case_code}/custody")
def get_custody_history(case_code: str, uow: AbstractUnitOfWork = Depends(get_uow)):
    return views.get_custody_history(case_code, uow)


@app.get("/api/v1/cases/{case_code}/custody/current")
def get_current_custodian(case_code: str, uow: AbstractUnitOfWork = Depends(get_uow)):
    custodian = views.get_current_custodian(case_code, uow)
    if custodian is None:
        raise HTTPException(status_code=404, detail=f"Case {case_code} not found")
    return custodian


@app.post("/api/v1/cases/{case_code}/release")
def attempt_release(case_code: str, user: ActingUser = Depends(get_acting_user),
                    uow: AbstractUnitOfWork = Depends(get_uow)):
    return _dispatch(commands.AttemptRelease(acting_user=user, case_code=case_code), uow)


@app.post("/api/v1/cases/{case_code}/holds")
def place_release_hold(case_code: str, body: ReasonRequest, user: ActingUser = Depends(get_acting_user),
                       uow: AbstractUnitOfWork = Depends(get_uow)):
    return _dispatch(
        commands.PlaceReleaseHold(acting_user=user, case_code=case_code, reason=body.reason), uow
    )


@app.delete("/api/v1/cases/{case_code}/holds")
def lift_release_hold(case_code: str, user: ActingUser = Depends(get_acting_user),
                      uow: AbstractUnitOfWork = Depends(get_uow)):
    return _dispatch(commands.LiftReleaseHold(acting_user=user, case_code=case_code), uow)


# ---------- Verification and corrections ----------

@app.post("/api/v1/cases/{case_code}/verifications")
def register_verification(case_code: str, body: VerificationRequest,
                          user: ActingUser = Depends(get_acting_user),
                          uow: AbstractUnitOfWork = Depends(get_uow)):
    return _dispatch(
        commands.RegisterVerification(
            acting_user=user,
            case_code=case_code,
            hc=body.hc,
            document_number=body.document_number,
            full_name=body.full_name,
            service=body.service,
            wristband_code=body.code,
            observations=body.observations,
        ),
        uow,
    )


@app.get("/api/v1/cases/{case_code}/verifications")
def get_verification_history(case_code: str, uow: AbstractUnitOfWork = Depends(get_uow)):
    return views.get_verification_history(case_code, uow)


@app.get("/api/v1/verifications/statistics")
def get_verification_statistics(uow: AbstractUnitOfWork = Depends(get_uow)):
    return views.get_verification_statistics(uow)


@app.get("/api/v1/cases/{case_code}/corrections")
def get_correction_history(case_code: str, uow: AbstractUnitOfWork = Depends(get_uow)):
    return views.get_correction_history(case_code, uow)


@app.get("/api/v1/corrections/pending")
def get_pending_corrections(uow: AbstractUnitOfWork = Depends(get_uow)):
    return views.get_pending_corrections(uow)


@app.get("/api/v1/corrections/statistics")
def get_correction_statistics(uow: AbstractUnitOfWork = Depends(get_uow)):
    return views.get_correction_statistics(uow)


@app.get("/api/v1/corrections/{request_id}")
def get_correction_request(request_id: int, uow: AbstractUnitOfWork = Depends(get_uow)):
    request = views.get_correction_request(request_id, uow)
    if request is None:
        raise HTTPException(status_code=404, detail=f"Correction request {request_id} not found")
    return request


@app.post("/api/v1/corrections/{request_id}/resolve")
def resolve_correction_request(request_id: int, body: ResolveCorrectionRequestBody,
                               user: ActingUser = Depends(get_acting_user),
                               uow: AbstractUnitOfWork = Depends(get_uow)):
    return _dispatch(
        commands.ResolveCorrectionRequest(
            acting_user=user,
            request_id=request_id,
            description=body.description,
            wristband_reprinted=body.wristband_reprinted,
            observations=body.observations,
        ),
        uow,
    )


# ---------- Trays ----------

@app.post("/api/v1/trays", status_code=201)
def create_tray(body: CreateTrayRequest, user: ActingUser = Depends(get_acting_user),
                uow: AbstractUnitOfWork = Depends(get_uow)):
    code = _dispatch(commands.CreateTray(acting_user=user, code=body.code, notes=body.notes), uow)
    return {"code": code}


@app.get("/api/v1/trays")
def get_tray_board(uow: AbstractUnitOfWork = Depends(get_uow)):
    return views.get_tray_board(uow)


@app.get("/api/v1/trays/statistics")
def get_occupancy_statistics(uow: AbstractUnitOfWork = Depends(get_uow)):
    return views.get_occupancy_statistics(uow)


@app.get("/api/v1/trays/{tray_code}/history")
def get_tray_history(tray_code: str, uow: AbstractUnitOfWork = Depends(get_uow)):
    return views.get_tray_history(tray_code, uow)


@app.post("/api/v1/trays/{tray_code}/assign")
def assign_tray(tray_code: str, body: AssignTrayRequest, user: ActingUser = Depends(get_acting_user),
                uow: AbstractUnitOfWork = Depends(get_uow)):
    return _dispatch(
        commands.AssignTray(acting_user=user, tray_code=tray_code, case_code=body.case_code, notes=body.notes),
        uow,
    )


@app.post("/api/v1/trays/{tray_code}/release")
def release_tray(tray_code: str, body: ReleaseTrayRequest, user: ActingUser = Depends(get_acting_user),
                 uow: AbstractUnitOfWork = Depends(get_uow)):
    return _dispatch(commands.ReleaseTray(acting_user=user, tray_code=tray_code, notes=body.notes), uow)


@app.post("/api/v1/trays/{tray_code}/manual-release")
def manual_release_tray(tray_code: str, body: ManualReleaseRequest,
                        user: ActingUser = Depends(get_acting_user),
                        uow: AbstractUnitOfWork = Depends(get_uow)):
    return _dispatch(
        commands.ManualReleaseTray(
            acting_user=user, tray_code=tray_code, reason=body.reason, observations=body.observations
        ),
        uow,
    )


@app.post("/api/v1/trays/{tray_code}/maintenance/start")
def start_tray_maintenance(tray_code: str, body: ObservationsRequest,
                           user: ActingUser = Depends(get_acting_user),
                           uow: AbstractUnitOfWork = Depends(get_uow)):
    return _dispatch(
        commands.StartTrayMaintenance(acting_user=user, tray_code=tray_code, observations=body.observations),
        uow,
    )


@app.post("/api/v1/trays/{tray_code}/maintenance/finish")
def finish_tray_maintenance(tray_code: str, body: ObservationsRequest,
                            user: ActingUser = Depends(get_acting_user),
                            uow: AbstractUnitOfWork = Depends(get_uow)):
    return _dispatch(
        commands.FinishTrayMaintenance(acting_user=user, tray_code=tray_code, observations=body.observations),
        uow,
    )


@app.post("/api/v1/trays/{tray_code}/out-of-service")
def mark_tray_out_of_service(tray_code: str, body: ReasonRequest,
                             user: ActingUser = Depends(get_acting_user),
                             uow: AbstractUnitOfWork = Depends(get_uow)):
    return _dispatch(
        commands.MarkTrayOutOfService(acting_user=user, tray_code=tray_code, reason=body.reason), uow
    )


@app.post("/api/v1/trays/{tray_code}/restore")
def restore_tray(tray_code: str, body: ObservationsRequest,
                 user: ActingUser = Depends(get_acting_user),
                 uow: AbstractUnitOfWork = Depends(get_uow)):
    return _dispatch(
        commands.RestoreTray(acting_user=user, tray_code=tray_code, observations=body.observations), uow
    )


def main():
    uvicorn.run(
        app,
        host=os.environ.get("API_BIND_HOST", "0.0.0.0"),
        port=int(os.environ.get("API_PORT", 8000)),
    )


if __name__ == "__main__":
    main()
