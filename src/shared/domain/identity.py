"""Acting-user identity supplied by the identity provider for every command."""

import enum
from dataclasses import dataclass


class Role(str, enum.Enum):
    NURSE = "nurse"
    AMBULANCE_TECHNICIAN = "ambulance_technician"
    GUARD = "guard"
    GUARD_SUPERVISOR = "guard_supervisor"
    MORTUARY_TECHNICIAN = "mortuary_technician"
    ADMINISTRATOR = "administrator"


@dataclass(frozen=True)
class ActingUser:
    user_id: str
    role: Role

    def __str__(self):
        return f"{self.user_id} ({self.role.value})"
