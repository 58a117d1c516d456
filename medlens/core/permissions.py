"""
Action authorization.

``authorize`` answers allow/deny for a principal, an action and an optional
target record. Everything is denied unless a rule below explicitly allows it.
Denials carry an internal reason code for the logs; callers only ever see a
generic 403.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import enum
import logging

from medlens.core.exceptions import AuthorizationError
from medlens.core.principal import Principal
from medlens.core.visibility import can_view_patient
from medlens.domain.auth.models import User, UserRole, DOCTOR_ROLES
from medlens.domain.patients.models import Patient, PatientFile

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    """Actions gated by the authorizer"""
    REGISTER_USER = "register_user"
    EDIT_USER = "edit_user"
    EDIT_USER_ROLE_OR_STATUS = "edit_user_role_or_status"
    DELETE_USER = "delete_user"
    ASSIGN_CONSULTING_DOCTOR = "assign_consulting_doctor"
    ASSIGN_PATIENT_DOCTOR = "assign_patient_doctor"
    UNASSIGN_PATIENT_DOCTOR = "unassign_patient_doctor"
    LIST_ASSIGNABLE_DOCTORS = "list_assignable_doctors"
    CREATE_PATIENT = "create_patient"
    UPDATE_PATIENT = "update_patient"
    CLOSE_PATIENT_CASE = "close_patient_case"
    DELETE_PATIENT = "delete_patient"
    UPLOAD_PATIENT_FILE = "upload_patient_file"
    DELETE_PATIENT_FILE = "delete_patient_file"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed

    @classmethod
    def allow(cls, reason: str = "allowed") -> "Decision":
        return cls(True, reason)

    @classmethod
    def deny(cls, reason: str) -> "Decision":
        return cls(False, reason)


Rule = Callable[[Principal, Optional[Any]], Decision]


def _admin_only(principal: Principal, target: Optional[Any] = None) -> Decision:
    if principal.role == UserRole.ADMIN:
        return Decision.allow("admin")
    return Decision.deny("admin_only")


def _admin_or_front_desk(principal: Principal, target: Optional[Any] = None) -> Decision:
    if principal.role in (UserRole.ADMIN, UserRole.FRONT_DESK_COORDINATOR):
        return Decision.allow(principal.role.value)
    return Decision.deny("admin_or_front_desk_only")


def _edit_user(principal: Principal, target: Optional[User]) -> Decision:
    if not isinstance(target, User):
        return Decision.deny("missing_target")
    if principal.role == UserRole.ADMIN:
        return Decision.allow("admin")
    if principal.is_self(target.id):
        return Decision.allow("self_profile")
    if principal.role == UserRole.SENIOR_DOCTOR and target.id in principal.consulting_doctor_ids:
        return Decision.allow("assigned_consulting_doctor")
    return Decision.deny("target_outside_edit_scope")


def _patient_write(principal: Principal, target: Optional[Patient]) -> Decision:
    if not isinstance(target, Patient):
        return Decision.deny("missing_target")
    if principal.role in (UserRole.ADMIN, UserRole.FRONT_DESK_COORDINATOR):
        return Decision.allow(principal.role.value)
    if principal.role in DOCTOR_ROLES and target.assigned_doctor_id == principal.user_id:
        return Decision.allow("assigned_doctor")
    return Decision.deny("no_write_access_to_patient")


def _upload_patient_file(principal: Principal, target: Optional[Patient]) -> Decision:
    if not isinstance(target, Patient):
        return Decision.deny("missing_target")
    if can_view_patient(principal, target):
        return Decision.allow("patient_visible")
    return Decision.deny("patient_not_visible")


def _delete_patient_file(principal: Principal, target: Optional[PatientFile]) -> Decision:
    if not isinstance(target, PatientFile):
        return Decision.deny("missing_target")
    if principal.role == UserRole.ADMIN:
        return Decision.allow("admin")
    if target.uploaded_by is not None and target.uploaded_by == principal.user_id:
        return Decision.allow("uploader")
    return Decision.deny("not_file_uploader")


RULES: Dict[Action, Rule] = {
    Action.REGISTER_USER: _admin_only,
    Action.EDIT_USER: _edit_user,
    Action.EDIT_USER_ROLE_OR_STATUS: _admin_only,
    Action.DELETE_USER: _admin_only,
    Action.ASSIGN_CONSULTING_DOCTOR: _admin_only,
    Action.ASSIGN_PATIENT_DOCTOR: _admin_or_front_desk,
    Action.UNASSIGN_PATIENT_DOCTOR: _admin_or_front_desk,
    Action.LIST_ASSIGNABLE_DOCTORS: _admin_or_front_desk,
    Action.CREATE_PATIENT: _admin_or_front_desk,
    Action.UPDATE_PATIENT: _patient_write,
    Action.CLOSE_PATIENT_CASE: _patient_write,
    Action.DELETE_PATIENT: _admin_only,
    Action.UPLOAD_PATIENT_FILE: _upload_patient_file,
    Action.DELETE_PATIENT_FILE: _delete_patient_file,
}


def authorize(principal: Principal, action: Action, target: Optional[Any] = None) -> Decision:
    """Return allow/deny for ``action`` on ``target``"""
    rule = RULES.get(action)
    if rule is None:
        return Decision.deny("unhandled_action")
    if not isinstance(principal.role, UserRole):
        return Decision.deny("unrecognised_role")
    return rule(principal, target)


def ensure_allowed(principal: Principal, action: Action, target: Optional[Any] = None) -> Decision:
    """Raise AuthorizationError unless ``action`` is allowed"""
    decision = authorize(principal, action, target)
    if not decision.allowed:
        logger.warning(
            "Denied %s for user %s (%s): %s",
            action.value, principal.user_id, principal.role, decision.reason
        )
        raise AuthorizationError(message="Insufficient permissions", reason=decision.reason)
    return decision
