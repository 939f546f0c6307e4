import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .database import get_db_session
from .errors import Forbidden, Unauthorized
from .models import STUDENT_ROLE, Account, AccountRole, Branch, Student
from .security import decode_access_token

logger = logging.getLogger(__name__)

COMPANY_ADMIN = AccountRole.COMPANY_ADMIN.value
INSTITUTION_ADMIN = AccountRole.INSTITUTION_ADMIN.value
BRANCH_ADMIN = AccountRole.BRANCH_ADMIN.value
STAFF = AccountRole.STAFF.value
PARENT = AccountRole.PARENT.value

ROLE_ACCESS = {
    COMPANY_ADMIN: {COMPANY_ADMIN, INSTITUTION_ADMIN, BRANCH_ADMIN, STAFF},
    INSTITUTION_ADMIN: {INSTITUTION_ADMIN, BRANCH_ADMIN, STAFF},
    BRANCH_ADMIN: {BRANCH_ADMIN, STAFF},
    STAFF: {STAFF},
    PARENT: {PARENT},
    STUDENT_ROLE: {STUDENT_ROLE},
}


@dataclass(frozen=True)
class Principal:
    role: str
    subject_id: int
    name: str
    email: str | None
    institution_id: int | None
    branch_id: int | None
    account_id: int | None = None
    student_id: int | None = None

    def user_view(self) -> dict[str, Any]:
        view: dict[str, Any] = {
            "id": self.subject_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "institution_id": self.institution_id,
            "branch_id": self.branch_id,
        }
        if self.student_id is not None:
            view["student_id"] = self.student_id
        return view


def _parse_token(auth_header: str | None) -> str:
    if not auth_header:
        raise Unauthorized("Missing Authorization header")
    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise Unauthorized("Invalid auth scheme")
    return parts[1].strip()


def get_current_principal(
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> Principal:
    payload = decode_access_token(settings, _parse_token(authorization))
    try:
        subject_id = int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise Unauthorized("Invalid token payload") from exc

    if payload["role"] == STUDENT_ROLE:
        student = db.query(Student).filter(Student.id == subject_id).first()
        if student is None or not student.is_active:
            raise Unauthorized("Invalid user")
        return Principal(
            role=STUDENT_ROLE,
            subject_id=student.id,
            name=student.name,
            email=None,
            institution_id=student.institution_id,
            branch_id=student.branch_id,
            student_id=student.id,
        )

    account = db.query(Account).filter(Account.id == subject_id).first()
    if account is None or not account.is_active:
        raise Unauthorized("Invalid user")

    student_id = payload.get("student_id")
    if student_id is not None:
        linked = db.query(Student).filter(Student.id == student_id, Student.user_id == account.id).first()
        student_id = linked.id if linked is not None and linked.is_active else None

    return Principal(
        role=account.role.value,
        subject_id=account.id,
        name=account.name,
        email=account.email,
        institution_id=account.institution_id,
        branch_id=account.branch_id,
        account_id=account.id,
        student_id=student_id,
    )


def require_roles(*allowed_roles: AccountRole | str) -> Callable:
    allowed = {role.value if isinstance(role, AccountRole) else role for role in allowed_roles}

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        reachable = ROLE_ACCESS.get(principal.role, {principal.role})
        if not allowed.intersection(reachable):
            raise Forbidden("Insufficient role privileges")
        return principal

    return dependency


def ensure_student_scope(principal: Principal, student: Student, settings: Settings) -> None:
    if not settings.enforce_tenant_scope:
        return
    role = principal.role
    if role == COMPANY_ADMIN:
        return
    if role == INSTITUTION_ADMIN and student.institution_id is not None:
        if student.institution_id == principal.institution_id:
            return
    if role in (BRANCH_ADMIN, STAFF) and student.branch_id is not None:
        if student.branch_id == principal.branch_id:
            return
    if role == PARENT and student.parent_id == principal.subject_id:
        return
    if principal.student_id is not None and principal.student_id == student.id:
        return
    logger.warning(f"Scope violation: {role} {principal.subject_id} tried to reach student {student.id}")
    raise Forbidden("Not authorized to access this student")


def ensure_branch_scope(principal: Principal, branch: Branch, settings: Settings) -> None:
    if not settings.enforce_tenant_scope:
        return
    role = principal.role
    if role == COMPANY_ADMIN:
        return
    if role == INSTITUTION_ADMIN and branch.institution_id == principal.institution_id:
        return
    if role in (BRANCH_ADMIN, STAFF) and branch.id == principal.branch_id:
        return
    logger.warning(f"Scope violation: {role} {principal.subject_id} tried to reach branch {branch.id}")
    raise Forbidden("Not authorized to access this branch")
