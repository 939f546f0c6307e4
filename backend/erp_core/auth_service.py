import logging
import re
from datetime import timedelta
from typing import Any

from fastapi import Depends
from sqlalchemy import update
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .database import get_db_session
from .errors import (
    Conflict,
    InvalidCredentials,
    InvalidOrExpiredToken,
    MalformedRequest,
    NoActiveDependents,
)
from .models import STUDENT_ROLE, Account, AccountRole, RecordStatus, Student, utcnow
from .notifications import MailDispatchError, build_reset_url, send_reset_link
from .schemas import CredentialLogin, LoginRequest, StudentLogin
from .security import (
    create_access_token,
    digest_reset_token,
    generate_reset_token,
    hash_password,
    verify_password,
)

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
MIN_PASSWORD_LENGTH = 8
RESET_REQUESTED_MESSAGE = "If that email exists, a reset link was sent"


def normalize_email(value: str) -> str:
    return value.strip().lower()


def account_view(account: Account) -> dict[str, Any]:
    return {
        "id": account.id,
        "name": account.name,
        "email": account.email,
        "role": account.role.value,
        "institution_id": account.institution_id,
        "branch_id": account.branch_id,
    }


def student_view(student: Student) -> dict[str, Any]:
    return {
        "id": student.id,
        "name": student.name,
        "email": None,
        "role": STUDENT_ROLE,
        "institution_id": student.institution_id,
        "branch_id": student.branch_id,
        "student_id": student.id,
        "registration_number": student.registration_number,
        "class": student.class_name,
    }


def check_password_strength(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise MalformedRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


class AuthDispatcher:
    """Resolves login payloads into sessions and runs the password change/reset flows."""

    def __init__(self, db: Session = Depends(get_db_session), settings: Settings = Depends(get_settings)):
        self.db = db
        self.settings = settings

    # --- login ---

    def authenticate(self, request: LoginRequest | StudentLogin | CredentialLogin) -> dict[str, Any]:
        login = request.resolve() if isinstance(request, LoginRequest) else request
        if isinstance(login, StudentLogin):
            return self._authenticate_student(login)
        return self._authenticate_credentials(login)

    def _authenticate_student(self, login: StudentLogin) -> dict[str, Any]:
        logger.info(f"Student login attempt for register number: {login.register_number}")
        matches = (
            self.db.query(Student)
            .filter(
                Student.registration_number == login.register_number,
                Student.phone == login.phone,
                Student.status == RecordStatus.ACTIVE,
            )
            .limit(2)
            .all()
        )
        if len(matches) != 1:
            if matches:
                logger.warning(f"Register number {login.register_number} matches several active students")
            raise InvalidCredentials("Invalid register number or phone")
        student = matches[0]

        if student.user_id is None:
            token = self._issue_token(
                subject=student.id,
                role=STUDENT_ROLE,
                institution_id=student.institution_id,
                branch_id=student.branch_id,
                student_id=student.id,
            )
            return {"token": token, "user": student_view(student)}

        account = student.user
        if account is None or not account.is_active:
            logger.warning(f"Login refused for student {student.id}: linked account inactive")
            raise InvalidCredentials("Student account is inactive")

        user = account_view(account)
        user["institution_id"] = account.institution_id or student.institution_id
        user["branch_id"] = account.branch_id or student.branch_id
        user["student_id"] = student.id
        token = self._issue_token(
            subject=account.id,
            role=account.role.value,
            institution_id=user["institution_id"],
            branch_id=user["branch_id"],
            student_id=student.id,
        )
        return {"token": token, "user": user}

    def _authenticate_credentials(self, login: CredentialLogin) -> dict[str, Any]:
        email = normalize_email(login.email)
        logger.info(f"Login attempt for user: {email}")
        account = (
            self.db.query(Account)
            .filter(Account.email == email, Account.status == RecordStatus.ACTIVE)
            .first()
        )
        if account is None or not verify_password(login.password, account.password_hash):
            logger.warning(f"Login failed for user: {email}")
            raise InvalidCredentials("Invalid email or password")

        user = account_view(account)
        if account.role == AccountRole.PARENT:
            dependents = (
                self.db.query(Student.id)
                .filter(Student.parent_id == account.id, Student.status == RecordStatus.ACTIVE)
                .order_by(Student.id)
                .all()
            )
            if not dependents:
                logger.warning(f"Parent {account.id} has no active students")
                raise NoActiveDependents()
            user["student_ids"] = [row.id for row in dependents]

        token = self._issue_token(
            subject=account.id,
            role=account.role.value,
            institution_id=account.institution_id,
            branch_id=account.branch_id,
        )
        return {"token": token, "user": user}

    def _issue_token(
        self,
        *,
        subject: int,
        role: str,
        institution_id: int | None,
        branch_id: int | None,
        student_id: int | None = None,
    ) -> str:
        claims: dict[str, Any] = {"institution_id": institution_id, "branch_id": branch_id}
        if student_id is not None:
            claims["student_id"] = student_id
        return create_access_token(self.settings, subject=str(subject), role=role, extra_claims=claims)

    # --- passwords ---

    def change_password(
        self, user_id: int | None, current_password: str | None, new_password: str | None
    ) -> None:
        if not user_id or not current_password or not new_password:
            raise MalformedRequest("User, current password and new password are required")
        check_password_strength(new_password)

        account = self.db.query(Account).filter(Account.id == user_id).first()
        if account is None or not account.is_active:
            raise InvalidCredentials("User not found or inactive")
        if not verify_password(current_password, account.password_hash):
            raise InvalidCredentials("Current password is incorrect")

        # Tokens issued before the change stay valid until they expire.
        account.password_hash = hash_password(new_password)
        self.db.commit()
        logger.info(f"Password changed for account {account.id}")

    def request_password_reset(self, email: str | None) -> str:
        if not email or not email.strip():
            raise MalformedRequest("Email is required")

        account = self.db.query(Account).filter(Account.email == normalize_email(email)).first()
        if account is None:
            logger.info("Password reset requested for an unknown email")
            return RESET_REQUESTED_MESSAGE

        token = generate_reset_token()
        account.reset_token = digest_reset_token(token)
        account.reset_token_expiry = utcnow() + timedelta(minutes=self.settings.reset_token_exp_minutes)
        self.db.commit()

        try:
            send_reset_link(
                self.settings,
                recipient_email=account.email,
                reset_url=build_reset_url(self.settings, token),
            )
        except MailDispatchError as exc:
            logger.error(f"Reset link delivery failed for account {account.id}: {exc}")
        return RESET_REQUESTED_MESSAGE

    def reset_password(self, token: str, new_password: str | None) -> None:
        if not new_password:
            raise MalformedRequest("Password is required")

        digest = digest_reset_token(token)
        now = utcnow()
        account = (
            self.db.query(Account)
            .filter(Account.reset_token == digest, Account.reset_token_expiry > now)
            .first()
        )
        if account is None:
            raise InvalidOrExpiredToken()

        # Conditional update: only one concurrent caller can clear a given token.
        result = self.db.execute(
            update(Account)
            .where(
                Account.id == account.id,
                Account.reset_token == digest,
                Account.reset_token_expiry > now,
            )
            .values(password_hash=hash_password(new_password), reset_token=None, reset_token_expiry=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise InvalidOrExpiredToken()
        self.db.commit()
        logger.info(f"Password reset completed for account {account.id}")

    # --- provisioning ---

    def create_account(
        self,
        *,
        name: str,
        email: str,
        password: str,
        role: AccountRole,
        institution_id: int | None = None,
        branch_id: int | None = None,
        phone: str | None = None,
    ) -> Account:
        normalized = normalize_email(email)
        if not EMAIL_PATTERN.match(normalized):
            raise MalformedRequest("Invalid email format")
        check_password_strength(password)
        if self.db.query(Account).filter(Account.email == normalized).first():
            raise Conflict("Email already in use")

        account = Account(
            name=name.strip(),
            email=normalized,
            phone=phone,
            password_hash=hash_password(password),
            role=role,
            institution_id=institution_id,
            branch_id=branch_id,
            status=RecordStatus.ACTIVE,
        )
        self.db.add(account)
        self.db.commit()
        self.db.refresh(account)
        return account


def seed_company_admin(db: Session, settings: Settings) -> None:
    if not settings.seed_admin_email or not settings.seed_admin_password:
        return
    if db.query(Account).filter(Account.email == normalize_email(settings.seed_admin_email)).first():
        return
    account = AuthDispatcher(db, settings).create_account(
        name="Company Admin",
        email=settings.seed_admin_email,
        password=settings.seed_admin_password,
        role=AccountRole.COMPANY_ADMIN,
    )
    logger.info(f"Seeded company admin account {account.email}")
