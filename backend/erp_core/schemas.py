from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import MalformedRequest
from .models import PaymentStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


@dataclass(frozen=True)
class StudentLogin:
    register_number: str
    phone: str


@dataclass(frozen=True)
class CredentialLogin:
    email: str
    password: str


class LoginRequest(CamelModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    register_number: str | None = None
    phone: str | None = None
    email: str | None = None
    password: str | None = None

    def resolve(self) -> StudentLogin | CredentialLogin:
        """Pick the credential shape; the student shape wins when both are supplied."""
        register_number = (self.register_number or "").strip()
        phone = (self.phone or "").strip()
        if register_number and phone:
            return StudentLogin(register_number=register_number, phone=phone)

        email = (self.email or "").strip()
        if email and self.password:
            return CredentialLogin(email=email, password=self.password)

        raise MalformedRequest("Invalid login credentials provided")


class LoginResponse(BaseModel):
    token: str
    user: dict[str, Any]


class MessageResponse(BaseModel):
    message: str


class ChangePasswordRequest(CamelModel):
    user_id: int | None = None
    current_password: str | None = None
    new_password: str | None = None


class ForgotPasswordRequest(CamelModel):
    email: str | None = Field(default=None, max_length=255)


class ResetPasswordRequest(CamelModel):
    password: str | None = None


class PaymentCreateRequest(CamelModel):
    student_id: int
    category: str = Field(max_length=120)
    amount: float
    mode: str = Field(default="Cash", max_length=40)
    note: str | None = Field(default=None, max_length=500)


class PaymentOut(CamelModel):
    id: int
    student_id: int
    branch_id: int | None
    category: str
    amount: float
    date: datetime
    mode: str
    note: str | None
    status: str


class PaymentRecordedResponse(BaseModel):
    message: str
    payment: PaymentOut


class PaymentStatusUpdateRequest(CamelModel):
    status: PaymentStatus


class CategoryLine(CamelModel):
    category: str
    total: float
    paid: float
    due: float


class FeeStatusOut(CamelModel):
    student_id: int
    fee_structure_total: float
    paid_total: float
    pending_amount: float
    fee_structure: dict[str, float]
    categories: list[CategoryLine]
    payments: list[PaymentOut]


class FeeStructureUpsertRequest(CamelModel):
    branch_id: int
    class_name: str = Field(alias="class", min_length=1, max_length=32)
    categories: dict[str, float] = Field(default_factory=dict)


class FeeStructureOut(CamelModel):
    id: int
    institution_id: int
    branch_id: int
    class_name: str = Field(alias="class")
    categories: dict[str, float]
    total: float


class FeeDueItem(CamelModel):
    student_id: int
    name: str
    registration_number: str
    class_name: str = Field(alias="class")
    fee_structure_total: float
    paid_total: float
    pending_amount: float


class FeesDueResponse(BaseModel):
    results: list[FeeDueItem]
