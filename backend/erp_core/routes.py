from fastapi import APIRouter, Depends, status

from .auth_service import AuthDispatcher
from .config import Settings, get_settings
from .errors import Forbidden
from .fee_service import FeeReconciler, payment_out, structure_total
from .middleware import (
    Principal,
    ensure_branch_scope,
    ensure_student_scope,
    get_current_principal,
    require_roles,
)
from .models import AccountRole, FeeStructure
from .schemas import (
    ChangePasswordRequest,
    FeesDueResponse,
    FeeStatusOut,
    FeeStructureOut,
    FeeStructureUpsertRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PaymentCreateRequest,
    PaymentOut,
    PaymentRecordedResponse,
    PaymentStatusUpdateRequest,
    ResetPasswordRequest,
)

auth_router = APIRouter(prefix="/auth", tags=["Auth"])
fees_router = APIRouter(prefix="/fees", tags=["Fees"])


def _structure_out(structure: FeeStructure) -> FeeStructureOut:
    return FeeStructureOut(
        id=structure.id,
        institution_id=structure.institution_id,
        branch_id=structure.branch_id,
        class_name=structure.class_name,
        categories=structure.categories or {},
        total=structure_total(structure),
    )


# =================== AUTH ===================


@auth_router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, dispatcher: AuthDispatcher = Depends()):
    return dispatcher.authenticate(payload)


@auth_router.get("/me")
def me(principal: Principal = Depends(get_current_principal)):
    return principal.user_view()


@auth_router.post("/change-password", response_model=MessageResponse)
def change_password(
    payload: ChangePasswordRequest,
    dispatcher: AuthDispatcher = Depends(),
    principal: Principal = Depends(get_current_principal),
):
    if payload.user_id is not None and principal.account_id != payload.user_id:
        raise Forbidden("You can only change your own password")
    dispatcher.change_password(payload.user_id, payload.current_password, payload.new_password)
    return MessageResponse(message="Password updated successfully")


@auth_router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(payload: ForgotPasswordRequest, dispatcher: AuthDispatcher = Depends()):
    return MessageResponse(message=dispatcher.request_password_reset(payload.email))


@auth_router.post("/reset-password/{token}", response_model=MessageResponse)
def reset_password(token: str, payload: ResetPasswordRequest, dispatcher: AuthDispatcher = Depends()):
    dispatcher.reset_password(token, payload.password)
    return MessageResponse(message="Password reset successful, you can login now")


# =================== FEES ===================


@fees_router.post("", response_model=PaymentRecordedResponse, status_code=status.HTTP_201_CREATED)
def record_payment(
    payload: PaymentCreateRequest,
    reconciler: FeeReconciler = Depends(),
    settings: Settings = Depends(get_settings),
    principal: Principal = Depends(require_roles(AccountRole.STAFF)),
):
    student = reconciler.get_student(payload.student_id)
    ensure_student_scope(principal, student, settings)
    payment = reconciler.record_payment(
        student.id,
        payload.category,
        payload.amount,
        mode=payload.mode,
        note=payload.note,
        recorded_by_id=principal.account_id,
    )
    return PaymentRecordedResponse(message="Payment recorded", payment=payment_out(payment))


@fees_router.put("/structures", response_model=FeeStructureOut)
def upsert_fee_structure(
    payload: FeeStructureUpsertRequest,
    reconciler: FeeReconciler = Depends(),
    settings: Settings = Depends(get_settings),
    principal: Principal = Depends(require_roles(AccountRole.BRANCH_ADMIN)),
):
    branch = reconciler.get_branch(payload.branch_id)
    ensure_branch_scope(principal, branch, settings)
    structure = reconciler.upsert_fee_structure(branch, payload.class_name, payload.categories)
    return _structure_out(structure)


@fees_router.get("/structures/branch/{branch_id}", response_model=list[FeeStructureOut])
def list_fee_structures(
    branch_id: int,
    reconciler: FeeReconciler = Depends(),
    settings: Settings = Depends(get_settings),
    principal: Principal = Depends(require_roles(AccountRole.STAFF)),
):
    branch = reconciler.get_branch(branch_id)
    ensure_branch_scope(principal, branch, settings)
    return [_structure_out(structure) for structure in reconciler.list_fee_structures(branch.id)]


@fees_router.patch("/payments/{payment_id}/status", response_model=PaymentOut)
def update_payment_status(
    payment_id: int,
    payload: PaymentStatusUpdateRequest,
    reconciler: FeeReconciler = Depends(),
    settings: Settings = Depends(get_settings),
    principal: Principal = Depends(require_roles(AccountRole.BRANCH_ADMIN)),
):
    payment = reconciler.get_payment(payment_id)
    ensure_student_scope(principal, payment.student, settings)
    return payment_out(reconciler.set_payment_status(payment.id, payload.status))


@fees_router.get("/branch/{branch_id}/dues", response_model=FeesDueResponse)
def list_fees_due(
    branch_id: int,
    reconciler: FeeReconciler = Depends(),
    settings: Settings = Depends(get_settings),
    principal: Principal = Depends(require_roles(AccountRole.STAFF)),
):
    branch = reconciler.get_branch(branch_id)
    ensure_branch_scope(principal, branch, settings)
    return FeesDueResponse(results=reconciler.list_fees_due(branch.id))


@fees_router.get("/{student_id}", response_model=FeeStatusOut)
def get_fee_status(
    student_id: int,
    reconciler: FeeReconciler = Depends(),
    settings: Settings = Depends(get_settings),
    principal: Principal = Depends(get_current_principal),
):
    student = reconciler.get_student(student_id)
    ensure_student_scope(principal, student, settings)
    return reconciler.compute_fee_status(student.id)
