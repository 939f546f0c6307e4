"""Fee reconciliation: configured fee structures against recorded payments."""

import logging
import math
from collections import defaultdict
from collections.abc import Iterable, Mapping
from typing import Any

from fastapi import Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .database import get_db_session
from .errors import Conflict, MalformedRequest, NotFound
from .models import Branch, FeeStructure, Payment, PaymentStatus, RecordStatus, Student
from .schemas import CategoryLine, FeeDueItem, FeeStatusOut, PaymentOut

logger = logging.getLogger(__name__)


def _money(value: float) -> float:
    return round(float(value), 2)


def _configured_amount(category: str, value: Any) -> float:
    try:
        amount = float(value or 0)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric amount {value!r} for fee category {category!r}")
        return 0.0
    return amount if math.isfinite(amount) else 0.0


def payment_out(payment: Payment) -> PaymentOut:
    return PaymentOut(
        id=payment.id,
        student_id=payment.student_id,
        branch_id=payment.branch_id,
        category=payment.category,
        amount=payment.amount,
        date=payment.date,
        mode=payment.mode,
        note=payment.note,
        status=payment.display_status,
    )


def reconcile(student_id: int, categories: Mapping[str, Any], payments: Iterable[Payment]) -> FeeStatusOut:
    """Diff configured category totals against approved payments.

    ``payments`` must already be ordered newest first; that order is kept in the output.
    A category's due never goes below zero, and payments in categories missing from the
    structure still count towards ``paid_total``.
    """
    approved = [payment for payment in payments if payment.is_approved]

    paid_by_category: dict[str, float] = defaultdict(float)
    for payment in approved:
        paid_by_category[payment.category] += payment.amount

    lines = []
    for category, configured in categories.items():
        total = _money(_configured_amount(category, configured))
        paid = _money(paid_by_category.get(category, 0.0))
        lines.append(CategoryLine(category=category, total=total, paid=paid, due=max(0.0, _money(total - paid))))

    fee_structure_total = _money(sum(line.total for line in lines))
    paid_total = _money(sum(payment.amount for payment in approved))
    return FeeStatusOut(
        student_id=student_id,
        fee_structure_total=fee_structure_total,
        paid_total=paid_total,
        pending_amount=max(0.0, _money(fee_structure_total - paid_total)),
        fee_structure={line.category: line.total for line in lines},
        categories=lines,
        payments=[payment_out(payment) for payment in approved],
    )


class FeeReconciler:
    def __init__(self, db: Session = Depends(get_db_session)):
        self.db = db

    def get_student(self, student_id: int) -> Student:
        student = self.db.get(Student, student_id)
        if student is None:
            raise NotFound("Student not found")
        return student

    def get_branch(self, branch_id: int) -> Branch:
        branch = self.db.get(Branch, branch_id)
        if branch is None:
            raise NotFound("Branch not found")
        return branch

    def get_payment(self, payment_id: int) -> Payment:
        payment = self.db.get(Payment, payment_id)
        if payment is None:
            raise NotFound("Payment not found")
        return payment

    def find_fee_structure(self, branch_id: int | None, class_name: str) -> FeeStructure | None:
        return (
            self.db.query(FeeStructure)
            .filter(FeeStructure.branch_id == branch_id, FeeStructure.class_name == class_name)
            .first()
        )

    def _student_payments(self, student: Student) -> list[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.student_id == student.id, Payment.branch_id == student.branch_id)
            .order_by(Payment.date.desc(), Payment.id.desc())
            .all()
        )

    def compute_fee_status(self, student_id: int) -> FeeStatusOut:
        student = self.get_student(student_id)
        structure = self.find_fee_structure(student.branch_id, student.class_name)
        categories = structure.categories if structure is not None else {}
        return reconcile(student.id, categories or {}, self._student_payments(student))

    def record_payment(
        self,
        student_id: int,
        category: str,
        amount: float,
        mode: str | None = "Cash",
        note: str | None = None,
        recorded_by_id: int | None = None,
    ) -> Payment:
        if not category or not category.strip():
            raise MalformedRequest("Category is required")
        if amount is None or not math.isfinite(amount) or amount <= 0:
            raise MalformedRequest("Amount must be greater than zero")
        student = self.get_student(student_id)

        # Status stays unset: a freshly recorded payment counts as approved.
        payment = Payment(
            student_id=student.id,
            branch_id=student.branch_id,
            institution_id=student.institution_id,
            category=category,
            amount=float(amount),
            mode=(mode or "").strip() or "Cash",
            note=note,
            status=None,
            recorded_by_id=recorded_by_id,
        )
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        logger.info(f"Recorded payment {payment.id}: {payment.amount} for student {student.id} ({category})")
        return payment

    def set_payment_status(self, payment_id: int, status: PaymentStatus) -> Payment:
        payment = self.get_payment(payment_id)
        payment.status = status.value
        self.db.commit()
        self.db.refresh(payment)
        logger.info(f"Payment {payment.id} marked {status.value}")
        return payment

    def upsert_fee_structure(self, branch: Branch, class_name: str, categories: Mapping[str, float]) -> FeeStructure:
        class_name = class_name.strip()
        if not class_name:
            raise MalformedRequest("Class is required")

        cleaned: dict[str, float] = {}
        for category, amount in categories.items():
            name = category.strip()
            if not name:
                raise MalformedRequest("Category names must not be empty")
            if amount is None or not math.isfinite(amount) or amount < 0:
                raise MalformedRequest(f"Invalid amount for category '{name}'")
            cleaned[name] = float(amount)

        structure = self.find_fee_structure(branch.id, class_name)
        if structure is None:
            structure = FeeStructure(
                institution_id=branch.institution_id,
                branch_id=branch.id,
                class_name=class_name,
                categories=cleaned,
            )
            self.db.add(structure)
        else:
            structure.categories = cleaned

        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise Conflict("A fee structure for this class was created concurrently") from exc
        self.db.refresh(structure)
        logger.info(f"Fee structure saved for branch {branch.id}, class {class_name}")
        return structure

    def list_fee_structures(self, branch_id: int) -> list[FeeStructure]:
        return (
            self.db.query(FeeStructure)
            .filter(FeeStructure.branch_id == branch_id)
            .order_by(FeeStructure.class_name)
            .all()
        )

    def list_fees_due(self, branch_id: int) -> list[FeeDueItem]:
        students = (
            self.db.query(Student)
            .filter(Student.branch_id == branch_id, Student.status == RecordStatus.ACTIVE)
            .order_by(Student.class_name, Student.name)
            .all()
        )
        structures = {structure.class_name: structure.categories or {} for structure in self.list_fee_structures(branch_id)}

        payments_by_student: dict[int, list[Payment]] = defaultdict(list)
        payments = (
            self.db.query(Payment)
            .filter(Payment.branch_id == branch_id)
            .order_by(Payment.date.desc(), Payment.id.desc())
            .all()
        )
        for payment in payments:
            payments_by_student[payment.student_id].append(payment)

        results = []
        for student in students:
            status = reconcile(student.id, structures.get(student.class_name, {}), payments_by_student[student.id])
            if status.pending_amount > 0:
                results.append(
                    FeeDueItem(
                        student_id=student.id,
                        name=student.name,
                        registration_number=student.registration_number,
                        class_name=student.class_name,
                        fee_structure_total=status.fee_structure_total,
                        paid_total=status.paid_total,
                        pending_amount=status.pending_amount,
                    )
                )
        return results


def structure_total(structure: FeeStructure) -> float:
    return _money(
        sum(_configured_amount(category, amount) for category, amount in (structure.categories or {}).items())
    )
