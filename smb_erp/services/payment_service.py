from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from smb_erp.core.errors import InvalidTransition, NotFound, ValidationError
from smb_erp.core.money import ZERO_MONEY, to_money
from smb_erp.models.contact import Contact
from smb_erp.models.expense import Expense
from smb_erp.models.order import PurchaseOrder, SaleOrder
from smb_erp.models.payment import Payment
from smb_erp.services import order_service
from smb_erp.services.audit_service import log_audit_event
from smb_erp.services.order_workflow import PAID, PAYABLE_STATUS, OrderKind

PAYMENT_SOURCES = ("sale_order", "purchase_order", "expense")
PAYMENT_METHODS = ("cash", "transfer", "card", "check", "other")

EXPENSE_PAYABLE_STATUS = "approved"
EXPENSE_PAID_STATUS = "paid"

_ORDER_KIND_BY_SOURCE = {
    "sale_order": OrderKind.SALE,
    "purchase_order": OrderKind.PURCHASE,
}


@dataclass(frozen=True)
class PendingPayment:
    source_type: str
    source_id: int
    reference: str
    counterpart: str | None
    due_date: date
    amount: Decimal


def list_pending(db: Session) -> list[PendingPayment]:
    """Delivered sales, received purchases and approved expenses, oldest first."""
    pending: list[PendingPayment] = []

    for header, source_type, kind in (
        (SaleOrder, "sale_order", OrderKind.SALE),
        (PurchaseOrder, "purchase_order", OrderKind.PURCHASE),
    ):
        rows = db.execute(
            select(header, Contact.name)
            .outerjoin(Contact, Contact.id == header.counterpart_id)
            .where(header.status == PAYABLE_STATUS[kind])
        ).all()
        for order, counterpart in rows:
            pending.append(
                PendingPayment(
                    source_type=source_type,
                    source_id=order.id,
                    reference=order.document_number,
                    counterpart=counterpart,
                    due_date=order.order_date,
                    amount=to_money(order.total_amount),
                )
            )

    expenses = db.execute(
        select(Expense).where(Expense.status == EXPENSE_PAYABLE_STATUS)
    ).scalars().all()
    for expense in expenses:
        pending.append(
            PendingPayment(
                source_type="expense",
                source_id=expense.id,
                reference=expense.description,
                counterpart=expense.vendor,
                due_date=expense.expense_date,
                amount=to_money(expense.amount),
            )
        )

    pending.sort(key=lambda p: (p.due_date, p.source_type, p.source_id))
    return pending


def _settle_expense(db: Session, expense_id: int) -> Decimal:
    expense = db.execute(
        select(Expense).where(Expense.id == expense_id).with_for_update()
    ).scalar_one_or_none()
    if not expense:
        raise NotFound(f"Expense {expense_id} not found")
    if expense.status != EXPENSE_PAYABLE_STATUS:
        raise InvalidTransition(
            f"Expense {expense_id} is {expense.status}; only approved expenses can be paid"
        )
    expense.status = EXPENSE_PAID_STATUS
    return to_money(expense.amount)


def _settle_order(db: Session, kind: OrderKind, order_id: int, actor_user_id: str | None) -> Decimal:
    order = order_service.lock_order(db, kind, order_id)
    payable = PAYABLE_STATUS[kind]
    if order.status != payable:
        raise InvalidTransition(
            f"{order.document_number} is {order.status}; payments are registered once it is {payable}"
        )
    order_service.change_status(db, kind, order_id, PAID, actor_user_id=actor_user_id)
    return to_money(order.total_amount)


def register_payment(
    db: Session,
    *,
    source_type: str,
    source_id: int,
    payment_date: date,
    payment_method: str,
    amount: Decimal | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    actor_user_id: str | None = None,
) -> Payment:
    if source_type not in PAYMENT_SOURCES:
        raise ValidationError(
            f"source_type must be one of: {', '.join(PAYMENT_SOURCES)}",
            field="source_type",
        )
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}",
            field="payment_method",
        )

    if source_type == "expense":
        due = _settle_expense(db, source_id)
    else:
        due = _settle_order(db, _ORDER_KIND_BY_SOURCE[source_type], source_id, actor_user_id)

    paid_amount = to_money(amount) if amount is not None else due
    if paid_amount <= ZERO_MONEY:
        raise ValidationError("Payment amount must be greater than zero", field="amount")

    payment = Payment(
        source_type=source_type,
        source_id=source_id,
        payment_date=payment_date,
        amount=paid_amount,
        payment_method=payment_method,
        reference_number=reference_number,
        notes=notes,
        created_by_user_id=actor_user_id,
    )
    db.add(payment)
    db.flush()

    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action="payment.create",
        target_type=source_type,
        target_id=source_id,
        metadata_json={
            "payment_id": payment.id,
            "amount": paid_amount,
            "method": payment_method,
        },
    )
    return payment
