from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from smb_erp.core.api_docs import error_responses
from smb_erp.core.deps import get_db
from smb_erp.core.errors import ValidationError
from smb_erp.core.money import sum_money, to_money
from smb_erp.core.permissions import require_permission
from smb_erp.core.security_current import CurrentActor
from smb_erp.models.payment import Payment
from smb_erp.schemas.common import PaginationMeta
from smb_erp.schemas.payment import (
    PaymentCreateIn,
    PaymentListOut,
    PaymentOut,
    PaymentSavedOut,
    PendingPaymentListOut,
    PendingPaymentOut,
)
from smb_erp.services import payment_service

router = APIRouter(prefix="/payments", tags=["payments"])


def _payment_out(payment: Payment) -> PaymentOut:
    return PaymentOut(
        id=payment.id,
        source_type=payment.source_type,
        source_id=payment.source_id,
        payment_date=payment.payment_date,
        amount=float(to_money(payment.amount)),
        payment_method=payment.payment_method,
        reference_number=payment.reference_number,
        notes=payment.notes,
        created_by_user_id=payment.created_by_user_id,
        created_at=payment.created_at,
    )


@router.get(
    "/pending",
    response_model=PendingPaymentListOut,
    summary="Items awaiting payment",
    description="Delivered sale orders, received purchase orders and approved expenses.",
    responses=error_responses(401, 403, 500),
)
def list_pending_payments(
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("payments.view")),
):
    pending = payment_service.list_pending(db)
    return PendingPaymentListOut(
        total_amount=float(sum_money(p.amount for p in pending)),
        items=[
            PendingPaymentOut(
                source_type=p.source_type,
                source_id=p.source_id,
                reference=p.reference,
                counterpart=p.counterpart,
                due_date=p.due_date,
                amount=float(p.amount),
            )
            for p in pending
        ],
    )


@router.post(
    "",
    response_model=PaymentSavedOut,
    status_code=201,
    summary="Register payment",
    description="Records the payment and marks the order or expense as paid in the same transaction.",
    responses=error_responses(401, 403, 404, 409, 422, 500, 503),
)
def register_payment(
    payload: PaymentCreateIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("payments.manage")),
):
    payment = payment_service.register_payment(
        db,
        source_type=payload.source_type,
        source_id=payload.source_id,
        payment_date=payload.payment_date,
        payment_method=payload.payment_method,
        amount=payload.amount,
        reference_number=payload.reference_number,
        notes=payload.notes,
        actor_user_id=actor.user_id,
    )
    db.commit()
    db.refresh(payment)
    return PaymentSavedOut(**_payment_out(payment).model_dump())


@router.get(
    "",
    response_model=PaymentListOut,
    summary="List payments",
    responses=error_responses(401, 403, 422, 500),
)
def list_payments(
    source_type: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("payments.view")),
):
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date cannot be before start_date", field="end_date")
    if source_type and source_type not in payment_service.PAYMENT_SOURCES:
        raise ValidationError(
            f"source_type must be one of: {', '.join(payment_service.PAYMENT_SOURCES)}",
            field="source_type",
        )

    filters = []
    if source_type:
        filters.append(Payment.source_type == source_type)
    if start_date:
        filters.append(Payment.payment_date >= start_date)
    if end_date:
        filters.append(Payment.payment_date <= end_date)

    total_count = int(db.execute(select(func.count(Payment.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Payment)
        .where(*filters)
        .order_by(Payment.payment_date.desc(), Payment.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [_payment_out(row) for row in rows]
    count = len(items)
    return PaymentListOut(
        pagination=PaginationMeta(
            total=total_count,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total_count,
        ),
        source_type=source_type,
        start_date=start_date,
        end_date=end_date,
        items=items,
    )
