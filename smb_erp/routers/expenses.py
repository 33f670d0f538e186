from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from smb_erp.core.api_docs import error_responses
from smb_erp.core.deps import get_db
from smb_erp.core.errors import InvalidStateForDeletion, InvalidTransition, NotFound, ValidationError
from smb_erp.core.money import to_money
from smb_erp.core.permissions import require_permission
from smb_erp.core.security_current import CurrentActor
from smb_erp.models.expense import Expense
from smb_erp.schemas.common import OkOut, PaginationMeta
from smb_erp.schemas.expense import (
    ExpenseCreate,
    ExpenseListOut,
    ExpenseOut,
    ExpenseSavedOut,
    ExpenseStatusUpdateIn,
    ExpenseUpdate,
)
from smb_erp.services.audit_service import log_audit_event

router = APIRouter(prefix="/expenses", tags=["expenses"])

# "paid" is reached only by registering a payment.
ALLOWED_EXPENSE_TRANSITIONS: dict[str, set[str]] = {
    "submitted": {"approved", "rejected"},
    "approved": {"rejected"},
    "rejected": {"submitted"},
    "paid": set(),
}


def _expense_out(expense: Expense) -> ExpenseOut:
    return ExpenseOut(
        id=expense.id,
        expense_date=expense.expense_date,
        category=expense.category,
        description=expense.description,
        amount=float(to_money(expense.amount)),
        vendor=expense.vendor,
        status=expense.status,
        receipt_url=expense.receipt_url,
        created_at=expense.created_at,
        updated_at=expense.updated_at,
    )


def _get_expense(db: Session, expense_id: int) -> Expense:
    expense = db.execute(select(Expense).where(Expense.id == expense_id)).scalar_one_or_none()
    if not expense:
        raise NotFound(f"Expense {expense_id} not found")
    return expense


@router.post(
    "",
    response_model=ExpenseSavedOut,
    status_code=201,
    summary="Submit expense",
    responses=error_responses(401, 403, 422, 500),
)
def create_expense(
    payload: ExpenseCreate,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("expenses.manage")),
):
    expense = Expense(
        expense_date=payload.expense_date,
        category=payload.category,
        description=payload.description,
        amount=to_money(payload.amount),
        vendor=payload.vendor,
        receipt_url=payload.receipt_url,
        status="submitted",
    )
    db.add(expense)
    db.flush()
    log_audit_event(
        db,
        actor_user_id=actor.user_id,
        action="expense.create",
        target_type="expense",
        target_id=expense.id,
        metadata_json={"category": expense.category, "amount": to_money(expense.amount)},
    )
    db.commit()
    db.refresh(expense)
    return ExpenseSavedOut(**_expense_out(expense).model_dump())


@router.get(
    "",
    response_model=ExpenseListOut,
    summary="List expenses",
    responses=error_responses(401, 403, 422, 500),
)
def list_expenses(
    status: str | None = Query(default=None),
    category: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("expenses.view")),
):
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date cannot be before start_date", field="end_date")
    normalized_status = status.strip().lower() if status else None
    if normalized_status and normalized_status not in ALLOWED_EXPENSE_TRANSITIONS:
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(ALLOWED_EXPENSE_TRANSITIONS))}",
            field="status",
        )

    filters = []
    if normalized_status:
        filters.append(Expense.status == normalized_status)
    if category:
        filters.append(Expense.category == category)
    if start_date:
        filters.append(Expense.expense_date >= start_date)
    if end_date:
        filters.append(Expense.expense_date <= end_date)

    total_count = int(db.execute(select(func.count(Expense.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Expense)
        .where(*filters)
        .order_by(Expense.expense_date.desc(), Expense.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [_expense_out(row) for row in rows]
    count = len(items)
    return ExpenseListOut(
        pagination=PaginationMeta(
            total=total_count,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total_count,
        ),
        status=normalized_status,
        category=category,
        start_date=start_date,
        end_date=end_date,
        items=items,
    )


@router.get(
    "/{expense_id}",
    response_model=ExpenseOut,
    summary="Get expense",
    responses=error_responses(401, 403, 404, 500),
)
def get_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("expenses.view")),
):
    return _expense_out(_get_expense(db, expense_id))


@router.patch(
    "/{expense_id}",
    response_model=ExpenseSavedOut,
    summary="Update expense",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("expenses.manage")),
):
    expense = _get_expense(db, expense_id)
    if expense.status == "paid":
        raise InvalidTransition(f"Expense {expense.id} is paid and cannot be edited")

    changes = payload.model_dump(exclude_unset=True)
    for field_name in ("expense_date", "category", "description"):
        if changes.get(field_name) is not None:
            setattr(expense, field_name, changes[field_name])
    if changes.get("amount") is not None:
        expense.amount = to_money(changes["amount"])
    for field_name in ("vendor", "receipt_url"):
        if field_name in changes:
            setattr(expense, field_name, changes[field_name])

    log_audit_event(
        db,
        actor_user_id=actor.user_id,
        action="expense.update",
        target_type="expense",
        target_id=expense.id,
        metadata_json={"fields": sorted(changes.keys())},
    )
    db.commit()
    db.refresh(expense)
    return ExpenseSavedOut(**_expense_out(expense).model_dump())


@router.patch(
    "/{expense_id}/status",
    response_model=ExpenseSavedOut,
    summary="Approve, reject or resubmit an expense",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def update_expense_status(
    expense_id: int,
    payload: ExpenseStatusUpdateIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("expenses.manage")),
):
    expense = _get_expense(db, expense_id)
    current_status = expense.status
    next_status = payload.status
    if current_status != next_status:
        allowed = ALLOWED_EXPENSE_TRANSITIONS.get(current_status, set())
        if next_status not in allowed:
            hint = " Register a payment to mark it paid." if next_status == "paid" else ""
            raise InvalidTransition(
                f"Cannot move expense from '{current_status}' to '{next_status}'.{hint}"
            )
        expense.status = next_status
        log_audit_event(
            db,
            actor_user_id=actor.user_id,
            action="expense.status.update",
            target_type="expense",
            target_id=expense.id,
            metadata_json={"from_status": current_status, "to_status": next_status},
        )
        db.commit()
        db.refresh(expense)
    return ExpenseSavedOut(**_expense_out(expense).model_dump())


@router.delete(
    "/{expense_id}",
    response_model=OkOut,
    summary="Delete expense",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("expenses.manage")),
):
    expense = _get_expense(db, expense_id)
    if expense.status == "paid":
        raise InvalidStateForDeletion(f"Expense {expense.id} is paid and cannot be deleted")

    db.delete(expense)
    log_audit_event(
        db,
        actor_user_id=actor.user_id,
        action="expense.delete",
        target_type="expense",
        target_id=expense_id,
        metadata_json={"category": expense.category, "amount": to_money(expense.amount)},
    )
    db.commit()
    return OkOut()
