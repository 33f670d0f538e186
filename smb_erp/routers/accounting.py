from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from smb_erp.core.api_docs import error_responses
from smb_erp.core.deps import get_db
from smb_erp.core.errors import ValidationError
from smb_erp.core.money import to_money
from smb_erp.core.permissions import require_permission
from smb_erp.core.security_current import CurrentActor
from smb_erp.models.accounting import Account, FiscalYear, JournalEntry
from smb_erp.models.company import CompanyInfo
from smb_erp.schemas.accounting import (
    AccountCreateIn,
    AccountListOut,
    AccountOut,
    AccountSavedOut,
    AccountTreeNodeOut,
    AccountTreeOut,
    AccountUpdateIn,
    AccountingSettingsIn,
    AccountingSettingsOut,
    FiscalYearCloseOut,
    FiscalYearCreateIn,
    FiscalYearListOut,
    FiscalYearOut,
    FiscalYearSavedOut,
    FiscalYearUpdateIn,
    JournalEntryCreateIn,
    JournalEntryListOut,
    JournalEntryOut,
    JournalEntrySavedOut,
    JournalEntryUpdateIn,
)
from smb_erp.schemas.common import OkOut, PaginationMeta
from smb_erp.services import accounting_service
from smb_erp.services.accounting_service import AccountNode

router = APIRouter(prefix="/accounting", tags=["accounting"])


def _account_out(account: Account, rolled_up=None) -> AccountOut:
    return AccountOut(
        id=account.id,
        code=account.code,
        name=account.name,
        type=account.type,
        balance=float(to_money(account.balance)),
        parent_account_id=account.parent_account_id,
        rolled_up_balance=float(rolled_up) if rolled_up is not None else None,
    )


def _tree_node_out(node: AccountNode) -> AccountTreeNodeOut:
    return AccountTreeNodeOut(
        id=node.account.id,
        code=node.account.code,
        name=node.account.name,
        type=node.account.type,
        balance=float(to_money(node.account.balance)),
        rolled_up_balance=float(node.rolled_up_balance),
        children=[_tree_node_out(child) for child in node.children],
    )


def _entry_out(entry: JournalEntry) -> JournalEntryOut:
    return JournalEntryOut(
        id=entry.id,
        entry_number=entry.entry_number,
        entry_date=entry.entry_date,
        description=entry.description,
        debit_account_code=entry.debit_account_code,
        credit_account_code=entry.credit_account_code,
        amount=float(to_money(entry.amount)),
        fiscal_year_id=entry.fiscal_year_id,
        created_at=entry.created_at,
    )


@router.get(
    "/accounts",
    response_model=AccountListOut,
    summary="List chart of accounts",
    responses=error_responses(401, 403, 500),
)
def list_accounts(
    type: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.view")),
):
    stmt = select(Account).order_by(Account.code.asc())
    if type:
        stmt = stmt.where(Account.type == type.strip().lower())
    rows = db.execute(stmt).scalars().all()
    return AccountListOut(items=[_account_out(row) for row in rows])


@router.get(
    "/accounts/tree",
    response_model=AccountTreeOut,
    summary="Chart of accounts as a tree with rolled-up balances",
    responses=error_responses(401, 403, 500),
)
def account_tree(
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.view")),
):
    return AccountTreeOut(items=[_tree_node_out(node) for node in accounting_service.build_account_tree(db)])


@router.post(
    "/accounts",
    response_model=AccountSavedOut,
    status_code=201,
    summary="Create account",
    responses=error_responses(401, 403, 409, 422, 500),
)
def create_account(
    payload: AccountCreateIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.manage")),
):
    account = accounting_service.create_account(
        db,
        code=payload.code,
        name=payload.name,
        account_type=payload.type,
        balance=payload.balance,
        parent_account_id=payload.parent_account_id,
        actor_user_id=actor.user_id,
    )
    db.commit()
    db.refresh(account)
    return AccountSavedOut(**_account_out(account).model_dump())


@router.get(
    "/accounts/{account_id}",
    response_model=AccountOut,
    summary="Get account with its rolled-up balance",
    responses=error_responses(401, 403, 404, 500),
)
def get_account(
    account_id: int,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.view")),
):
    rolled_up = accounting_service.rolled_up_balance(db, account_id)
    account = db.execute(select(Account).where(Account.id == account_id)).scalar_one()
    return _account_out(account, rolled_up)


@router.patch(
    "/accounts/{account_id}",
    response_model=AccountSavedOut,
    summary="Update account",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def update_account(
    account_id: int,
    payload: AccountUpdateIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.manage")),
):
    account = accounting_service.update_account(
        db,
        account_id,
        changes=payload.model_dump(exclude_unset=True),
        actor_user_id=actor.user_id,
    )
    db.commit()
    db.refresh(account)
    return AccountSavedOut(**_account_out(account).model_dump())


@router.delete(
    "/accounts/{account_id}",
    response_model=OkOut,
    summary="Delete account",
    description="Accounts with child accounts, journal entries or linked inventory items cannot be deleted.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_account(
    account_id: int,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.manage")),
):
    accounting_service.delete_account(db, account_id, actor_user_id=actor.user_id)
    db.commit()
    return OkOut()


@router.get(
    "/journal-entries",
    response_model=JournalEntryListOut,
    summary="List journal entries",
    responses=error_responses(401, 403, 422, 500),
)
def list_journal_entries(
    account_code: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    fiscal_year_id: int | None = Query(default=None, gt=0),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.view")),
):
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date cannot be before start_date", field="end_date")

    filters = []
    if account_code:
        filters.append(
            or_(
                JournalEntry.debit_account_code == account_code,
                JournalEntry.credit_account_code == account_code,
            )
        )
    if start_date:
        filters.append(JournalEntry.entry_date >= start_date)
    if end_date:
        filters.append(JournalEntry.entry_date <= end_date)
    if fiscal_year_id:
        filters.append(JournalEntry.fiscal_year_id == fiscal_year_id)

    total_count = int(db.execute(select(func.count(JournalEntry.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(JournalEntry)
        .where(*filters)
        .order_by(JournalEntry.entry_date.desc(), JournalEntry.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [_entry_out(row) for row in rows]
    count = len(items)
    return JournalEntryListOut(
        pagination=PaginationMeta(
            total=total_count,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total_count,
        ),
        items=items,
    )


@router.post(
    "/journal-entries",
    response_model=JournalEntrySavedOut,
    status_code=201,
    summary="Post journal entry",
    description=(
        "Moves both account balances by their normal side: assets and expenses grow "
        "with debits, liabilities, equity and revenue grow with credits. "
        "Without a fiscal_year_id the entry is booked into the active fiscal year, if one is set."
    ),
    responses=error_responses(401, 403, 404, 422, 500, 503),
)
def create_journal_entry(
    payload: JournalEntryCreateIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.manage")),
):
    entry = accounting_service.post_journal_entry(
        db,
        entry_date=payload.entry_date,
        description=payload.description,
        debit_account_code=payload.debit_account_code.strip(),
        credit_account_code=payload.credit_account_code.strip(),
        amount=payload.amount,
        fiscal_year_id=payload.fiscal_year_id,
        actor_user_id=actor.user_id,
    )
    db.commit()
    db.refresh(entry)
    return JournalEntrySavedOut(**_entry_out(entry).model_dump())


@router.get(
    "/journal-entries/{entry_id}",
    response_model=JournalEntryOut,
    summary="Get journal entry",
    responses=error_responses(401, 403, 404, 500),
)
def get_journal_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.view")),
):
    return _entry_out(accounting_service.get_journal_entry(db, entry_id))


@router.patch(
    "/journal-entries/{entry_id}",
    response_model=JournalEntrySavedOut,
    summary="Update journal entry",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def update_journal_entry(
    entry_id: int,
    payload: JournalEntryUpdateIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.manage")),
):
    entry = accounting_service.update_journal_entry(
        db,
        entry_id,
        changes=payload.model_dump(exclude_unset=True),
        actor_user_id=actor.user_id,
    )
    db.commit()
    db.refresh(entry)
    return JournalEntrySavedOut(**_entry_out(entry).model_dump())


@router.delete(
    "/journal-entries/{entry_id}",
    response_model=OkOut,
    summary="Delete journal entry",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_journal_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.manage")),
):
    accounting_service.delete_journal_entry(db, entry_id, actor_user_id=actor.user_id)
    db.commit()
    return OkOut()


def _fiscal_year_out(fiscal_year: FiscalYear, active_id: int | None = None) -> FiscalYearOut:
    return FiscalYearOut(
        id=fiscal_year.id,
        name=fiscal_year.name,
        start_date=fiscal_year.start_date,
        end_date=fiscal_year.end_date,
        is_closed=fiscal_year.is_closed,
        is_active=active_id is not None and fiscal_year.id == active_id,
        closed_at=fiscal_year.closed_at,
    )


def _active_fiscal_year_id(db: Session) -> int | None:
    company = db.get(CompanyInfo, accounting_service.COMPANY_INFO_ID)
    return company.current_fiscal_year_id if company is not None else None


@router.get(
    "/fiscal-years",
    response_model=FiscalYearListOut,
    summary="List fiscal years",
    responses=error_responses(401, 403, 500),
)
def list_fiscal_years(
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.view")),
):
    active_id = _active_fiscal_year_id(db)
    return FiscalYearListOut(
        items=[_fiscal_year_out(row, active_id) for row in accounting_service.list_fiscal_years(db)]
    )


@router.post(
    "/fiscal-years",
    response_model=FiscalYearSavedOut,
    status_code=201,
    summary="Create fiscal year",
    description="Fiscal years may not overlap and names are unique.",
    responses=error_responses(401, 403, 409, 422, 500),
)
def create_fiscal_year(
    payload: FiscalYearCreateIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.manage")),
):
    fiscal_year = accounting_service.create_fiscal_year(
        db,
        name=payload.name,
        start_date=payload.start_date,
        end_date=payload.end_date,
        actor_user_id=actor.user_id,
    )
    db.commit()
    db.refresh(fiscal_year)
    return FiscalYearSavedOut(**_fiscal_year_out(fiscal_year, _active_fiscal_year_id(db)).model_dump())


@router.post(
    "/fiscal-years/close",
    response_model=FiscalYearCloseOut,
    summary="Close the active fiscal year",
    description=(
        "Moves the net balance of every revenue and expense account into the retained "
        "earnings account and locks the year's journal entries."
    ),
    responses=error_responses(401, 403, 404, 409, 422, 500, 503),
)
def close_fiscal_year(
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.manage")),
):
    closing = accounting_service.close_fiscal_year(db, actor_user_id=actor.user_id)
    db.commit()
    db.refresh(closing.fiscal_year)
    for entry in closing.entries:
        db.refresh(entry)
    return FiscalYearCloseOut(
        fiscal_year=_fiscal_year_out(closing.fiscal_year, _active_fiscal_year_id(db)),
        net_income=float(closing.net_income),
        closing_entries=[_entry_out(entry) for entry in closing.entries],
    )


@router.patch(
    "/fiscal-years/{fiscal_year_id}",
    response_model=FiscalYearSavedOut,
    summary="Update fiscal year",
    description="Closed fiscal years cannot be modified.",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def update_fiscal_year(
    fiscal_year_id: int,
    payload: FiscalYearUpdateIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.manage")),
):
    fiscal_year = accounting_service.update_fiscal_year(
        db,
        fiscal_year_id,
        changes=payload.model_dump(exclude_unset=True),
        actor_user_id=actor.user_id,
    )
    db.commit()
    db.refresh(fiscal_year)
    return FiscalYearSavedOut(**_fiscal_year_out(fiscal_year, _active_fiscal_year_id(db)).model_dump())


@router.delete(
    "/fiscal-years/{fiscal_year_id}",
    response_model=OkOut,
    summary="Delete fiscal year",
    description="Closed years, the active year and years with journal entries cannot be deleted.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_fiscal_year(
    fiscal_year_id: int,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.manage")),
):
    accounting_service.delete_fiscal_year(db, fiscal_year_id, actor_user_id=actor.user_id)
    db.commit()
    return OkOut()


@router.get(
    "/settings",
    response_model=AccountingSettingsOut,
    summary="Get accounting settings",
    responses=error_responses(401, 403, 404, 500),
)
def get_accounting_settings(
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.view")),
):
    company = accounting_service.get_accounting_settings(db)
    return AccountingSettingsOut(
        current_fiscal_year_id=company.current_fiscal_year_id,
        retained_earnings_account_id=company.retained_earnings_account_id,
    )


@router.put(
    "/settings",
    response_model=AccountingSettingsOut,
    summary="Set the active fiscal year and the retained earnings account",
    responses=error_responses(401, 403, 404, 422, 500),
)
def update_accounting_settings(
    payload: AccountingSettingsIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("accounting.manage")),
):
    company = accounting_service.update_accounting_settings(
        db,
        current_fiscal_year_id=payload.current_fiscal_year_id,
        retained_earnings_account_id=payload.retained_earnings_account_id,
        actor_user_id=actor.user_id,
    )
    db.commit()
    db.refresh(company)
    return AccountingSettingsOut(
        current_fiscal_year_id=company.current_fiscal_year_id,
        retained_earnings_account_id=company.retained_earnings_account_id,
    )
