from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from smb_erp.core.errors import (
    DuplicateKey,
    HasDependents,
    InvalidStateForDeletion,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from smb_erp.core.money import ZERO_MONEY, to_money
from smb_erp.models.accounting import Account, FiscalYear, JournalEntry
from smb_erp.models.company import CompanyInfo
from smb_erp.models.inventory import InventoryItem
from smb_erp.services.audit_service import log_audit_event
from smb_erp.services.document_numbering import JOURNAL_ENTRY_PREFIX, format_document_number

ACCOUNT_TYPES = ("asset", "liability", "equity", "revenue", "expense")
DEBIT_NORMAL_TYPES = frozenset({"asset", "expense"})
COMPANY_INFO_ID = 1


@dataclass
class AccountNode:
    account: Account
    rolled_up_balance: Decimal
    children: list["AccountNode"] = field(default_factory=list)


def _get_account(db: Session, account_id: int) -> Account:
    account = db.execute(select(Account).where(Account.id == account_id)).scalar_one_or_none()
    if not account:
        raise NotFound(f"Account {account_id} not found")
    return account


def _get_account_by_code(db: Session, code: str, *, field_name: str) -> Account:
    account = db.execute(
        select(Account).where(Account.code == code).with_for_update()
    ).scalar_one_or_none()
    if not account:
        raise NotFound(f"Account with code {code} not found", details=[{"field": field_name, "code": code}])
    return account


def _children_by_parent(accounts: list[Account]) -> dict[int | None, list[Account]]:
    grouped: dict[int | None, list[Account]] = {}
    for account in accounts:
        grouped.setdefault(account.parent_account_id, []).append(account)
    for siblings in grouped.values():
        siblings.sort(key=lambda a: a.code)
    return grouped


def build_account_tree(db: Session) -> list[AccountNode]:
    """Forest of accounts with rolled-up balances, computed fresh on every call."""
    accounts = db.execute(select(Account).order_by(Account.code.asc())).scalars().all()
    grouped = _children_by_parent(list(accounts))

    def build(account: Account) -> AccountNode:
        children = [build(child) for child in grouped.get(account.id, [])]
        rolled = to_money(account.balance) + sum((c.rolled_up_balance for c in children), ZERO_MONEY)
        return AccountNode(account=account, rolled_up_balance=to_money(rolled), children=children)

    return [build(root) for root in grouped.get(None, [])]


def rolled_up_balance(db: Session, account_id: int) -> Decimal:
    account = _get_account(db, account_id)
    grouped = _children_by_parent(list(db.execute(select(Account)).scalars().all()))

    def total(node: Account) -> Decimal:
        return to_money(node.balance) + sum((total(c) for c in grouped.get(node.id, [])), ZERO_MONEY)

    return to_money(total(account))


def _descendant_ids(db: Session, account_id: int) -> set[int]:
    grouped = _children_by_parent(list(db.execute(select(Account)).scalars().all()))
    found: set[int] = set()
    stack = [account_id]
    while stack:
        current = stack.pop()
        for child in grouped.get(current, []):
            if child.id not in found:
                found.add(child.id)
                stack.append(child.id)
    return found


def _validate_type(account_type: str) -> str:
    normalized = (account_type or "").strip().lower()
    if normalized not in ACCOUNT_TYPES:
        raise ValidationError(
            f"Account type must be one of: {', '.join(ACCOUNT_TYPES)}",
            field="type",
        )
    return normalized


def _ensure_code_free(db: Session, code: str, *, exclude_id: int | None = None) -> None:
    stmt = select(Account.id).where(Account.code == code)
    if exclude_id is not None:
        stmt = stmt.where(Account.id != exclude_id)
    if db.execute(stmt).first():
        raise DuplicateKey(f"Account code {code} already exists", details=[{"field": "code", "value": code}])


def create_account(
    db: Session,
    *,
    code: str,
    name: str,
    account_type: str,
    balance: Decimal = ZERO_MONEY,
    parent_account_id: int | None = None,
    actor_user_id: str | None = None,
) -> Account:
    normalized_type = _validate_type(account_type)
    _ensure_code_free(db, code)
    if parent_account_id is not None:
        try:
            _get_account(db, parent_account_id)
        except NotFound as exc:
            raise ValidationError(str(exc), field="parent_account_id") from exc

    account = Account(
        code=code,
        name=name,
        type=normalized_type,
        balance=to_money(balance),
        parent_account_id=parent_account_id,
    )
    db.add(account)
    db.flush()
    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action="account.create",
        target_type="account",
        target_id=account.id,
        metadata_json={"code": code, "type": normalized_type},
    )
    return account


def update_account(
    db: Session,
    account_id: int,
    *,
    changes: dict,
    actor_user_id: str | None = None,
) -> Account:
    account = _get_account(db, account_id)

    if "code" in changes and changes["code"] != account.code:
        _ensure_code_free(db, changes["code"], exclude_id=account.id)
        referenced = db.execute(
            select(func.count(JournalEntry.id)).where(
                or_(
                    JournalEntry.debit_account_code == account.code,
                    JournalEntry.credit_account_code == account.code,
                )
            )
        ).scalar_one()
        if referenced:
            raise HasDependents(f"Account {account.code} has journal entries; its code cannot change")
        account.code = changes["code"]
    if "name" in changes and changes["name"] is not None:
        account.name = changes["name"]
    if "type" in changes and changes["type"] is not None:
        account.type = _validate_type(changes["type"])
    if "parent_account_id" in changes:
        parent_id = changes["parent_account_id"]
        if parent_id is not None:
            if parent_id == account.id or parent_id in _descendant_ids(db, account.id):
                raise ValidationError(
                    "An account cannot be its own parent or a child of its descendants",
                    field="parent_account_id",
                )
            try:
                _get_account(db, parent_id)
            except NotFound as exc:
                raise ValidationError(str(exc), field="parent_account_id") from exc
        account.parent_account_id = parent_id

    db.flush()
    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action="account.update",
        target_type="account",
        target_id=account.id,
        metadata_json={"fields": sorted(changes.keys())},
    )
    return account


def delete_account(db: Session, account_id: int, *, actor_user_id: str | None = None) -> Account:
    account = _get_account(db, account_id)

    child_count = db.execute(
        select(func.count(Account.id)).where(Account.parent_account_id == account.id)
    ).scalar_one()
    if child_count:
        raise HasDependents(
            f"Account {account.code} has {child_count} child account(s)",
            details=[{"dependent": "child_accounts", "count": int(child_count)}],
        )

    entry_count = db.execute(
        select(func.count(JournalEntry.id)).where(
            or_(
                JournalEntry.debit_account_code == account.code,
                JournalEntry.credit_account_code == account.code,
            )
        )
    ).scalar_one()
    if entry_count:
        raise HasDependents(
            f"Account {account.code} is used by {entry_count} journal entr(ies)",
            details=[{"dependent": "journal_entries", "count": int(entry_count)}],
        )

    item_count = db.execute(
        select(func.count(InventoryItem.id)).where(InventoryItem.inventory_asset_account_id == account.id)
    ).scalar_one()
    if item_count:
        raise HasDependents(
            f"Account {account.code} is linked to {item_count} inventory item(s)",
            details=[{"dependent": "inventory_items", "count": int(item_count)}],
        )

    company = db.get(CompanyInfo, COMPANY_INFO_ID)
    if company is not None and company.retained_earnings_account_id == account.id:
        raise HasDependents(
            f"Account {account.code} is the retained earnings account in the accounting settings",
            details=[{"dependent": "accounting_settings", "count": 1}],
        )

    db.delete(account)
    db.flush()
    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action="account.delete",
        target_type="account",
        target_id=account_id,
        metadata_json={"code": account.code},
    )
    return account


def _balance_effect(account: Account, *, debit: bool, amount: Decimal) -> Decimal:
    increases = (account.type in DEBIT_NORMAL_TYPES) == debit
    return amount if increases else -amount


def _post(debit_account: Account, credit_account: Account, amount: Decimal, *, sign: int = 1) -> None:
    debit_account.balance = to_money(
        debit_account.balance + sign * _balance_effect(debit_account, debit=True, amount=amount)
    )
    credit_account.balance = to_money(
        credit_account.balance + sign * _balance_effect(credit_account, debit=False, amount=amount)
    )


def _company(db: Session) -> CompanyInfo:
    company = db.get(CompanyInfo, COMPANY_INFO_ID)
    if company is None:
        raise NotFound("Company information has not been set up yet")
    return company


def _resolve_fiscal_year(db: Session, entry_date: date, fiscal_year_id: int | None) -> FiscalYear | None:
    """Fiscal year an entry is booked into.

    Without an explicit id the company's active year is used; with no active
    year configured the entry is booked outside any fiscal year.
    """
    if fiscal_year_id is None:
        company = db.get(CompanyInfo, COMPANY_INFO_ID)
        if company is None or company.current_fiscal_year_id is None:
            return None
        fiscal_year_id = company.current_fiscal_year_id

    fiscal_year = db.get(FiscalYear, fiscal_year_id)
    if fiscal_year is None:
        raise ValidationError(f"Fiscal year {fiscal_year_id} not found", field="fiscal_year_id")
    if fiscal_year.is_closed:
        raise ValidationError(f"Fiscal year {fiscal_year.name} is closed", field="fiscal_year_id")
    if not fiscal_year.contains(entry_date):
        raise ValidationError(
            f"Entry date {entry_date.isoformat()} is outside fiscal year {fiscal_year.name} "
            f"({fiscal_year.start_date.isoformat()} to {fiscal_year.end_date.isoformat()})",
            field="date",
        )
    return fiscal_year


def _record_entry(
    db: Session,
    *,
    entry_date: date,
    description: str,
    debit_account: Account,
    credit_account: Account,
    amount: Decimal,
    fiscal_year: FiscalYear | None,
    actor_user_id: str | None,
) -> JournalEntry:
    entry = JournalEntry(
        entry_date=entry_date,
        description=description,
        debit_account_code=debit_account.code,
        credit_account_code=credit_account.code,
        amount=amount,
        fiscal_year_id=fiscal_year.id if fiscal_year is not None else None,
        created_by_user_id=actor_user_id,
    )
    db.add(entry)
    db.flush()
    entry.entry_number = format_document_number(JOURNAL_ENTRY_PREFIX, entry.id, entry_date)

    _post(debit_account, credit_account, amount)
    db.flush()

    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action="journal_entry.create",
        target_type="journal_entry",
        target_id=entry.id,
        metadata_json={
            "entry_number": entry.entry_number,
            "debit": debit_account.code,
            "credit": credit_account.code,
            "amount": amount,
            "fiscal_year_id": entry.fiscal_year_id,
        },
    )
    return entry


def post_journal_entry(
    db: Session,
    *,
    entry_date: date,
    description: str,
    debit_account_code: str,
    credit_account_code: str,
    amount: Decimal,
    fiscal_year_id: int | None = None,
    actor_user_id: str | None = None,
) -> JournalEntry:
    amount = to_money(amount)
    if amount <= ZERO_MONEY:
        raise ValidationError("Amount must be greater than zero", field="amount")
    if debit_account_code == credit_account_code:
        raise ValidationError("Debit and credit accounts must differ", field="credit_account_code")

    fiscal_year = _resolve_fiscal_year(db, entry_date, fiscal_year_id)
    debit_account = _get_account_by_code(db, debit_account_code, field_name="debit_account_code")
    credit_account = _get_account_by_code(db, credit_account_code, field_name="credit_account_code")

    return _record_entry(
        db,
        entry_date=entry_date,
        description=description,
        debit_account=debit_account,
        credit_account=credit_account,
        amount=amount,
        fiscal_year=fiscal_year,
        actor_user_id=actor_user_id,
    )


def get_journal_entry(db: Session, entry_id: int) -> JournalEntry:
    entry = db.execute(select(JournalEntry).where(JournalEntry.id == entry_id)).scalar_one_or_none()
    if not entry:
        raise NotFound(f"Journal entry {entry_id} not found")
    return entry


def _ensure_entry_editable(db: Session, entry: JournalEntry) -> FiscalYear | None:
    if entry.fiscal_year_id is None:
        return None
    fiscal_year = db.get(FiscalYear, entry.fiscal_year_id)
    if fiscal_year is not None and fiscal_year.is_closed:
        raise InvalidTransition(
            f"Journal entry {entry.entry_number} belongs to the closed fiscal year {fiscal_year.name}"
        )
    return fiscal_year


def update_journal_entry(
    db: Session,
    entry_id: int,
    *,
    changes: dict,
    actor_user_id: str | None = None,
) -> JournalEntry:
    """Only the date and description change; amounts and accounts are fixed once posted."""
    entry = get_journal_entry(db, entry_id)
    fiscal_year = _ensure_entry_editable(db, entry)

    new_date = changes.get("entry_date")
    if new_date is not None:
        if fiscal_year is not None and not fiscal_year.contains(new_date):
            raise ValidationError(
                f"Entry date {new_date.isoformat()} is outside fiscal year {fiscal_year.name}",
                field="date",
            )
        entry.entry_date = new_date
    if changes.get("description") is not None:
        entry.description = changes["description"]
    db.flush()

    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action="journal_entry.update",
        target_type="journal_entry",
        target_id=entry.id,
        metadata_json={"fields": sorted(changes.keys())},
    )
    return entry


def delete_journal_entry(db: Session, entry_id: int, *, actor_user_id: str | None = None) -> JournalEntry:
    entry = get_journal_entry(db, entry_id)
    _ensure_entry_editable(db, entry)
    debit_account = _get_account_by_code(db, entry.debit_account_code, field_name="debit_account_code")
    credit_account = _get_account_by_code(db, entry.credit_account_code, field_name="credit_account_code")

    _post(debit_account, credit_account, to_money(entry.amount), sign=-1)
    db.delete(entry)
    db.flush()

    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action="journal_entry.delete",
        target_type="journal_entry",
        target_id=entry_id,
        metadata_json={"entry_number": entry.entry_number, "amount": to_money(entry.amount)},
    )
    return entry


def get_fiscal_year(db: Session, fiscal_year_id: int, *, lock: bool = False) -> FiscalYear:
    stmt = select(FiscalYear).where(FiscalYear.id == fiscal_year_id)
    if lock:
        stmt = stmt.with_for_update()
    fiscal_year = db.execute(stmt).scalar_one_or_none()
    if not fiscal_year:
        raise NotFound(f"Fiscal year {fiscal_year_id} not found")
    return fiscal_year


def list_fiscal_years(db: Session) -> list[FiscalYear]:
    return list(db.execute(select(FiscalYear).order_by(FiscalYear.start_date.desc())).scalars().all())


def _validate_fiscal_range(
    db: Session, name: str, start_date: date, end_date: date, *, exclude_id: int | None = None
) -> None:
    if end_date <= start_date:
        raise ValidationError("end_date must be after start_date", field="end_date")

    name_stmt = select(FiscalYear.id).where(FiscalYear.name == name)
    overlap_stmt = select(FiscalYear).where(FiscalYear.start_date <= end_date, FiscalYear.end_date >= start_date)
    if exclude_id is not None:
        name_stmt = name_stmt.where(FiscalYear.id != exclude_id)
        overlap_stmt = overlap_stmt.where(FiscalYear.id != exclude_id)

    if db.execute(name_stmt).first():
        raise DuplicateKey(f"Fiscal year {name} already exists", details=[{"field": "name", "value": name}])
    overlapping = db.execute(overlap_stmt.order_by(FiscalYear.start_date)).scalars().first()
    if overlapping is not None:
        raise ValidationError(
            f"Dates overlap fiscal year {overlapping.name}",
            details=[
                {
                    "field": "start_date",
                    "message": "Fiscal years cannot overlap",
                    "type": "value_error",
                    "fiscal_year_id": overlapping.id,
                }
            ],
        )


def create_fiscal_year(
    db: Session,
    *,
    name: str,
    start_date: date,
    end_date: date,
    actor_user_id: str | None = None,
) -> FiscalYear:
    _validate_fiscal_range(db, name, start_date, end_date)
    fiscal_year = FiscalYear(name=name, start_date=start_date, end_date=end_date, is_closed=False)
    db.add(fiscal_year)
    db.flush()
    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action="fiscal_year.create",
        target_type="fiscal_year",
        target_id=fiscal_year.id,
        metadata_json={"name": name, "start_date": start_date, "end_date": end_date},
    )
    return fiscal_year


def update_fiscal_year(
    db: Session,
    fiscal_year_id: int,
    *,
    changes: dict,
    actor_user_id: str | None = None,
) -> FiscalYear:
    fiscal_year = get_fiscal_year(db, fiscal_year_id, lock=True)
    if fiscal_year.is_closed:
        raise InvalidTransition(f"Fiscal year {fiscal_year.name} is closed and cannot be modified")

    name = changes.get("name") or fiscal_year.name
    start_date = changes.get("start_date") or fiscal_year.start_date
    end_date = changes.get("end_date") or fiscal_year.end_date
    _validate_fiscal_range(db, name, start_date, end_date, exclude_id=fiscal_year.id)

    outside = db.execute(
        select(func.count(JournalEntry.id)).where(
            JournalEntry.fiscal_year_id == fiscal_year.id,
            or_(JournalEntry.entry_date < start_date, JournalEntry.entry_date > end_date),
        )
    ).scalar_one()
    if outside:
        raise ValidationError(
            f"{outside} journal entr(ies) of {fiscal_year.name} would fall outside the new dates",
            field="start_date",
        )

    fiscal_year.name = name
    fiscal_year.start_date = start_date
    fiscal_year.end_date = end_date
    db.flush()
    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action="fiscal_year.update",
        target_type="fiscal_year",
        target_id=fiscal_year.id,
        metadata_json={"fields": sorted(changes.keys())},
    )
    return fiscal_year


def delete_fiscal_year(db: Session, fiscal_year_id: int, *, actor_user_id: str | None = None) -> FiscalYear:
    fiscal_year = get_fiscal_year(db, fiscal_year_id, lock=True)
    if fiscal_year.is_closed:
        raise InvalidStateForDeletion(f"Fiscal year {fiscal_year.name} is closed and cannot be deleted")
    company = db.get(CompanyInfo, COMPANY_INFO_ID)
    if company is not None and company.current_fiscal_year_id == fiscal_year.id:
        raise InvalidStateForDeletion(f"Fiscal year {fiscal_year.name} is the active fiscal year")

    entry_count = db.execute(
        select(func.count(JournalEntry.id)).where(JournalEntry.fiscal_year_id == fiscal_year.id)
    ).scalar_one()
    if entry_count:
        raise HasDependents(
            f"Fiscal year {fiscal_year.name} has {entry_count} journal entr(ies)",
            details=[{"dependent": "journal_entries", "count": int(entry_count)}],
        )

    db.delete(fiscal_year)
    db.flush()
    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action="fiscal_year.delete",
        target_type="fiscal_year",
        target_id=fiscal_year_id,
        metadata_json={"name": fiscal_year.name},
    )
    return fiscal_year


def get_accounting_settings(db: Session) -> CompanyInfo:
    return _company(db)


def update_accounting_settings(
    db: Session,
    *,
    current_fiscal_year_id: int | None,
    retained_earnings_account_id: int | None,
    actor_user_id: str | None = None,
) -> CompanyInfo:
    company = _company(db)

    if current_fiscal_year_id is not None:
        fiscal_year = db.get(FiscalYear, current_fiscal_year_id)
        if fiscal_year is None or fiscal_year.is_closed:
            raise ValidationError(
                "The active fiscal year must exist and be open",
                field="current_fiscal_year_id",
            )
    if retained_earnings_account_id is not None:
        account = db.get(Account, retained_earnings_account_id)
        if account is None or account.type != "equity":
            raise ValidationError(
                "The retained earnings account must be an existing equity account",
                field="retained_earnings_account_id",
            )

    company.current_fiscal_year_id = current_fiscal_year_id
    company.retained_earnings_account_id = retained_earnings_account_id
    db.flush()
    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action="accounting_settings.update",
        target_type="company_info",
        target_id=COMPANY_INFO_ID,
        metadata_json={
            "current_fiscal_year_id": current_fiscal_year_id,
            "retained_earnings_account_id": retained_earnings_account_id,
        },
    )
    return company


@dataclass
class FiscalYearClosing:
    fiscal_year: FiscalYear
    net_income: Decimal
    entries: list[JournalEntry]


def _net_movements(db: Session, fiscal_year_id: int) -> dict[str, Decimal]:
    """Debits minus credits per account code over one fiscal year's entries."""
    movements: dict[str, Decimal] = {}
    rows = db.execute(
        select(JournalEntry.debit_account_code, JournalEntry.credit_account_code, JournalEntry.amount).where(
            JournalEntry.fiscal_year_id == fiscal_year_id
        )
    ).all()
    for debit_code, credit_code, amount in rows:
        movements[debit_code] = movements.get(debit_code, ZERO_MONEY) + to_money(amount)
        movements[credit_code] = movements.get(credit_code, ZERO_MONEY) - to_money(amount)
    return movements


def close_fiscal_year(db: Session, *, actor_user_id: str | None = None) -> FiscalYearClosing:
    """Close the active fiscal year.

    Every revenue and expense account with a net movement in the year is
    zeroed against the retained earnings account with an entry dated on the
    last day of the year; the year is then locked for edits.
    """
    company = _company(db)
    if company.current_fiscal_year_id is None:
        raise ValidationError("No active fiscal year is configured", field="current_fiscal_year_id")
    if company.retained_earnings_account_id is None:
        raise ValidationError(
            "No retained earnings account is configured", field="retained_earnings_account_id"
        )

    fiscal_year = get_fiscal_year(db, company.current_fiscal_year_id, lock=True)
    if fiscal_year.is_closed:
        raise InvalidTransition(f"Fiscal year {fiscal_year.name} is already closed")
    retained = _get_account(db, company.retained_earnings_account_id)
    retained = _get_account_by_code(db, retained.code, field_name="retained_earnings_account_id")

    movements = _net_movements(db, fiscal_year.id)
    result_accounts = db.execute(
        select(Account)
        .where(Account.code.in_(sorted(movements)), Account.type.in_(("revenue", "expense")))
        .order_by(Account.code.asc())
        .with_for_update()
    ).scalars().all()

    entries: list[JournalEntry] = []
    net_income = ZERO_MONEY
    for account in result_accounts:
        movement = movements[account.code]
        if movement == ZERO_MONEY:
            continue
        # movement > 0 means a debit balance; the closing entry credits it back
        if movement > ZERO_MONEY:
            debit_account, credit_account = retained, account
        else:
            debit_account, credit_account = account, retained
        net_income -= movement
        entries.append(
            _record_entry(
                db,
                entry_date=fiscal_year.end_date,
                description=f"Closing {fiscal_year.name}: {account.name}",
                debit_account=debit_account,
                credit_account=credit_account,
                amount=to_money(abs(movement)),
                fiscal_year=fiscal_year,
                actor_user_id=actor_user_id,
            )
        )

    fiscal_year.is_closed = True
    fiscal_year.closed_at = datetime.now(timezone.utc)
    fiscal_year.closed_by_user_id = actor_user_id
    db.flush()
    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action="fiscal_year.close",
        target_type="fiscal_year",
        target_id=fiscal_year.id,
        metadata_json={
            "name": fiscal_year.name,
            "net_income": to_money(net_income),
            "closing_entries": len(entries),
        },
    )
    return FiscalYearClosing(fiscal_year=fiscal_year, net_income=to_money(net_income), entries=entries)
