"""Purchase and sale order aggregate: creation, edits, status changes and deletion.

Functions here never commit. Routers commit once the whole operation has
succeeded, and the session dependency rolls back on any exception, so a
failure at any step leaves headers, lines and stock untouched.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from smb_erp.core.errors import (
    InvalidStateForDeletion,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from smb_erp.core.money import line_extension, sum_money, to_money
from smb_erp.models.contact import Contact
from smb_erp.models.inventory import InventoryItem
from smb_erp.models.order import PurchaseOrder, PurchaseOrderItem, SaleOrder, SaleOrderItem
from smb_erp.schemas.order import OrderLineIn
from smb_erp.services.audit_service import log_audit_event
from smb_erp.services.document_numbering import next_number
from smb_erp.services.events import queue_event
from smb_erp.services.order_workflow import (
    CANCELLED,
    DRAFT,
    OrderKind,
    consumes_stock,
    ensure_transition_allowed,
    is_terminal,
    validate_status,
)
from smb_erp.services.stock_ledger import (
    StockLine,
    consume_lines,
    ensure_available,
    ensure_items_exist,
    lock_items,
    restock_lines,
)


@dataclass(frozen=True)
class OrderModels:
    header: type
    line: type
    counterpart_type: str
    reference_type: str


ORDER_MODELS: dict[OrderKind, OrderModels] = {
    OrderKind.PURCHASE: OrderModels(
        header=PurchaseOrder,
        line=PurchaseOrderItem,
        counterpart_type="vendor",
        reference_type="purchase_order",
    ),
    OrderKind.SALE: OrderModels(
        header=SaleOrder,
        line=SaleOrderItem,
        counterpart_type="customer",
        reference_type="sale_order",
    ),
}

DELETABLE_STATUSES = frozenset({DRAFT, CANCELLED})


@dataclass(frozen=True)
class StatusChange:
    order: PurchaseOrder | SaleOrder
    previous_status: str
    changed: bool


def _stock_lines(lines: Sequence) -> list[StockLine]:
    return [
        StockLine(index=index, inventory_item_id=line.inventory_item_id, quantity=line.quantity)
        for index, line in enumerate(lines)
    ]


def _resolve_counterpart(db: Session, kind: OrderKind, counterpart_id: int) -> Contact:
    models = ORDER_MODELS[kind]
    contact = db.execute(select(Contact).where(Contact.id == counterpart_id)).scalar_one_or_none()
    if not contact:
        raise NotFound(f"Contact {counterpart_id} not found")
    if contact.type != models.counterpart_type:
        field = "vendor_id" if kind == OrderKind.PURCHASE else "customer_id"
        raise ValidationError(
            f"Contact {counterpart_id} is a {contact.type}, expected a {models.counterpart_type}",
            field=field,
        )
    return contact


def lock_order(db: Session, kind: OrderKind, order_id: int):
    header = ORDER_MODELS[kind].header
    order = db.execute(
        select(header)
        .where(header.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not order:
        raise NotFound(f"{kind.value.capitalize()} order {order_id} not found")
    return order


def _build_lines(kind: OrderKind, lines: Sequence[OrderLineIn]) -> tuple[list, Decimal]:
    line_model = ORDER_MODELS[kind].line
    built = []
    for position, line in enumerate(lines):
        built.append(
            line_model(
                position=position,
                inventory_item_id=line.inventory_item_id,
                quantity=line.quantity,
                unit_price=to_money(line.unit_price),
                line_total=line_extension(line.quantity, line.unit_price),
            )
        )
    return built, sum_money(row.line_total for row in built)


def create_order(
    db: Session,
    kind: OrderKind,
    *,
    counterpart_id: int,
    order_date: date,
    description: str | None,
    status: str,
    lines: Sequence[OrderLineIn],
    actor_user_id: str | None,
):
    models = ORDER_MODELS[kind]
    initial_status = validate_status(kind, status)
    if initial_status == CANCELLED:
        raise ValidationError("Orders cannot be created as cancelled", field="status")
    if not lines:
        raise ValidationError("An order needs at least one line item", field="items")

    _resolve_counterpart(db, kind, counterpart_id)

    stock_lines = _stock_lines(lines)
    items = lock_items(db, [line.inventory_item_id for line in stock_lines])
    ensure_items_exist(stock_lines, items)
    takes_stock = consumes_stock(kind, initial_status)
    if takes_stock:
        ensure_available(stock_lines, items)

    line_rows, total = _build_lines(kind, lines)
    order = models.header(
        counterpart_id=counterpart_id,
        order_date=order_date,
        description=description,
        status=initial_status,
        total_amount=total,
        created_by_user_id=actor_user_id,
    )
    order.items = line_rows
    db.add(order)
    db.flush()

    order.document_number = next_number(kind, order.id, order_date)
    db.flush()

    if takes_stock:
        consume_lines(
            db,
            stock_lines,
            reference_type=models.reference_type,
            reference_id=order.id,
            actor_user_id=actor_user_id,
        )

    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action=f"{models.reference_type}.create",
        target_type=models.reference_type,
        target_id=order.id,
        metadata_json={
            "document_number": order.document_number,
            "status": initial_status,
            "items_count": len(line_rows),
            "total": total,
        },
    )
    queue_event(
        db,
        "order.created",
        {
            "kind": kind.value,
            "order_id": order.id,
            "document_number": order.document_number,
            "status": initial_status,
            "total_amount": str(total),
        },
    )
    return order


def _apply_status_change(
    db: Session,
    kind: OrderKind,
    order,
    next_status: str,
    *,
    actor_user_id: str | None,
) -> StatusChange:
    models = ORDER_MODELS[kind]
    current_status = order.status
    if is_terminal(current_status):
        raise InvalidTransition(
            f"{kind.value.capitalize()} order {order.document_number} is {current_status} and cannot change"
        )
    if not ensure_transition_allowed(kind, current_status, next_status):
        return StatusChange(order=order, previous_status=current_status, changed=False)

    held_stock = consumes_stock(kind, current_status)
    will_hold_stock = consumes_stock(kind, next_status)
    stock_lines = _stock_lines(order.items)

    if will_hold_stock and not held_stock:
        items = lock_items(db, [line.inventory_item_id for line in stock_lines])
        ensure_items_exist(stock_lines, items)
        ensure_available(stock_lines, items)
        consume_lines(
            db,
            stock_lines,
            reference_type=models.reference_type,
            reference_id=order.id,
            actor_user_id=actor_user_id,
        )
    elif held_stock and next_status == CANCELLED:
        lock_items(db, [line.inventory_item_id for line in stock_lines])
        restock_lines(
            db,
            stock_lines,
            reference_type=models.reference_type,
            reference_id=order.id,
            actor_user_id=actor_user_id,
        )

    order.status = next_status
    db.flush()

    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action=f"{models.reference_type}.status.update",
        target_type=models.reference_type,
        target_id=order.id,
        metadata_json={"from_status": current_status, "to_status": next_status},
    )
    queue_event(
        db,
        "order.status_changed",
        {
            "kind": kind.value,
            "order_id": order.id,
            "document_number": order.document_number,
            "from_status": current_status,
            "to_status": next_status,
        },
    )
    return StatusChange(order=order, previous_status=current_status, changed=True)


def change_status(
    db: Session,
    kind: OrderKind,
    order_id: int,
    status: str,
    *,
    actor_user_id: str | None,
) -> StatusChange:
    next_status = validate_status(kind, status)
    order = lock_order(db, kind, order_id)
    return _apply_status_change(db, kind, order, next_status, actor_user_id=actor_user_id)


def update_order(
    db: Session,
    kind: OrderKind,
    order_id: int,
    *,
    counterpart_id: int | None = None,
    order_date: date | None = None,
    description: str | None = None,
    status: str | None = None,
    lines: Sequence[OrderLineIn] | None = None,
    actor_user_id: str | None,
):
    models = ORDER_MODELS[kind]
    next_status = validate_status(kind, status) if status is not None else None
    order = lock_order(db, kind, order_id)
    if is_terminal(order.status):
        raise InvalidTransition(
            f"{kind.value.capitalize()} order {order.document_number} is {order.status} and cannot be edited"
        )

    changed_fields: list[str] = []
    if counterpart_id is not None and counterpart_id != order.counterpart_id:
        _resolve_counterpart(db, kind, counterpart_id)
        order.counterpart_id = counterpart_id
        changed_fields.append("counterpart_id")
    if order_date is not None and order_date != order.order_date:
        # The document number keeps the month it was issued in.
        order.order_date = order_date
        changed_fields.append("date")
    if description is not None and description != order.description:
        order.description = description
        changed_fields.append("description")

    if lines is not None:
        if order.status != DRAFT:
            raise InvalidTransition(
                f"Line items of {order.document_number} can only be changed while it is a draft"
            )
        if not lines:
            raise ValidationError("An order needs at least one line item", field="items")
        stock_lines = _stock_lines(lines)
        items = lock_items(db, [line.inventory_item_id for line in stock_lines])
        ensure_items_exist(stock_lines, items)

        order.items.clear()
        db.flush()
        line_rows, total = _build_lines(kind, lines)
        order.items.extend(line_rows)
        order.total_amount = total
        db.flush()
        changed_fields.append("items")

    if changed_fields:
        log_audit_event(
            db,
            actor_user_id=actor_user_id,
            action=f"{models.reference_type}.update",
            target_type=models.reference_type,
            target_id=order.id,
            metadata_json={"fields": changed_fields},
        )

    if next_status is not None:
        _apply_status_change(db, kind, order, next_status, actor_user_id=actor_user_id)

    db.flush()
    return order


def delete_order(db: Session, kind: OrderKind, order_id: int, *, actor_user_id: str | None) -> dict:
    models = ORDER_MODELS[kind]
    order = lock_order(db, kind, order_id)
    if order.status not in DELETABLE_STATUSES:
        raise InvalidStateForDeletion(
            f"{order.document_number} is {order.status}; only draft or cancelled orders can be deleted"
        )

    snapshot = {"id": order.id, "document_number": order.document_number, "status": order.status}
    db.delete(order)
    db.flush()

    log_audit_event(
        db,
        actor_user_id=actor_user_id,
        action=f"{models.reference_type}.delete",
        target_type=models.reference_type,
        target_id=snapshot["id"],
        metadata_json=snapshot,
    )
    return snapshot


def get_order(db: Session, kind: OrderKind, order_id: int):
    header = ORDER_MODELS[kind].header
    order = db.execute(
        select(header).where(header.id == order_id).options(selectinload(header.items))
    ).scalar_one_or_none()
    if not order:
        raise NotFound(f"{kind.value.capitalize()} order {order_id} not found")
    return order


def describe_lines(db: Session, order) -> list[tuple]:
    """Pairs each line with its inventory item's (name, sku)."""
    item_ids = {line.inventory_item_id for line in order.items}
    if not item_ids:
        return []
    rows = db.execute(
        select(InventoryItem.id, InventoryItem.name, InventoryItem.sku).where(InventoryItem.id.in_(item_ids))
    ).all()
    names = {item_id: (name, sku) for item_id, name, sku in rows}
    return [(line, *names.get(line.inventory_item_id, (None, None))) for line in order.items]


def counterpart_name(db: Session, counterpart_id: int) -> str | None:
    return db.execute(select(Contact.name).where(Contact.id == counterpart_id)).scalar_one_or_none()


def list_orders(
    db: Session,
    kind: OrderKind,
    *,
    status: str | None = None,
    counterpart_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[int, list[tuple]]:
    header = ORDER_MODELS[kind].header
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date cannot be before start_date", field="end_date")

    filters = []
    if status:
        filters.append(header.status == validate_status(kind, status))
    if counterpart_id:
        filters.append(header.counterpart_id == counterpart_id)
    if start_date:
        filters.append(header.order_date >= start_date)
    if end_date:
        filters.append(header.order_date <= end_date)

    total_count = int(db.execute(select(func.count(header.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(header, Contact.name)
        .outerjoin(Contact, Contact.id == header.counterpart_id)
        .where(*filters)
        .order_by(header.order_date.desc(), header.id.desc())
        .offset(offset)
        .limit(limit)
    ).all()
    return total_count, [(order, name) for order, name in rows]
