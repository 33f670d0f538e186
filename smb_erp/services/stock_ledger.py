import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from smb_erp.core.errors import InsufficientStock, NotFound, ValidationError
from smb_erp.models.inventory import InventoryItem, StockAdjustment
from smb_erp.services.events import queue_event

logger = logging.getLogger("smb_erp.stock")

ORDER_STOCK_OUT_REASON = "order_confirmed"
ORDER_RESTOCK_REASON = "order_cancelled"


@dataclass(frozen=True)
class StockLine:
    index: int
    inventory_item_id: int
    quantity: int


def lock_items(db: Session, item_ids: Iterable[int]) -> dict[int, InventoryItem]:
    """Lock inventory rows in ascending id order and return them by id.

    Rows are re-read even when already present in the session so callers
    always see the committed quantity.
    """
    ids = sorted(set(item_ids))
    if not ids:
        return {}
    rows = db.execute(
        select(InventoryItem)
        .where(InventoryItem.id.in_(ids))
        .order_by(InventoryItem.id.asc())
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().all()
    return {row.id: row for row in rows}


def ensure_items_exist(lines: Sequence[StockLine], items: dict[int, InventoryItem]) -> None:
    missing = [
        {"index": line.index, "inventory_item_id": line.inventory_item_id}
        for line in lines
        if line.inventory_item_id not in items
    ]
    if missing:
        indices = ", ".join(str(entry["index"]) for entry in missing)
        raise NotFound(f"Inventory item not found for line(s): {indices}", details=missing)


def find_shortages(lines: Sequence[StockLine], items: dict[int, InventoryItem]) -> list[dict]:
    """One shortage per failing line; quantities are summed per item across lines."""
    quantity_by_item: dict[int, int] = {}
    for line in lines:
        quantity_by_item[line.inventory_item_id] = quantity_by_item.get(line.inventory_item_id, 0) + line.quantity

    shortages: list[dict] = []
    for line in lines:
        item = items[line.inventory_item_id]
        requested_total = quantity_by_item[line.inventory_item_id]
        if requested_total > item.current_stock:
            shortages.append(
                {
                    "index": line.index,
                    "inventory_item_id": item.id,
                    "sku": item.sku,
                    "requested": line.quantity,
                    "requested_total": requested_total,
                    "available": item.current_stock,
                }
            )
    return shortages


def ensure_available(lines: Sequence[StockLine], items: dict[int, InventoryItem]) -> None:
    shortages = find_shortages(lines, items)
    if shortages:
        raise InsufficientStock(shortages)


def adjust_stock(
    db: Session,
    *,
    item_id: int,
    delta: int,
    reason: str,
    actor_user_id: str | None = None,
    reference_type: str = "manual",
    reference_id: int | None = None,
) -> int:
    """Apply `delta` to one item's stock and record it; returns the new stock.

    The caller owns the transaction. Nothing is written when the result would
    be negative.
    """
    if delta == 0:
        raise ValidationError("Stock adjustment delta cannot be zero", field="delta")
    cleaned_reason = (reason or "").strip()
    if not cleaned_reason:
        raise ValidationError("A reason is required for stock adjustments", field="reason")

    item = lock_items(db, [item_id]).get(item_id)
    if item is None:
        raise NotFound(f"Inventory item {item_id} not found")

    new_stock = item.current_stock + delta
    if new_stock < 0:
        raise InsufficientStock(
            [
                {
                    "index": None,
                    "inventory_item_id": item.id,
                    "sku": item.sku,
                    "requested": -delta,
                    "available": item.current_stock,
                }
            ],
            message=f"Insufficient stock for item {item.sku}",
        )

    item.current_stock = new_stock
    db.add(
        StockAdjustment(
            inventory_item_id=item.id,
            delta=delta,
            resulting_stock=new_stock,
            reason=cleaned_reason,
            reference_type=reference_type,
            reference_id=reference_id,
            actor_user_id=actor_user_id,
        )
    )
    db.flush()

    logger.info(
        json.dumps(
            {
                "event": "stock_adjustment",
                "inventory_item_id": item.id,
                "delta": delta,
                "resulting_stock": new_stock,
                "reference_type": reference_type,
                "reference_id": reference_id,
            }
        )
    )
    queue_event(
        db,
        "stock.adjusted",
        {
            "inventory_item_id": item.id,
            "delta": delta,
            "new_stock": new_stock,
            "reason": cleaned_reason,
            "reference_type": reference_type,
            "reference_id": reference_id,
        },
    )
    return new_stock


def consume_lines(
    db: Session,
    lines: Sequence[StockLine],
    *,
    reference_type: str,
    reference_id: int,
    actor_user_id: str | None,
) -> None:
    for line in lines:
        adjust_stock(
            db,
            item_id=line.inventory_item_id,
            delta=-line.quantity,
            reason=ORDER_STOCK_OUT_REASON,
            actor_user_id=actor_user_id,
            reference_type=reference_type,
            reference_id=reference_id,
        )


def restock_lines(
    db: Session,
    lines: Sequence[StockLine],
    *,
    reference_type: str,
    reference_id: int,
    actor_user_id: str | None,
) -> None:
    for line in lines:
        adjust_stock(
            db,
            item_id=line.inventory_item_id,
            delta=line.quantity,
            reason=ORDER_RESTOCK_REASON,
            actor_user_id=actor_user_id,
            reference_type=reference_type,
            reference_id=reference_id,
        )
