import pytest
from sqlalchemy import select

from smb_erp.core.errors import InsufficientStock, NotFound, ValidationError
from smb_erp.models.inventory import InventoryItem, StockAdjustment
from smb_erp.services.stock_ledger import (
    StockLine,
    adjust_stock,
    ensure_available,
    ensure_items_exist,
    find_shortages,
    lock_items,
)


def test_adjust_stock_records_history(db_session, make_item):
    item = make_item(sku="SKU-1", stock=4)

    new_stock = adjust_stock(db_session, item_id=item.id, delta=6, reason="recount", actor_user_id=None)
    db_session.commit()

    assert new_stock == 10
    adjustment = db_session.execute(
        select(StockAdjustment).where(StockAdjustment.inventory_item_id == item.id)
    ).scalar_one()
    assert adjustment.delta == 6
    assert adjustment.resulting_stock == 10
    assert adjustment.reason == "recount"
    assert adjustment.reference_type == "manual"


def test_adjust_stock_never_goes_negative(db_session, make_item):
    item = make_item(sku="SKU-2", stock=2)

    with pytest.raises(InsufficientStock) as exc_info:
        adjust_stock(db_session, item_id=item.id, delta=-3, reason="breakage")
    db_session.rollback()

    assert exc_info.value.shortages[0]["available"] == 2
    assert exc_info.value.line_indices == []
    assert db_session.get(InventoryItem, item.id).current_stock == 2
    assert db_session.execute(select(StockAdjustment)).first() is None


def test_adjust_stock_rejects_zero_delta_blank_reason_and_unknown_item(db_session, make_item):
    item = make_item(sku="SKU-3", stock=2)

    with pytest.raises(ValidationError):
        adjust_stock(db_session, item_id=item.id, delta=0, reason="noop")
    with pytest.raises(ValidationError):
        adjust_stock(db_session, item_id=item.id, delta=1, reason="   ")
    with pytest.raises(NotFound):
        adjust_stock(db_session, item_id=9999, delta=1, reason="ghost")


def test_shortages_sum_quantities_for_repeated_items(db_session, make_item):
    item = make_item(sku="SKU-4", stock=5)
    other = make_item(sku="SKU-5", stock=50)
    lines = [
        StockLine(index=0, inventory_item_id=item.id, quantity=3),
        StockLine(index=1, inventory_item_id=other.id, quantity=1),
        StockLine(index=2, inventory_item_id=item.id, quantity=3),
    ]
    items = lock_items(db_session, [line.inventory_item_id for line in lines])

    shortages = find_shortages(lines, items)

    assert [s["index"] for s in shortages] == [0, 2]
    assert all(s["requested_total"] == 6 and s["available"] == 5 for s in shortages)
    assert shortages[0]["sku"] == "SKU-4"
    with pytest.raises(InsufficientStock) as exc_info:
        ensure_available(lines, items)
    assert exc_info.value.line_indices == [0, 2]


def test_missing_items_are_reported_by_line(db_session, make_item):
    item = make_item(sku="SKU-6", stock=5)
    lines = [
        StockLine(index=0, inventory_item_id=item.id, quantity=1),
        StockLine(index=1, inventory_item_id=4242, quantity=1),
    ]

    with pytest.raises(NotFound) as exc_info:
        ensure_items_exist(lines, lock_items(db_session, [item.id, 4242]))

    assert exc_info.value.details == [{"index": 1, "inventory_item_id": 4242}]
