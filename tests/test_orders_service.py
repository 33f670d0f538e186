from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from smb_erp.core.errors import (
    InsufficientStock,
    InvalidStateForDeletion,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from smb_erp.models.inventory import InventoryItem, StockAdjustment
from smb_erp.models.order import SaleOrder, SaleOrderItem
from smb_erp.schemas.order import OrderLineIn
from smb_erp.services import events, order_service
from smb_erp.services.order_workflow import OrderKind

ORDER_DATE = date(2026, 10, 19)


def _line(item_id: int, quantity: int, unit_price: str = "10.00") -> OrderLineIn:
    return OrderLineIn(inventory_item_id=item_id, quantity=quantity, unit_price=unit_price)


def _stock(db, item_id: int) -> int:
    db.expire_all()
    return db.get(InventoryItem, item_id).current_stock


def _create(db, kind, counterpart_id, lines, status="draft"):
    order = order_service.create_order(
        db,
        kind,
        counterpart_id=counterpart_id,
        order_date=ORDER_DATE,
        description=None,
        status=status,
        lines=lines,
        actor_user_id=None,
    )
    db.commit()
    return order


@pytest.fixture()
def published(monkeypatch):
    seen = []
    monkeypatch.setattr(events, "publish_event", lambda name, payload: seen.append((name, payload)))
    return seen


def test_confirmed_sale_takes_stock_and_totals_lines(db_session, make_contact, make_item):
    customer = make_contact("Acme Retail", "customer")
    cable = make_item(sku="CAB", stock=10)
    plug = make_item(sku="PLG", stock=4)

    order = _create(
        db_session,
        OrderKind.SALE,
        customer.id,
        [_line(cable.id, 3, "2.50"), _line(plug.id, 4, "1.25")],
        status="confirmed",
    )

    assert order.document_number == f"PV-202610-{order.id}"
    assert order.total_amount == Decimal("12.50")
    assert [line.position for line in order.items] == [0, 1]
    assert _stock(db_session, cable.id) == 7
    assert _stock(db_session, plug.id) == 0
    reasons = db_session.execute(select(StockAdjustment.reason, StockAdjustment.reference_type)).all()
    assert set(reasons) == {("order_confirmed", "sale_order")}


def test_draft_order_does_not_touch_stock(db_session, make_contact, make_item):
    vendor = make_contact("Norte", "vendor")
    item = make_item(sku="DRF", stock=1)

    order = _create(db_session, OrderKind.PURCHASE, vendor.id, [_line(item.id, 50)])

    assert order.status == "draft"
    assert order.document_number.startswith("OP-202610-")
    assert _stock(db_session, item.id) == 1


def test_shortage_rejects_the_whole_order(db_session, make_contact, make_item, published):
    customer = make_contact("Acme Retail", "customer")
    plenty = make_item(sku="PLN", stock=100)
    scarce = make_item(sku="SCR", stock=5)

    with pytest.raises(InsufficientStock) as exc_info:
        order_service.create_order(
            db_session,
            OrderKind.SALE,
            counterpart_id=customer.id,
            order_date=ORDER_DATE,
            description=None,
            status="confirmed",
            lines=[_line(plenty.id, 1), _line(scarce.id, 3), _line(scarce.id, 3)],
            actor_user_id=None,
        )
    db_session.rollback()

    assert exc_info.value.line_indices == [1, 2]
    assert db_session.execute(select(func.count(SaleOrder.id))).scalar_one() == 0
    assert db_session.execute(select(func.count(SaleOrderItem.id))).scalar_one() == 0
    assert _stock(db_session, plenty.id) == 100
    assert _stock(db_session, scarce.id) == 5
    assert published == []


def test_purchase_confirmation_decrements_stock(db_session, make_contact, make_item):
    vendor = make_contact("Norte", "vendor")
    item = make_item(sku="PUR", stock=8)
    order = _create(db_session, OrderKind.PURCHASE, vendor.id, [_line(item.id, 5)])

    change = order_service.change_status(db_session, OrderKind.PURCHASE, order.id, "confirmed", actor_user_id=None)
    db_session.commit()

    assert change.changed is True
    assert change.previous_status == "draft"
    assert _stock(db_session, item.id) == 3


def test_two_line_purchase_totals_and_confirms_once(db_session, make_contact, make_item):
    vendor = make_contact("Norte", "vendor")
    cable = make_item(sku="PO-CAB", stock=20)
    plug = make_item(sku="PO-PLG", stock=5)
    order = _create(
        db_session,
        OrderKind.PURCHASE,
        vendor.id,
        [_line(cable.id, 10, "2.00"), _line(plug.id, 3, "5.00")],
    )

    assert order.status == "draft"
    assert order.total_amount == Decimal("35.00")

    first = order_service.change_status(db_session, OrderKind.PURCHASE, order.id, "confirmed", actor_user_id=None)
    db_session.commit()
    second = order_service.change_status(db_session, OrderKind.PURCHASE, order.id, "confirmed", actor_user_id=None)
    db_session.commit()

    assert (first.changed, second.changed) == (True, False)
    assert _stock(db_session, cable.id) == 10
    assert _stock(db_session, plug.id) == 2
    deltas = db_session.execute(
        select(StockAdjustment.inventory_item_id, StockAdjustment.delta)
        .where(StockAdjustment.reason == "order_confirmed")
        .order_by(StockAdjustment.inventory_item_id)
    ).all()
    assert deltas == [(cable.id, -10), (plug.id, -3)]


def test_moving_between_consuming_statuses_keeps_stock(db_session, make_contact, make_item):
    customer = make_contact("Acme Retail", "customer")
    item = make_item(sku="MOV", stock=10)
    order = _create(db_session, OrderKind.SALE, customer.id, [_line(item.id, 4)], status="confirmed")

    for status in ("shipped", "delivered"):
        order_service.change_status(db_session, OrderKind.SALE, order.id, status, actor_user_id=None)
        db_session.commit()

    assert _stock(db_session, item.id) == 6


def test_cancel_restocks_consumed_lines(db_session, make_contact, make_item):
    customer = make_contact("Acme Retail", "customer")
    item = make_item(sku="CAN", stock=10)
    order = _create(db_session, OrderKind.SALE, customer.id, [_line(item.id, 4)], status="confirmed")
    order_service.change_status(db_session, OrderKind.SALE, order.id, "shipped", actor_user_id=None)
    db_session.commit()

    order_service.change_status(db_session, OrderKind.SALE, order.id, "cancelled", actor_user_id=None)
    db_session.commit()

    assert _stock(db_session, item.id) == 10
    restock = db_session.execute(
        select(StockAdjustment).where(StockAdjustment.reason == "order_cancelled")
    ).scalar_one()
    assert restock.delta == 4
    assert restock.reference_id == order.id


def test_cancelled_order_is_terminal(db_session, make_contact, make_item):
    customer = make_contact("Acme Retail", "customer")
    item = make_item(sku="TRM", stock=10)
    order = _create(db_session, OrderKind.SALE, customer.id, [_line(item.id, 1)])
    order_service.change_status(db_session, OrderKind.SALE, order.id, "cancelled", actor_user_id=None)
    db_session.commit()

    with pytest.raises(InvalidTransition):
        order_service.change_status(db_session, OrderKind.SALE, order.id, "confirmed", actor_user_id=None)
    db_session.rollback()
    assert _stock(db_session, item.id) == 10


def test_confirming_without_stock_leaves_order_in_draft(db_session, make_contact, make_item):
    customer = make_contact("Acme Retail", "customer")
    item = make_item(sku="LOW", stock=2)
    order = _create(db_session, OrderKind.SALE, customer.id, [_line(item.id, 3)])

    with pytest.raises(InsufficientStock):
        order_service.change_status(db_session, OrderKind.SALE, order.id, "confirmed", actor_user_id=None)
    db_session.rollback()

    assert db_session.get(SaleOrder, order.id).status == "draft"
    assert _stock(db_session, item.id) == 2


def test_same_status_change_writes_nothing(db_session, make_contact, make_item):
    customer = make_contact("Acme Retail", "customer")
    item = make_item(sku="NOP", stock=10)
    order = _create(db_session, OrderKind.SALE, customer.id, [_line(item.id, 2)], status="confirmed")

    change = order_service.change_status(db_session, OrderKind.SALE, order.id, "confirmed", actor_user_id=None)
    db_session.commit()

    assert change.changed is False
    assert _stock(db_session, item.id) == 8


def test_counterpart_must_match_order_kind(db_session, make_contact, make_item):
    vendor = make_contact("Norte", "vendor")
    item = make_item(sku="CPT", stock=10)

    with pytest.raises(ValidationError) as exc_info:
        _create(db_session, OrderKind.SALE, vendor.id, [_line(item.id, 1)])
    assert exc_info.value.details[0]["field"] == "customer_id"
    db_session.rollback()

    with pytest.raises(NotFound):
        _create(db_session, OrderKind.PURCHASE, 999, [_line(item.id, 1)])


def test_orders_cannot_start_cancelled(db_session, make_contact, make_item):
    vendor = make_contact("Norte", "vendor")
    item = make_item(sku="CST", stock=10)

    with pytest.raises(ValidationError):
        _create(db_session, OrderKind.PURCHASE, vendor.id, [_line(item.id, 1)], status="cancelled")


def test_lines_are_replaced_only_while_draft(db_session, make_contact, make_item):
    customer = make_contact("Acme Retail", "customer")
    item = make_item(sku="EDT", stock=10)
    other = make_item(sku="EDT-2", stock=10)
    order = _create(db_session, OrderKind.SALE, customer.id, [_line(item.id, 1, "5.00")])

    updated = order_service.update_order(
        db_session,
        OrderKind.SALE,
        order.id,
        lines=[_line(other.id, 2, "3.00"), _line(item.id, 1, "1.00")],
        actor_user_id=None,
    )
    db_session.commit()

    assert [line.inventory_item_id for line in updated.items] == [other.id, item.id]
    assert updated.total_amount == Decimal("7.00")
    assert db_session.execute(select(func.count(SaleOrderItem.id))).scalar_one() == 2

    order_service.change_status(db_session, OrderKind.SALE, order.id, "confirmed", actor_user_id=None)
    db_session.commit()
    with pytest.raises(InvalidTransition):
        order_service.update_order(
            db_session,
            OrderKind.SALE,
            order.id,
            lines=[_line(item.id, 9)],
            actor_user_id=None,
        )
    db_session.rollback()
    assert _stock(db_session, other.id) == 8
    assert _stock(db_session, item.id) == 9


def test_header_edit_keeps_document_number(db_session, make_contact, make_item):
    customer = make_contact("Acme Retail", "customer")
    item = make_item(sku="HDR", stock=10)
    order = _create(db_session, OrderKind.SALE, customer.id, [_line(item.id, 1)], status="confirmed")
    number = order.document_number

    updated = order_service.update_order(
        db_session,
        OrderKind.SALE,
        order.id,
        order_date=date(2026, 11, 2),
        description="Rescheduled",
        actor_user_id=None,
    )
    db_session.commit()

    assert updated.document_number == number
    assert updated.order_date == date(2026, 11, 2)
    assert updated.description == "Rescheduled"


def test_only_draft_or_cancelled_orders_can_be_deleted(db_session, make_contact, make_item):
    customer = make_contact("Acme Retail", "customer")
    item = make_item(sku="DEL", stock=10)
    confirmed = _create(db_session, OrderKind.SALE, customer.id, [_line(item.id, 2)], status="confirmed")
    draft = _create(db_session, OrderKind.SALE, customer.id, [_line(item.id, 2)])

    with pytest.raises(InvalidStateForDeletion):
        order_service.delete_order(db_session, OrderKind.SALE, confirmed.id, actor_user_id=None)
    db_session.rollback()

    snapshot = order_service.delete_order(db_session, OrderKind.SALE, draft.id, actor_user_id=None)
    db_session.commit()

    assert snapshot["status"] == "draft"
    assert db_session.get(SaleOrder, draft.id) is None
    assert db_session.execute(
        select(func.count(SaleOrderItem.id)).where(SaleOrderItem.order_id == draft.id)
    ).scalar_one() == 0
    assert _stock(db_session, item.id) == 8


def test_events_are_published_only_after_commit(db_session, make_contact, make_item, published):
    customer = make_contact("Acme Retail", "customer")
    item = make_item(sku="EVT", stock=10)

    order_service.create_order(
        db_session,
        OrderKind.SALE,
        counterpart_id=customer.id,
        order_date=ORDER_DATE,
        description=None,
        status="confirmed",
        lines=[_line(item.id, 1)],
        actor_user_id=None,
    )
    assert published == []

    db_session.commit()

    names = [name for name, _ in published]
    assert names == ["stock.adjusted", "order.created"]
    assert published[1][1]["status"] == "confirmed"


def test_sale_created_as_paid_takes_stock_once(db_session, make_contact, make_item):
    customer = make_contact("Acme Retail", "customer")
    item = make_item(sku="PAID", stock=6)

    order = _create(db_session, OrderKind.SALE, customer.id, [_line(item.id, 4)], status="paid")

    assert order.status == "paid"
    assert _stock(db_session, item.id) == 2
    with pytest.raises(InvalidTransition):
        order_service.change_status(db_session, OrderKind.SALE, order.id, "cancelled", actor_user_id=None)
    db_session.rollback()
    assert _stock(db_session, item.id) == 2
