from datetime import date

import pytest

from smb_erp.core.errors import InvalidTransition, ValidationError
from smb_erp.services.document_numbering import format_document_number, next_number
from smb_erp.services.order_workflow import (
    ALLOWED_ORDER_TRANSITIONS,
    ORDER_STATUSES,
    OrderKind,
    consumes_stock,
    ensure_transition_allowed,
    is_terminal,
    validate_status,
)


@pytest.mark.parametrize("kind", list(OrderKind))
def test_every_status_has_a_transition_row(kind):
    assert set(ALLOWED_ORDER_TRANSITIONS[kind]) == set(ORDER_STATUSES[kind])


def test_draft_holds_no_stock_and_confirmed_does():
    for kind in OrderKind:
        assert consumes_stock(kind, "draft") is False
        assert consumes_stock(kind, "cancelled") is False
        assert consumes_stock(kind, "confirmed") is True
        assert consumes_stock(kind, "shipped") is True
        assert consumes_stock(kind, "paid") is True
    assert consumes_stock(OrderKind.PURCHASE, "received") is True
    assert consumes_stock(OrderKind.SALE, "delivered") is True


def test_kind_specific_statuses_are_rejected_for_the_other_kind():
    assert validate_status(OrderKind.SALE, " Delivered ") == "delivered"
    with pytest.raises(ValidationError):
        validate_status(OrderKind.SALE, "received")
    with pytest.raises(ValidationError):
        validate_status(OrderKind.PURCHASE, "delivered")
    with pytest.raises(ValidationError):
        validate_status(OrderKind.PURCHASE, "")


def test_same_status_is_a_no_op():
    assert ensure_transition_allowed(OrderKind.SALE, "confirmed", "confirmed") is False
    assert ensure_transition_allowed(OrderKind.SALE, "draft", "confirmed") is True


def test_backwards_transition_is_rejected_with_allowed_targets():
    with pytest.raises(InvalidTransition) as exc_info:
        ensure_transition_allowed(OrderKind.SALE, "shipped", "draft")

    detail = exc_info.value.details[0]
    assert detail["from"] == "shipped"
    assert detail["to"] == "draft"
    assert detail["allowed"] == ["cancelled", "delivered", "paid"]


def test_terminal_statuses_allow_nothing():
    for kind in OrderKind:
        assert is_terminal("paid") and is_terminal("cancelled")
        assert ALLOWED_ORDER_TRANSITIONS[kind]["paid"] == set()
        assert ALLOWED_ORDER_TRANSITIONS[kind]["cancelled"] == set()
        with pytest.raises(InvalidTransition):
            ensure_transition_allowed(kind, "cancelled", "confirmed")


def test_document_numbers_use_prefix_order_month_and_row_id():
    assert next_number(OrderKind.SALE, 42, date(2026, 3, 5)) == "PV-202603-42"
    assert next_number(OrderKind.PURCHASE, 7, date(2025, 12, 31)) == "OP-202512-7"
    assert format_document_number("AS", 1, date(2026, 10, 19)) == "AS-202610-1"


def test_document_number_requires_persisted_id():
    with pytest.raises(ValueError):
        format_document_number("PV", 0, date(2026, 1, 1))
