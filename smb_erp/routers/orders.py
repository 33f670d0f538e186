from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from smb_erp.core.api_docs import error_responses
from smb_erp.core.deps import get_db
from smb_erp.core.money import to_money
from smb_erp.core.permissions import require_permission
from smb_erp.core.security_current import CurrentActor
from smb_erp.schemas.common import PaginationMeta
from smb_erp.schemas.order import (
    OrderCreateOut,
    OrderDeleteOut,
    OrderLineOut,
    OrderListOut,
    OrderOut,
    OrderStatusUpdateIn,
    OrderSummaryOut,
    PurchaseOrderCreate,
    PurchaseOrderUpdate,
    SaleOrderCreate,
    SaleOrderUpdate,
)
from smb_erp.services import order_service
from smb_erp.services.order_workflow import OrderKind


def _order_summary_out(order, counterpart_name: str | None) -> OrderSummaryOut:
    return OrderSummaryOut(
        id=order.id,
        document_number=order.document_number,
        counterpart_id=order.counterpart_id,
        counterpart_name=counterpart_name,
        order_date=order.order_date,
        description=order.description,
        status=order.status,
        total_amount=float(to_money(order.total_amount)),
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def _order_out(db: Session, order) -> OrderOut:
    summary = _order_summary_out(order, order_service.counterpart_name(db, order.counterpart_id))
    lines = [
        OrderLineOut(
            id=line.id,
            position=line.position,
            inventory_item_id=line.inventory_item_id,
            item_name=item_name,
            sku=sku,
            quantity=line.quantity,
            unit_price=float(to_money(line.unit_price)),
            line_total=float(to_money(line.line_total)),
        )
        for line, item_name, sku in order_service.describe_lines(db, order)
    ]
    return OrderOut(**summary.model_dump(), items=lines)


def build_order_router(
    kind: OrderKind,
    *,
    prefix: str,
    tag: str,
    create_schema: type,
    update_schema: type,
    view_permission: str,
    manage_permission: str,
) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[tag])
    label = f"{kind.value} order"

    @router.post(
        "",
        response_model=OrderCreateOut,
        status_code=201,
        summary=f"Create {label}",
        description=(
            "Creates the header and its line items in one transaction. When the initial "
            "status holds stock, every line is checked and stock is taken immediately."
        ),
        responses=error_responses(401, 403, 404, 409, 422, 500, 503),
    )
    def create_order(
        payload: create_schema,
        db: Session = Depends(get_db),
        actor: CurrentActor = Depends(require_permission(manage_permission)),
    ):
        order = order_service.create_order(
            db,
            kind,
            counterpart_id=payload.counterpart_id,
            order_date=payload.order_date,
            description=payload.description,
            status=payload.status,
            lines=payload.items,
            actor_user_id=actor.user_id,
        )
        db.commit()
        return OrderCreateOut(
            id=order.id,
            document_number=order.document_number,
            total_amount=float(to_money(order.total_amount)),
            status=order.status,
        )

    @router.get(
        "",
        response_model=OrderListOut,
        summary=f"List {label}s",
        responses=error_responses(401, 403, 422, 500),
    )
    def list_orders(
        status: str | None = Query(default=None),
        counterpart_id: int | None = Query(default=None, gt=0),
        start_date: date | None = Query(default=None),
        end_date: date | None = Query(default=None),
        limit: int = Query(default=50, ge=1, le=200),
        offset: int = Query(default=0, ge=0),
        db: Session = Depends(get_db),
        actor: CurrentActor = Depends(require_permission(view_permission)),
    ):
        total_count, rows = order_service.list_orders(
            db,
            kind,
            status=status,
            counterpart_id=counterpart_id,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        )
        items = [_order_summary_out(order, name) for order, name in rows]
        count = len(items)
        return OrderListOut(
            pagination=PaginationMeta(
                total=total_count,
                limit=limit,
                offset=offset,
                count=count,
                has_next=(offset + count) < total_count,
            ),
            status=status.strip().lower() if status else None,
            counterpart_id=counterpart_id,
            start_date=start_date,
            end_date=end_date,
            items=items,
        )

    @router.get(
        "/{order_id}",
        response_model=OrderOut,
        summary=f"Get {label}",
        responses=error_responses(401, 403, 404, 500),
    )
    def get_order(
        order_id: int,
        db: Session = Depends(get_db),
        actor: CurrentActor = Depends(require_permission(view_permission)),
    ):
        return _order_out(db, order_service.get_order(db, kind, order_id))

    @router.patch(
        "/{order_id}",
        response_model=OrderOut,
        summary=f"Update {label}",
        description=(
            "Header fields can change until the order is paid or cancelled. "
            "Line items are replaced wholesale and only while the order is a draft."
        ),
        responses=error_responses(401, 403, 404, 409, 422, 500, 503),
    )
    def update_order(
        order_id: int,
        payload: update_schema,
        db: Session = Depends(get_db),
        actor: CurrentActor = Depends(require_permission(manage_permission)),
    ):
        order = order_service.update_order(
            db,
            kind,
            order_id,
            counterpart_id=payload.counterpart_id,
            order_date=payload.order_date,
            description=payload.description,
            status=payload.status,
            lines=payload.items,
            actor_user_id=actor.user_id,
        )
        db.commit()
        db.refresh(order)
        return _order_out(db, order)

    @router.patch(
        "/{order_id}/status",
        response_model=OrderOut,
        summary=f"Update {label} status",
        responses=error_responses(401, 403, 404, 409, 422, 500, 503),
    )
    def update_order_status(
        order_id: int,
        payload: OrderStatusUpdateIn,
        db: Session = Depends(get_db),
        actor: CurrentActor = Depends(require_permission(manage_permission)),
    ):
        change = order_service.change_status(
            db,
            kind,
            order_id,
            payload.status,
            actor_user_id=actor.user_id,
        )
        db.commit()
        db.refresh(change.order)
        return _order_out(db, change.order)

    @router.delete(
        "/{order_id}",
        response_model=OrderDeleteOut,
        summary=f"Delete {label}",
        description="Only draft or cancelled orders can be deleted.",
        responses=error_responses(401, 403, 404, 409, 500, 503),
    )
    def delete_order(
        order_id: int,
        db: Session = Depends(get_db),
        actor: CurrentActor = Depends(require_permission(manage_permission)),
    ):
        snapshot = order_service.delete_order(db, kind, order_id, actor_user_id=actor.user_id)
        db.commit()
        return OrderDeleteOut(id=snapshot["id"], document_number=snapshot["document_number"])

    return router


purchases_router = build_order_router(
    OrderKind.PURCHASE,
    prefix="/purchases",
    tag="purchases",
    create_schema=PurchaseOrderCreate,
    update_schema=PurchaseOrderUpdate,
    view_permission="purchases.view",
    manage_permission="purchases.manage",
)

sales_router = build_order_router(
    OrderKind.SALE,
    prefix="/sales",
    tag="sales",
    create_schema=SaleOrderCreate,
    update_schema=SaleOrderUpdate,
    view_permission="sales.view",
    manage_permission="sales.manage",
)
