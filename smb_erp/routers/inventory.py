from fastapi import APIRouter, Depends, Query
from sqlalchemy import case, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from smb_erp.core.api_docs import error_responses
from smb_erp.core.config import settings
from smb_erp.core.deps import get_db
from smb_erp.core.errors import DuplicateKey, HasDependents, NotFound, ValidationError
from smb_erp.core.money import to_money
from smb_erp.core.permissions import require_permission
from smb_erp.core.security_current import CurrentActor
from smb_erp.models.accounting import Account
from smb_erp.models.inventory import InventoryItem, StockAdjustment
from smb_erp.models.order import PurchaseOrderItem, SaleOrderItem
from smb_erp.schemas.common import OkOut, PaginationMeta
from smb_erp.schemas.inventory import (
    InventoryItemCreateIn,
    InventoryItemListOut,
    InventoryItemOut,
    InventoryItemSavedOut,
    InventoryItemUpdateIn,
    LowStockListOut,
    StockAdjustIn,
    StockAdjustmentListOut,
    StockAdjustmentOut,
    StockAdjustOut,
)
from smb_erp.services.audit_service import log_audit_event
from smb_erp.services.stock_ledger import adjust_stock

router = APIRouter(prefix="/inventory", tags=["inventory"])

OPENING_STOCK_REASON = "opening stock"
OPENING_STOCK_REFERENCE = "initial"


def _low_stock_threshold():
    # Items without a reorder level fall back to the configured default.
    return case(
        (InventoryItem.reorder_level > 0, InventoryItem.reorder_level),
        else_=settings.low_stock_default_threshold,
    )


def _is_low_stock(item: InventoryItem) -> bool:
    threshold = item.reorder_level if item.reorder_level > 0 else settings.low_stock_default_threshold
    return item.current_stock <= threshold


def _item_out(item: InventoryItem) -> InventoryItemOut:
    return InventoryItemOut(
        id=item.id,
        name=item.name,
        sku=item.sku,
        category=item.category,
        current_stock=item.current_stock,
        reorder_level=item.reorder_level,
        unit_price=float(to_money(item.unit_price)),
        sale_price=float(to_money(item.sale_price)) if item.sale_price is not None else None,
        supplier=item.supplier,
        image_url=item.image_url,
        inventory_asset_account_id=item.inventory_asset_account_id,
        is_low_stock=_is_low_stock(item),
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def _get_item(db: Session, item_id: int) -> InventoryItem:
    item = db.execute(select(InventoryItem).where(InventoryItem.id == item_id)).scalar_one_or_none()
    if not item:
        raise NotFound(f"Inventory item {item_id} not found")
    return item


def _ensure_sku_free(db: Session, sku: str, *, exclude_id: int | None = None) -> None:
    stmt = select(InventoryItem.id).where(func.lower(InventoryItem.sku) == sku.lower())
    if exclude_id is not None:
        stmt = stmt.where(InventoryItem.id != exclude_id)
    if db.execute(stmt).first():
        raise DuplicateKey(f"SKU {sku} already exists", details=[{"field": "sku", "value": sku}])


def _ensure_asset_account(db: Session, account_id: int | None) -> None:
    if account_id is None:
        return
    account_type = db.execute(select(Account.type).where(Account.id == account_id)).scalar_one_or_none()
    if account_type is None:
        raise ValidationError(f"Account {account_id} not found", field="inventory_asset_account_id")
    if account_type != "asset":
        raise ValidationError("Inventory must be linked to an asset account", field="inventory_asset_account_id")


@router.post(
    "",
    response_model=InventoryItemSavedOut,
    status_code=201,
    summary="Create inventory item",
    description="A positive `opening_stock` is recorded as an initial stock adjustment.",
    responses=error_responses(401, 403, 409, 422, 500),
)
def create_item(
    payload: InventoryItemCreateIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("inventory.manage")),
):
    _ensure_sku_free(db, payload.sku)
    _ensure_asset_account(db, payload.inventory_asset_account_id)

    item = InventoryItem(
        name=payload.name,
        sku=payload.sku,
        category=payload.category,
        current_stock=0,
        reorder_level=payload.reorder_level,
        unit_price=to_money(payload.unit_price),
        sale_price=to_money(payload.sale_price) if payload.sale_price is not None else None,
        supplier=payload.supplier,
        image_url=payload.image_url,
        inventory_asset_account_id=payload.inventory_asset_account_id,
    )
    db.add(item)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateKey(f"SKU {payload.sku} already exists", details=[{"field": "sku"}]) from exc

    if payload.opening_stock > 0:
        adjust_stock(
            db,
            item_id=item.id,
            delta=payload.opening_stock,
            reason=OPENING_STOCK_REASON,
            actor_user_id=actor.user_id,
            reference_type=OPENING_STOCK_REFERENCE,
        )

    log_audit_event(
        db,
        actor_user_id=actor.user_id,
        action="inventory_item.create",
        target_type="inventory_item",
        target_id=item.id,
        metadata_json={"sku": item.sku, "opening_stock": payload.opening_stock},
    )
    db.commit()
    db.refresh(item)
    return InventoryItemSavedOut(**_item_out(item).model_dump())


@router.get(
    "",
    response_model=InventoryItemListOut,
    summary="List inventory items",
    responses=error_responses(401, 403, 422, 500),
)
def list_items(
    category: str | None = Query(default=None),
    q: str | None = Query(default=None, description="Search by name or SKU"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("inventory.view")),
):
    search = q.strip() if q and q.strip() else None
    filters = []
    if category:
        filters.append(InventoryItem.category == category)
    if search:
        pattern = f"%{search.lower()}%"
        filters.append(
            or_(
                func.lower(InventoryItem.name).like(pattern),
                func.lower(InventoryItem.sku).like(pattern),
            )
        )

    total_count = int(db.execute(select(func.count(InventoryItem.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(InventoryItem)
        .where(*filters)
        .order_by(InventoryItem.name.asc(), InventoryItem.id.asc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [_item_out(row) for row in rows]
    count = len(items)
    return InventoryItemListOut(
        pagination=PaginationMeta(
            total=total_count,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total_count,
        ),
        category=category,
        q=search,
        items=items,
    )


@router.get(
    "/low-stock",
    response_model=LowStockListOut,
    summary="Items at or below their reorder level",
    responses=error_responses(401, 403, 500),
)
def low_stock(
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("inventory.view")),
):
    rows = db.execute(
        select(InventoryItem)
        .where(InventoryItem.current_stock <= _low_stock_threshold())
        .order_by(InventoryItem.current_stock.asc(), InventoryItem.name.asc())
    ).scalars().all()
    return LowStockListOut(items=[_item_out(row) for row in rows])


@router.get(
    "/{item_id}",
    response_model=InventoryItemOut,
    summary="Get inventory item",
    responses=error_responses(401, 403, 404, 500),
)
def get_item(
    item_id: int,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("inventory.view")),
):
    return _item_out(_get_item(db, item_id))


@router.patch(
    "/{item_id}",
    response_model=InventoryItemSavedOut,
    summary="Update inventory item",
    description="Stock levels cannot be edited here; use `POST /inventory/{item_id}/adjust`.",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def update_item(
    item_id: int,
    payload: InventoryItemUpdateIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("inventory.manage")),
):
    item = _get_item(db, item_id)
    changes = payload.model_dump(exclude_unset=True)

    if changes.get("sku") is not None:
        _ensure_sku_free(db, changes["sku"], exclude_id=item.id)
        item.sku = changes["sku"].strip()
    if "inventory_asset_account_id" in changes:
        _ensure_asset_account(db, changes["inventory_asset_account_id"])
        item.inventory_asset_account_id = changes["inventory_asset_account_id"]
    for field_name in ("name", "category", "reorder_level"):
        if changes.get(field_name) is not None:
            setattr(item, field_name, changes[field_name])
    if changes.get("unit_price") is not None:
        item.unit_price = to_money(changes["unit_price"])
    if "sale_price" in changes:
        item.sale_price = to_money(changes["sale_price"]) if changes["sale_price"] is not None else None
    for field_name in ("supplier", "image_url"):
        if field_name in changes:
            setattr(item, field_name, changes[field_name])

    log_audit_event(
        db,
        actor_user_id=actor.user_id,
        action="inventory_item.update",
        target_type="inventory_item",
        target_id=item.id,
        metadata_json={"fields": sorted(changes.keys())},
    )
    db.commit()
    db.refresh(item)
    return InventoryItemSavedOut(**_item_out(item).model_dump())


@router.delete(
    "/{item_id}",
    response_model=OkOut,
    summary="Delete inventory item",
    description=(
        "Items used by any order line, or with stock movements beyond the opening "
        "stock, cannot be deleted."
    ),
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_item(
    item_id: int,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("inventory.manage")),
):
    item = _get_item(db, item_id)
    line_count = int(
        db.execute(
            select(func.count(PurchaseOrderItem.id)).where(PurchaseOrderItem.inventory_item_id == item.id)
        ).scalar_one()
    ) + int(
        db.execute(
            select(func.count(SaleOrderItem.id)).where(SaleOrderItem.inventory_item_id == item.id)
        ).scalar_one()
    )
    if line_count:
        raise HasDependents(
            f"Item {item.sku} is used by {line_count} order line(s)",
            details=[{"dependent": "order_lines", "count": line_count}],
        )

    movement_count = int(
        db.execute(
            select(func.count(StockAdjustment.id)).where(
                StockAdjustment.inventory_item_id == item.id,
                StockAdjustment.reference_type != OPENING_STOCK_REFERENCE,
            )
        ).scalar_one()
    )
    if movement_count:
        raise HasDependents(
            f"Item {item.sku} has {movement_count} recorded stock movement(s)",
            details=[{"dependent": "stock_adjustments", "count": movement_count}],
        )

    # only the opening-stock row is left; it goes with the item
    db.execute(delete(StockAdjustment).where(StockAdjustment.inventory_item_id == item.id))
    db.delete(item)
    log_audit_event(
        db,
        actor_user_id=actor.user_id,
        action="inventory_item.delete",
        target_type="inventory_item",
        target_id=item_id,
        metadata_json={"sku": item.sku},
    )
    db.commit()
    return OkOut()


@router.post(
    "/{item_id}/adjust",
    response_model=StockAdjustOut,
    summary="Manual stock adjustment",
    description="Applies a signed quantity change with a mandatory reason; stock never goes below zero.",
    responses=error_responses(401, 403, 404, 409, 422, 500, 503),
)
def adjust_item_stock(
    item_id: int,
    payload: StockAdjustIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("inventory.adjust")),
):
    new_stock = adjust_stock(
        db,
        item_id=item_id,
        delta=payload.delta,
        reason=payload.reason,
        actor_user_id=actor.user_id,
        reference_type="manual",
    )
    log_audit_event(
        db,
        actor_user_id=actor.user_id,
        action="inventory_item.adjust",
        target_type="inventory_item",
        target_id=item_id,
        metadata_json={"delta": payload.delta, "reason": payload.reason, "new_stock": new_stock},
    )
    db.commit()
    return StockAdjustOut(item_id=item_id, new_stock=new_stock)


@router.get(
    "/{item_id}/adjustments",
    response_model=StockAdjustmentListOut,
    summary="Stock adjustment history",
    responses=error_responses(401, 403, 404, 422, 500),
)
def list_adjustments(
    item_id: int,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("inventory.view")),
):
    _get_item(db, item_id)
    total_count = int(
        db.execute(
            select(func.count(StockAdjustment.id)).where(StockAdjustment.inventory_item_id == item_id)
        ).scalar_one()
    )
    rows = db.execute(
        select(StockAdjustment)
        .where(StockAdjustment.inventory_item_id == item_id)
        .order_by(StockAdjustment.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [
        StockAdjustmentOut(
            id=row.id,
            inventory_item_id=row.inventory_item_id,
            delta=row.delta,
            resulting_stock=row.resulting_stock,
            reason=row.reason,
            reference_type=row.reference_type,
            reference_id=row.reference_id,
            actor_user_id=row.actor_user_id,
            created_at=row.created_at,
        )
        for row in rows
    ]
    count = len(items)
    return StockAdjustmentListOut(
        pagination=PaginationMeta(
            total=total_count,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total_count,
        ),
        items=items,
    )
