from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from threading import Barrier

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from smb_erp.core.errors import InsufficientStock
from smb_erp.db.base import Base
from smb_erp.db.session import build_engine
from smb_erp.models.contact import Contact
from smb_erp.models.inventory import InventoryItem
from smb_erp.models.order import PurchaseOrder, SaleOrder
from smb_erp.schemas.order import OrderLineIn
from smb_erp.services import order_service
from smb_erp.services.order_workflow import OrderKind


def test_concurrent_confirmed_sales_cannot_oversell(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'erp.db'}")
    Base.metadata.create_all(bind=engine)
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    with session_local() as db:
        customer = Contact(name="Acme Retail", email="acme@example.com", phone="1", type="customer")
        item = InventoryItem(
            name="Cable",
            sku="CAB-RACE",
            category="Cables",
            current_stock=5,
            unit_price=Decimal("2.00"),
        )
        db.add_all([customer, item])
        db.commit()
        customer_id, item_id = customer.id, item.id

    barrier = Barrier(2)

    def place_order() -> str:
        barrier.wait()
        with session_local() as db:
            try:
                order_service.create_order(
                    db,
                    OrderKind.SALE,
                    counterpart_id=customer_id,
                    order_date=date(2026, 10, 19),
                    description=None,
                    status="confirmed",
                    lines=[OrderLineIn(inventory_item_id=item_id, quantity=3, unit_price="4.00")],
                    actor_user_id=None,
                )
                db.commit()
                return "created"
            except InsufficientStock:
                db.rollback()
                return "rejected"

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = sorted(pool.map(lambda _: place_order(), range(2)))

    assert outcomes == ["created", "rejected"]
    with session_local() as db:
        assert db.get(InventoryItem, item_id).current_stock == 2
        assert db.execute(select(func.count(SaleOrder.id))).scalar_one() == 1
    engine.dispose()


def test_concurrent_orders_get_distinct_document_numbers(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'numbers.db'}")
    Base.metadata.create_all(bind=engine)
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    with session_local() as db:
        vendor = Contact(name="Distribuciones Norte", email="norte@example.com", phone="1", type="vendor")
        item = InventoryItem(
            name="Cable",
            sku="CAB-NUM",
            category="Cables",
            current_stock=0,
            unit_price=Decimal("2.00"),
        )
        db.add_all([vendor, item])
        db.commit()
        vendor_id, item_id = vendor.id, item.id

    workers = 4
    barrier = Barrier(workers)

    def place_draft() -> str:
        barrier.wait()
        with session_local() as db:
            order = order_service.create_order(
                db,
                OrderKind.PURCHASE,
                counterpart_id=vendor_id,
                order_date=date(2026, 10, 19),
                description=None,
                status="draft",
                lines=[OrderLineIn(inventory_item_id=item_id, quantity=1, unit_price="2.00")],
                actor_user_id=None,
            )
            db.commit()
            return order.document_number

    with ThreadPoolExecutor(max_workers=workers) as pool:
        numbers = list(pool.map(lambda _: place_draft(), range(workers)))

    assert len(set(numbers)) == workers
    assert all(number.startswith("OP-202610-") for number in numbers)
    with session_local() as db:
        stored = db.execute(select(PurchaseOrder.document_number)).scalars().all()
        assert sorted(stored) == sorted(numbers)
    engine.dispose()
