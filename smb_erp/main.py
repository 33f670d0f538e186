from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from smb_erp.core.errors import ERPError
from smb_erp.core.observability import (
    database_unavailable_handler,
    erp_error_handler,
    http_exception_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from smb_erp.core.config import settings
from smb_erp.db.session import engine
from smb_erp.routers import accounting, admin, audit, auth, contacts, expenses, inventory, orders, payments

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Backend API for a small-business ERP: contacts, purchasing, sales, inventory, "
        "expenses, payments and accounting.\n\n"
        "Swagger quick test flow:\n"
        "1. Call `POST /auth/bootstrap` once to create the first administrator, or `POST /auth/login`.\n"
        "2. Click **Authorize** and use your email/username + password "
        "(OAuth token URL: `/auth/token`).\n"
        "3. Test protected endpoints (`/contacts`, `/inventory`, `/purchases`, `/sales`, `/payments`)."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "auth", "description": "Bootstrap, login and the current user profile."},
        {"name": "admin", "description": "Company settings, users and role permissions."},
        {"name": "contacts", "description": "Customers, vendors and prospects."},
        {"name": "inventory", "description": "Inventory items, manual stock adjustments and stock history."},
        {"name": "purchases", "description": "Purchase orders and their status lifecycle."},
        {"name": "sales", "description": "Sale orders (invoices) and their status lifecycle."},
        {"name": "expenses", "description": "Expense submission and review."},
        {"name": "payments", "description": "Pending items and payment registration."},
        {"name": "accounting", "description": "Chart of accounts and journal entries."},
        {"name": "audit", "description": "Audit trail endpoints for sensitive operations."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(ERPError, erp_error_handler)
app.add_exception_handler(OperationalError, database_unavailable_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(contacts.router)
app.include_router(inventory.router)
app.include_router(orders.purchases_router)
app.include_router(orders.sales_router)
app.include_router(expenses.router)
app.include_router(payments.router)
app.include_router(accounting.router)
app.include_router(audit.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return {"ok": False}
    return {"ok": True}
