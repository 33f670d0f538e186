from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from smb_erp.core.api_docs import error_responses
from smb_erp.core.deps import get_db
from smb_erp.core.errors import HasDependents, NotFound, ValidationError
from smb_erp.core.permissions import require_permission
from smb_erp.core.security_current import CurrentActor
from smb_erp.models.contact import Contact
from smb_erp.models.order import PurchaseOrder, SaleOrder
from smb_erp.schemas.common import OkOut, PaginationMeta
from smb_erp.schemas.contact import (
    ContactCreateIn,
    ContactListOut,
    ContactOut,
    ContactSavedOut,
    ContactUpdateIn,
)
from smb_erp.services.audit_service import log_audit_event

router = APIRouter(prefix="/contacts", tags=["contacts"])

CONTACT_TYPES = {"customer", "vendor", "prospect"}


def _contact_out(contact: Contact) -> ContactOut:
    return ContactOut(
        id=contact.id,
        name=contact.name,
        email=contact.email,
        phone=contact.phone,
        type=contact.type,
        company=contact.company,
        created_at=contact.created_at,
        updated_at=contact.updated_at,
    )


def _get_contact(db: Session, contact_id: int) -> Contact:
    contact = db.execute(select(Contact).where(Contact.id == contact_id)).scalar_one_or_none()
    if not contact:
        raise NotFound(f"Contact {contact_id} not found")
    return contact


def _order_references(db: Session, contact_id: int) -> int:
    purchases = db.execute(
        select(func.count(PurchaseOrder.id)).where(PurchaseOrder.counterpart_id == contact_id)
    ).scalar_one()
    sales = db.execute(
        select(func.count(SaleOrder.id)).where(SaleOrder.counterpart_id == contact_id)
    ).scalar_one()
    return int(purchases) + int(sales)


@router.post(
    "",
    response_model=ContactSavedOut,
    status_code=201,
    summary="Create contact",
    responses=error_responses(401, 403, 422, 500),
)
def create_contact(
    payload: ContactCreateIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("contacts.manage")),
):
    contact = Contact(
        name=payload.name,
        email=payload.email.lower(),
        phone=payload.phone,
        type=payload.type,
        company=payload.company,
    )
    db.add(contact)
    db.flush()
    log_audit_event(
        db,
        actor_user_id=actor.user_id,
        action="contact.create",
        target_type="contact",
        target_id=contact.id,
        metadata_json={"type": contact.type},
    )
    db.commit()
    db.refresh(contact)
    return ContactSavedOut(**_contact_out(contact).model_dump())


@router.get(
    "",
    response_model=ContactListOut,
    summary="List contacts",
    responses=error_responses(401, 403, 422, 500),
)
def list_contacts(
    type: str | None = Query(default=None),
    q: str | None = Query(default=None, description="Search by name, email or company"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("contacts.view")),
):
    normalized_type = type.strip().lower() if type else None
    if normalized_type and normalized_type not in CONTACT_TYPES:
        raise ValidationError(
            f"type must be one of: {', '.join(sorted(CONTACT_TYPES))}",
            field="type",
        )
    search = q.strip() if q and q.strip() else None

    filters = []
    if normalized_type:
        filters.append(Contact.type == normalized_type)
    if search:
        pattern = f"%{search.lower()}%"
        filters.append(
            or_(
                func.lower(Contact.name).like(pattern),
                func.lower(Contact.email).like(pattern),
                func.lower(func.coalesce(Contact.company, "")).like(pattern),
            )
        )

    total_count = int(db.execute(select(func.count(Contact.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Contact).where(*filters).order_by(Contact.name.asc(), Contact.id.asc()).offset(offset).limit(limit)
    ).scalars().all()
    items = [_contact_out(row) for row in rows]
    count = len(items)
    return ContactListOut(
        pagination=PaginationMeta(
            total=total_count,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total_count,
        ),
        type=normalized_type,
        q=search,
        items=items,
    )


@router.get(
    "/{contact_id}",
    response_model=ContactOut,
    summary="Get contact",
    responses=error_responses(401, 403, 404, 500),
)
def get_contact(
    contact_id: int,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("contacts.view")),
):
    return _contact_out(_get_contact(db, contact_id))


@router.patch(
    "/{contact_id}",
    response_model=ContactSavedOut,
    summary="Update contact",
    responses=error_responses(401, 403, 404, 422, 500),
)
def update_contact(
    contact_id: int,
    payload: ContactUpdateIn,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("contacts.manage")),
):
    contact = _get_contact(db, contact_id)
    changes = payload.model_dump(exclude_unset=True)
    for field_name in ("name", "phone", "type"):
        if changes.get(field_name) is not None:
            setattr(contact, field_name, changes[field_name])
    if "company" in changes:
        contact.company = changes["company"]
    if changes.get("email") is not None:
        contact.email = str(changes["email"]).lower()

    log_audit_event(
        db,
        actor_user_id=actor.user_id,
        action="contact.update",
        target_type="contact",
        target_id=contact.id,
        metadata_json={"fields": sorted(changes.keys())},
    )
    db.commit()
    db.refresh(contact)
    return ContactSavedOut(**_contact_out(contact).model_dump())


@router.delete(
    "/{contact_id}",
    response_model=OkOut,
    summary="Delete contact",
    description="Contacts referenced by purchase or sale orders cannot be deleted.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_contact(
    contact_id: int,
    db: Session = Depends(get_db),
    actor: CurrentActor = Depends(require_permission("contacts.manage")),
):
    contact = _get_contact(db, contact_id)
    references = _order_references(db, contact.id)
    if references:
        raise HasDependents(
            f"Contact {contact.name} is used by {references} order(s)",
            details=[{"dependent": "orders", "count": references}],
        )

    db.delete(contact)
    log_audit_event(
        db,
        actor_user_id=actor.user_id,
        action="contact.delete",
        target_type="contact",
        target_id=contact_id,
        metadata_json={"name": contact.name},
    )
    db.commit()
    return OkOut()
