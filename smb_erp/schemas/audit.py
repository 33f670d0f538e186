from datetime import datetime
from typing import Any

from pydantic import BaseModel

from smb_erp.schemas.common import PaginationMeta


class AuditLogOut(BaseModel):
    id: str
    actor_user_id: str | None = None
    action: str
    target_type: str
    target_id: str | None = None
    metadata_json: dict[str, Any] | None = None
    created_at: datetime


class AuditLogListOut(BaseModel):
    success: bool = True
    items: list[AuditLogOut]
    pagination: PaginationMeta
