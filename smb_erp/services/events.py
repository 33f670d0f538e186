"""Fire-and-forget domain events, published to the log once the transaction commits."""

import json
import logging
from typing import Any

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger("smb_erp.events")

_PENDING_KEY = "pending_events"


def publish_event(name: str, payload: dict[str, Any]) -> None:
    logger.info(json.dumps({"event": name, **payload}, default=str))


def queue_event(db: Session, name: str, payload: dict[str, Any]) -> None:
    db.info.setdefault(_PENDING_KEY, []).append((name, payload))


@event.listens_for(Session, "after_commit")
def _publish_pending_events(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, [])
    for name, payload in pending:
        try:
            publish_event(name, payload)
        except Exception:
            logger.exception("event publish failed: %s", name)


@event.listens_for(Session, "after_soft_rollback")
def _discard_pending_events(session: Session, previous_transaction) -> None:
    session.info.pop(_PENDING_KEY, None)
