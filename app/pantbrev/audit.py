import json
import logging
from typing import Any

from flask import g, has_request_context, request

from app.pantbrev.models import User

audit_logger = logging.getLogger("pantbrev.audit")


def record_event(
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """
    Append-only audit line for user actions performed through the portal.

    The backend keeps the authoritative per-deed audit trail; these lines tie a
    portal request (request_id, client IP) to the action the user took.
    """
    in_request = has_request_context()
    event = {
        "request_id": request_id or (getattr(g, "request_id", None) if in_request else None),
        "actor_user_id": actor.id if actor else None,
        "actor_user_email": actor.email if actor else None,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "reason": reason,
        "metadata": metadata or None,
        "client_ip": request.remote_addr if in_request else None,
    }
    audit_logger.info("audit %s", json.dumps(event, sort_keys=True, default=str))
    return event
