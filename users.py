"""
Local copies of identity-provider users, kept in sync by the auth webhook.
"""

import logging
from typing import Any, Dict, List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import create_document, get_documents, to_dict, transaction
from errors import ValidationError
from models import User

logger = logging.getLogger(__name__)


def user_from_webhook(payload: Dict[str, Any]) -> Dict[str, str]:
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict) or not data.get("id"):
        raise ValidationError("Webhook payload has no user id")
    addresses = data.get("email_addresses") or []
    first = addresses[0] if addresses else None
    email = (first or {}).get("email_address") or ""
    name = f"{data.get('first_name') or ''} {data.get('last_name') or ''}".strip()
    return {"id": str(data["id"]), "email": email, "name": name}


def sync_user(db: Session, user_id: str, email: str = "", name: str = "") -> bool:
    """Insert the user unless it already exists; existing rows are never changed."""
    if db.get(User, user_id) is not None:
        return False
    try:
        with transaction(db):
            create_document(db, User, {"id": user_id, "email": email or "", "name": name or ""})
    except IntegrityError:
        # created by a concurrent delivery of the same event
        return False
    logger.info("Synced user %s", user_id)
    return True


def list_users(db: Session) -> List[Dict[str, Any]]:
    users = get_documents(db, User, order_by=[User.created_at.desc(), User.id])
    return [to_dict(user) for user in users]
