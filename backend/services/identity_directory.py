"""
Identity directory lookups against portal_users.

Accounts are issued by the identity provider; this module only resolves an
email address to the account id used in object permissions.
"""
import logging
from typing import Optional

from pymongo.errors import PyMongoError

from database import database
from services.errors import UpstreamError

logger = logging.getLogger(__name__)


async def find_account_id_by_email(email: str) -> Optional[str]:
    """
    Return the portal_user_id for an email, or None when no account matches.

    Raises:
        UpstreamError: the directory could not be queried
    """
    normalized = (email or "").strip().lower()
    if not normalized:
        return None

    db = database.get_db()
    try:
        user = await db.portal_users.find_one(
            {"auth_email": normalized},
            {"_id": 0, "portal_user_id": 1},
        )
    except PyMongoError as e:
        logger.error(f"Directory lookup failed for {normalized}: {e}")
        raise UpstreamError("Identity lookup failed", error_code="IDENTITY_LOOKUP_FAILED")

    return user.get("portal_user_id") if user else None
