import hmac
import logging
from typing import Optional

from fastapi import Header

from translation_sync.domain.errors import AuthorizationError
from translation_sync.settings import settings

logger = logging.getLogger(__name__)

def is_authorized(authorization: Optional[str], secret: Optional[str]) -> bool:
    """Checks an `Authorization: Bearer <secret>` header in constant time."""
    if not secret:
        # Unset secret means the trigger is closed, not open
        return False
    if not authorization:
        return False

    expected = f"Bearer {secret}"
    return hmac.compare_digest(authorization.encode("utf-8"), expected.encode("utf-8"))

async def require_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    if not is_authorized(authorization, settings.CRON_SECRET):
        logger.warning("Rejected request with missing or invalid cron secret")
        raise AuthorizationError("Unauthenticated.")
