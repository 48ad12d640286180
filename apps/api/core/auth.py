"""
Authentication dependency for the internal routers.

End-user authentication lives in front of this service. Callers (the app
backend, the scheduler, ops tooling) present a shared secret in the
X-Internal-Token header.
"""
import hmac
import logging
from typing import Optional

from fastapi import Header

from core.config import settings
from core.exceptions import ForbiddenError

logger = logging.getLogger(__name__)


def require_internal_token(
    x_internal_token: Optional[str] = Header(None, alias="X-Internal-Token"),
) -> None:
    """
    Reject requests without the configured token.

    No-op when INTERNAL_API_TOKEN is unset (local development).
    """
    expected = settings.INTERNAL_API_TOKEN
    if not expected:
        return
    if not x_internal_token or not hmac.compare_digest(x_internal_token, expected):
        logger.warning("Internal API call rejected: bad or missing X-Internal-Token")
        raise ForbiddenError("Invalid internal token")
