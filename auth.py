"""
auth.py - Decides who may start an ingestion run.

Accepted callers: an authenticated admin, the scheduler's service token, or
(on the single-source entry point only) the aggregate run calling back with
the internal-call marker.
"""

import hmac
from typing import Optional

from config import INTERNAL_CALL_SECRET, SERVICE_TOKEN
from database import Database
from errors import AuthorizationError
from models import Identity
from monitoring import get_logger

logger = get_logger("auth")

ADMIN_ROLE = "admin"


class AuthorizationGate:
    def __init__(
        self,
        db: Database,
        service_token: Optional[str] = SERVICE_TOKEN,
        internal_secret: Optional[str] = INTERNAL_CALL_SECRET,
    ):
        self.db = db
        self.service_token = service_token or ""
        self.internal_secret = internal_secret or ""

    def authorize(
        self,
        authorization: Optional[str],
        internal_marker: Optional[str] = None,
        allow_internal: bool = False,
    ) -> Identity:
        """
        Resolve the caller from the Authorization header value.
        Raises AuthorizationError with 401 (no identity) or 403 (not an admin).
        """
        if allow_internal and internal_marker and self._matches(internal_marker, self.internal_secret):
            return Identity(user_id=None, role="internal")

        token = self._bearer_token(authorization)
        if token is None:
            raise AuthorizationError("No authorization header provided", status_code=401)

        if self._matches(token, self.service_token):
            return Identity(user_id=None, role="service")

        user_id = self.db.get_user_id_for_token(token)
        if user_id is None:
            raise AuthorizationError("Invalid token", status_code=401)

        if not self.db.has_role(user_id, ADMIN_ROLE):
            logger.warning(f"User {user_id} tried to run ingestion without the admin role")
            raise AuthorizationError("Admin access required to run scraping functions", status_code=403)

        return Identity(user_id=user_id, role=ADMIN_ROLE)

    @staticmethod
    def _bearer_token(authorization: Optional[str]) -> Optional[str]:
        if not authorization:
            return None
        scheme, _, token = authorization.strip().partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return token.strip()

    @staticmethod
    def _matches(presented: str, expected: str) -> bool:
        """Constant-time compare; a blank expected secret never matches."""
        if not expected:
            return False
        return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))
