# core/security.py
from datetime import datetime, timedelta, timezone
from typing import Optional
import hmac
import logging

from fastapi import Header
from jose import JWTError, jwt

from core.config import settings
from core.exceptions import Unauthorized

logger = logging.getLogger(__name__)


# ========================================
# 🔑 JWT / APP CONFIG
# ========================================
SECRET_KEY = settings.SECRET_KEY
ALGORITHM = settings.ALGORITHM or "HS256"
SERVICE_ROLE = "service_role"
SERVICE_TOKEN_EXPIRE_MINUTES = 10


# ========================================
# 🔑 Token Helpers
# ========================================
def create_service_token(expires_delta: Optional[timedelta] = None) -> str:
    """Mint a short-lived service-role token for calling the cron endpoints."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=SERVICE_TOKEN_EXPIRE_MINUTES))
    return jwt.encode({"role": SERVICE_ROLE, "exp": expire}, SECRET_KEY, algorithm=ALGORITHM)


def is_service_token(token: str) -> bool:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return False
    return payload.get("role") == SERVICE_ROLE


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


# ========================================
# ⏰ Scheduled trigger authorization
# ========================================
def verify_cron_request(
    x_cron_secret: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
) -> str:
    """
    Allow a scheduled trigger if it presents the shared cron secret
    or a service-role bearer token. Returns which credential was accepted.
    """
    expected = settings.CRON_SECRET
    if expected and x_cron_secret and hmac.compare_digest(x_cron_secret, expected):
        return "cron_secret"

    token = _bearer_token(authorization)
    if token and is_service_token(token):
        return SERVICE_ROLE

    logger.warning("🚫 Unauthorized scheduled trigger request")
    raise Unauthorized("Unauthorized")
