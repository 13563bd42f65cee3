"""
Caller identity from the upstream gateway OR dev-mode bypass.
Controlled by FF_REQUIRE_USER_HEADER flag.

Authentication happens before requests reach this service; the gateway
forwards the authenticated principal in the X-User-Id header.
"""

import logging
from dataclasses import dataclass

from .flags import get_flags

logger = logging.getLogger(__name__)


@dataclass
class AuthenticatedUser:
    user_id: str
    email: str = ""
    name: str = ""


# Dev-mode user, returned when FF_REQUIRE_USER_HEADER=false
DEV_USER = AuthenticatedUser(
    user_id="dev-user",
    email="dev@local",
    name="Dev User",
)


async def get_current_user(user_id: str = "", email: str = "") -> AuthenticatedUser:
    """
    Resolve the current user from gateway headers.
    If FF_REQUIRE_USER_HEADER is false, returns a dev user.
    """
    flags = get_flags()

    if not flags.require_user_header:
        return DEV_USER

    user_id = user_id.strip()
    if not user_id:
        raise PermissionError("Missing X-User-Id header")

    return AuthenticatedUser(user_id=user_id, email=email.strip())
