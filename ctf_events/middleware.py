"""
Request middlewares: caller identity from gateway headers and error mapping.
"""

import json
import logging
from typing import Awaitable, Callable

from aiohttp import web

from .errors import CTFEventsError, ForbiddenError, UnauthorizedError
from .models import ADMIN_ROLE, USER_ROLE, Identity

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

IDENTITY_KEY = web.RequestKey("identity", Identity)
PROTECTED_PREFIXES = ("/api/", "/events/")


def identity_from_headers(request: web.Request) -> Identity:
    """
    Build the caller identity set by the upstream gateway.

    @raise UnauthorizedError: If X-User-Id is missing
    """
    headers = request.headers
    user_id = headers.get("X-User-Id", "").strip()
    if not user_id:
        raise UnauthorizedError("Authentication required")

    role = headers.get("X-User-Role", USER_ROLE).strip().lower()
    if role not in (ADMIN_ROLE, USER_ROLE):
        role = USER_ROLE

    return Identity(
        user_id=user_id,
        role=role,
        email=headers.get("X-User-Email", "").strip(),
        display_name=headers.get("X-User-Display-Name", "").strip(),
        first_name=headers.get("X-User-First-Name", "").strip(),
        last_name=headers.get("X-User-Last-Name", "").strip(),
        organization=headers.get("X-User-Organization", "").strip(),
    )


def get_identity(request: web.Request) -> Identity:
    identity = request.get(IDENTITY_KEY)
    if identity is None:
        raise UnauthorizedError("Authentication required")
    return identity


def require_admin(request: web.Request) -> Identity:
    """Return the caller identity, or raise ForbiddenError for non-admins."""
    identity = get_identity(request)
    if not identity.is_admin:
        raise ForbiddenError("Admin access required")
    return identity


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Render domain errors as JSON bodies with their HTTP status."""
    try:
        return await handler(request)
    except CTFEventsError as e:
        if e.status >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, e)
        return web.json_response(e.to_dict(), status=e.status)
    except web.HTTPException:
        raise
    except json.JSONDecodeError:
        return web.json_response({"msg": "Request body must be valid JSON"}, status=400)
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return web.json_response({"msg": "Server error"}, status=500)


@web.middleware
async def identity_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Attach the caller identity; API and event pages require one."""
    if request.method != "OPTIONS" and request.path.startswith(PROTECTED_PREFIXES):
        request[IDENTITY_KEY] = identity_from_headers(request)
    return await handler(request)
