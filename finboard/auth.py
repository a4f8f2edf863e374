from typing import Any, Callable, List, Set, Tuple
import logging
import re

from fastapi import HTTPException, Request, status
from fastapi.routing import APIRoute

logger = logging.getLogger("finboard.auth")


def public(func: Callable) -> Callable:
    setattr(func, "_is_public", True)
    return func


def is_endpoint_public(endpoint: Any) -> bool:
    return bool(getattr(endpoint, "_is_public", False))


def build_public_route_matchers(app: Any) -> List[Tuple["re.Pattern[str]", Set[str]]]:
    """Collect regex + methods for routes decorated with @public.

    Returns list of tuples: (compiled_regex, set_of_methods)
    """
    matchers: List[Tuple["re.Pattern[str]", Set[str]]] = []
    for r in getattr(app, "routes", []) or []:
        if not (isinstance(r, APIRoute) and is_endpoint_public(r.endpoint)):
            continue
        methods = set(m.upper() for m in (r.methods or {"GET"}))
        matchers.append((r.path_regex, methods))
    return matchers


def session_user_id(request: Request) -> str | None:
    """User id placed in the session by the sign-in provider, if any."""
    user = request.session.get("user") if "session" in request.scope else None
    if isinstance(user, dict) and user.get("id"):
        return str(user["id"])
    return None


def current_user_id(request: Request) -> str:
    """FastAPI dependency: the owner every query is scoped to."""
    user_id = session_user_id(request)
    if user_id is None:
        logger.info("Rejected %s %s: no session user", request.method, request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user_id
