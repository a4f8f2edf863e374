from __future__ import annotations

import logging
from typing import Any, Iterable, List, Set, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..auth import session_user_id


class AuthMiddleware(BaseHTTPMiddleware):
    """Auth guard middleware.

    - Allows routes marked @public (provided via regex+methods tuples).
    - Requires a session user for all other routes and answers 401 otherwise.
    """

    def __init__(
        self,
        app: Any,
        public_route_matchers: Iterable[Tuple[Any, Set[str]]],
        auth_enabled: bool = True,
    ) -> None:
        super().__init__(app)
        self.public_route_matchers: List[Tuple[Any, Set[str]]] = list(public_route_matchers)
        self.auth_enabled = auth_enabled
        self.logger = logging.getLogger("finboard.auth")

    def _is_public(self, path: str, method: str) -> bool:
        for regex, methods in self.public_route_matchers:
            if regex.match(path) and (not methods or method in methods):
                return True
        return False

    async def dispatch(self, request: Request, call_next) -> Response:
        if not self.auth_enabled:
            return await call_next(request)

        path = request.url.path
        method = (request.method or "GET").upper()

        if self._is_public(path, method):
            self.logger.debug("AuthMiddleware: public route allowed %s %s", method, path)
            return await call_next(request)

        user_id = session_user_id(request)
        if user_id is not None:
            self.logger.debug("AuthMiddleware: authenticated %s %s user=%s", method, path, user_id)
            return await call_next(request)

        self.logger.info("AuthMiddleware: rejecting unauthenticated %s %s", method, path)
        return JSONResponse(status_code=401, content={"detail": "Not authenticated"})
