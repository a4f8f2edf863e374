# --- imports ---
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from . import db
from .api.recurrences import router as recurring_api, system_router as system_api
from .api.transactions import router as transactions_api
from .auth import build_public_route_matchers, public
from .core import config
from .errors import InvalidRuleError, RuleNotFound, RuleValidationError
from .services.auth_middleware import AuthMiddleware
from .services.cron_service import CronService
from .services.logging_service import configure_logging

logger = logging.getLogger(__name__)


def _validation_payload(errors: dict) -> dict:
    return {"detail": "Validation failed", "errors": errors}


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RuleValidationError)
    async def _rule_validation(request: Request, exc: RuleValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content=_validation_payload(exc.errors))

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        # same shape as rule validation: one message per field
        errors = {}
        for err in exc.errors():
            loc = [str(p) for p in err.get("loc", ()) if p != "body"]
            errors.setdefault(".".join(loc) or "body", err.get("msg", "Invalid value"))
        return JSONResponse(status_code=422, content=_validation_payload(errors))

    @app.exception_handler(RuleNotFound)
    async def _not_found(request: Request, exc: RuleNotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": "Recurring transaction not found"})

    @app.exception_handler(InvalidRuleError)
    async def _invalid_rule(request: Request, exc: InvalidRuleError) -> JSONResponse:
        logger.error("Malformed recurring rule on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Recurring rule data is inconsistent"})


def create_app(
    auth_enabled: Optional[bool] = None,
    cron_enabled: Optional[bool] = None,
    setup_logging: bool = True,
) -> FastAPI:
    if setup_logging:
        configure_logging(config.LOG_DIR, production=config.IS_PRODUCTION)

    app = FastAPI(title="Finboard", version="0.1.0")
    _install_error_handlers(app)

    # --- include routers ---
    app.include_router(recurring_api)
    app.include_router(system_api)
    app.include_router(transactions_api)

    @app.get("/health")
    @public
    async def health():
        return {"status": "ok"}

    # --- auth: AuthMiddleware reads the session, so SessionMiddleware is added last (outermost) ---
    auth_enabled = config.AUTH_ENABLED if auth_enabled is None else auth_enabled
    app.add_middleware(
        AuthMiddleware,
        public_route_matchers=build_public_route_matchers(app),
        auth_enabled=auth_enabled,
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=config.SESSION_SECRET_KEY,
        same_site=config.COOKIE_SAMESITE,
        https_only=config.COOKIE_SECURE,
        max_age=config.SESSION_MAX_AGE,
        session_cookie="session",
    )
    logger.info(
        "Session configuration: https_only=%s, same_site=%s, auth_enabled=%s",
        config.COOKIE_SECURE,
        config.COOKIE_SAMESITE,
        auth_enabled,
    )

    cron_enabled = config.CRON_ENABLED if cron_enabled is None else cron_enabled

    # --- lifecycle: init DB and start/stop cron ---
    @app.on_event("startup")
    async def _on_startup() -> None:
        db.initialise_database()
        if not cron_enabled:
            return
        try:
            cron = CronService()
            cron.start()
            app.state.cron = cron
        except Exception:
            logger.exception("CronService failed to start")

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        cron = getattr(app.state, "cron", None)
        if cron is not None:
            try:
                cron.stop()
            except Exception:
                logger.exception("CronService shutdown error")

    return app


app = create_app()
