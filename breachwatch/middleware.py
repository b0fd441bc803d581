import logging
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .auth.errors import AuthFlowError
from .error_envelope import build_error
from .logging_config import req_id_var

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Prefer client-provided ID to enable end-to-end correlation
        req_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = req_id_var.set(req_id)
        try:
            response = await call_next(request)
        finally:
            req_id_var.reset(token)
        response.headers.setdefault("X-Request-ID", req_id)
        return response


async def auth_flow_error_handler(request: Request, exc: AuthFlowError) -> JSONResponse:
    """Render a sign-in failure as the standard error envelope; never a redirect."""
    logger.warning(
        "Sign-in failed",
        extra={"meta": {"code": exc.code, "reason": exc.reason, "path": request.url.path, **(exc.extra or {})}},
    )
    body = build_error(
        code=exc.code,
        message=exc.message,
        hint=exc.hint,
        meta={"status_code": exc.http_status, "reason": exc.reason},
    )
    return JSONResponse(body, status_code=exc.http_status, headers={"X-Error-Code": exc.code})


def register_error_handlers(app) -> None:
    app.add_exception_handler(AuthFlowError, auth_flow_error_handler)
