from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from updatectl.config import get_config

OPEN_PATHS = ("/docs", "/openapi.json")


class AuthMiddleware(BaseHTTPMiddleware):
    """Require the configured ``X-API-Key`` header on every API call."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(OPEN_PATHS):
            return await call_next(request)

        if request.headers.get("X-API-Key") != get_config().api.key:
            return JSONResponse(status_code=403, content={"detail": "Unauthorized"})
        return await call_next(request)
