import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from exceptions import ThumbwrightError


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tags every request with a UUID and renders ThumbwrightError as JSON.

    Order of operations per request:
    1. Inject request ID (UUID)
    2. Process request
    3. Add X-Request-ID to response
    """

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except ThumbwrightError as exc:
            response = JSONResponse(
                status_code=exc.status_code,
                content={
                    "success": False,
                    "error": exc.error_code,
                    "message": exc.message,
                    **exc.details,
                },
            )

        response.headers["X-Request-ID"] = request_id
        return response
