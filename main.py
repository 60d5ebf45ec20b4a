from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import settings
from exceptions import ThumbwrightError
from middleware import RequestIdMiddleware
from routers import health, thumbnail
from utils.logging import get_logger, setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: configure logging, verify engines."""
    # --- Startup ---
    setup_logging()
    logger = get_logger("main")

    engines = health.check_engines()
    missing = [name for name, available in engines.items() if not available]
    if missing:
        logger.warning(
            f"Missing engines: {missing}",
            extra={"context": {"missing_engines": missing}},
        )

    yield

    # --- Shutdown ---
    logger.info("Thumbwright shutting down")


app = FastAPI(
    title="Thumbwright",
    description="Thumbnail Generation Service",
    version="0.1.0",
    lifespan=lifespan,
)

# RequestIdMiddleware handles: request ID, ThumbwrightError responses
app.add_middleware(RequestIdMiddleware)


@app.exception_handler(ThumbwrightError)
async def thumbwright_error_handler(request: Request, exc: ThumbwrightError):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.error_code,
            "message": exc.message,
            **exc.details,
        },
    )


# Routers
app.include_router(health.router)
app.include_router(thumbnail.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.port, workers=settings.workers)
