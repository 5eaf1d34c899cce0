import logging

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

load_dotenv()

from skillsupply.constants import APP_VERSION, ERR_INTERNAL  # noqa: E402
from skillsupply.database import init_db  # noqa: E402
from skillsupply.errors import MarketplaceError  # noqa: E402
from skillsupply.middleware import limiter, register_middleware  # noqa: E402
from skillsupply.routers import bids, listings, messages, misc, problems, users  # noqa: E402

logger = logging.getLogger(__name__)

app = FastAPI(
    title="SkillSupply",
    description="A marketplace for offering skills and requesting help, settled through USDC escrow",
    version=APP_VERSION,
)

# Attach rate limiter to app
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    """Render domain errors as structured JSON."""
    request_id = getattr(request.state, "request_id", "")
    if exc.status_code >= 500:
        logger.error("[%s] %s: %s", request_id, exc.code, exc.message)
    body = exc.to_dict()
    body["request_id"] = request_id
    return JSONResponse(status_code=exc.status_code, content={"detail": body})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log the traceback, never return it."""
    request_id = getattr(request.state, "request_id", "")
    logger.exception("[%s] Unhandled error on %s %s", request_id, request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": {"detail": "Internal server error", "code": ERR_INTERNAL, "request_id": request_id}},
    )


register_middleware(app)

# Include API routers
app.include_router(listings.router)
app.include_router(bids.router)
app.include_router(messages.router)
app.include_router(users.router)
app.include_router(problems.router)
app.include_router(misc.router)


@app.on_event("startup")
async def startup() -> None:
    init_db()
