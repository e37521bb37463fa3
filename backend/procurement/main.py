import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from procurement.config import settings
from procurement.database import engine
from procurement.exceptions import ProcurementError
from procurement.models.base import Base
import procurement.models  # noqa: F401 - register Vendor, RFP, Proposal for create_all
from procurement.api.endpoints import vendors, rfps, proposals

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("Environment: %s, AI provider: %s", settings.app_env, _ai_provider())
    yield


app = FastAPI(title="RFP Procurement API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.frontend_url.split(",")],
    allow_credentials=settings.frontend_url != "*",
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(vendors.router, prefix=API_PREFIX)
app.include_router(rfps.router, prefix=API_PREFIX)
app.include_router(proposals.router, prefix=API_PREFIX)


def _error_response(status_code: int, message: str, error: str | None = None, headers: dict | None = None) -> JSONResponse:
    content = {"success": False, "message": message}
    if error is not None and settings.expose_errors:
        content["error"] = error
    return JSONResponse(status_code=status_code, content=content, headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 404 and message == "Not Found":
        message = "Route not found"
    return _error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and path params are client errors: 400 with a readable message."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "path", "query"))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return _error_response(400, "; ".join(parts) or "Invalid request")


@app.exception_handler(ProcurementError)
async def procurement_error_handler(request: Request, exc: ProcurementError):
    logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    return _error_response(exc.status_code, exc.public_message, error=str(exc))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    return _error_response(500, "Internal server error", error=str(exc))


def _ai_provider() -> str:
    """Which backend structures RFPs: the completion service, or the local fallback parser only."""
    return "ollama" if settings.ai.enabled else "fallback"


@app.get(f"{API_PREFIX}/health")
def health():
    """Health check endpoint for load balancers and readiness probes."""
    return {
        "success": True,
        "message": "RFP Management System API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "aiProvider": _ai_provider(),
    }


@app.get("/")
def root():
    return {
        "success": True,
        "message": "Welcome to RFP Management System API",
        "endpoints": {
            "vendors": f"{API_PREFIX}/vendors",
            "rfps": f"{API_PREFIX}/rfps",
            "proposals": f"{API_PREFIX}/proposals",
            "health": f"{API_PREFIX}/health",
        },
    }
