"""
ContextGrade - FastAPI Application

Main entry point for the decision lifecycle engine.

Lifecycle:
- Webhook → Entity Resolution → Context Gathering → Recommendation
- Recommendation + Context → Decision (PROPOSED) + frozen Context Snapshot
- Human Review → APPROVED | REJECTED | OVERRIDDEN | ESCALATED (+ override record)
- Outcomes and precedent links are appended afterwards
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import get_settings
from .database import init_db
from .errors import DecisionEngineError
from .routers import auth_router, decisions_router

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
)
logger = logging.getLogger(__name__)

HTTP_ERROR_KINDS = {
    400: "ValidationError",
    401: "Unauthorized",
    403: "Forbidden",
    404: "NotFound",
    405: "MethodNotAllowed",
    409: "ConflictError",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    logger.info(f"ContextGrade {__version__} started ({settings.environment})")
    yield


# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="ContextGrade",
    description="""
    ContextGrade - Decision Lifecycle Engine

    Turns CRM events into auditable, human-reviewed business decisions.

    ## Lifecycle
    1. **Creation**: subject entity + deal → context → recommendation → PROPOSED decision
    2. **Review**: approve, reject, override or escalate (exactly once)
    3. **Audit**: decision with its frozen context snapshot and override history

    ## Key Principles
    - Context snapshots and override records are append-only
    - A recommender outage never blocks decision creation
    - Every read and write is scoped to the caller's client
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(DecisionEngineError)
async def decision_engine_error_handler(request: Request, exc: DecisionEngineError):
    if exc.status_code >= 500:
        logger.error(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "ValidationError",
            "message": "Invalid request payload",
            "details": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": HTTP_ERROR_KINDS.get(exc.status_code, "Error"), "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity error on {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"error": "ConflictError", "message": "Record conflicts with an existing one"},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    body = {"error": "InternalError", "message": "Internal server error"}
    if settings.is_development:
        body["details"] = {"type": type(exc).__name__, "reason": str(exc)}
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)


# Include routers
app.include_router(auth_router)
app.include_router(decisions_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "ContextGrade",
        "version": __version__,
        "description": "Decision Lifecycle Engine",
        "docs": "/docs",
        "endpoints": {
            "create": "POST /decisions",
            "review": "POST /decisions/{id}/review",
            "audit": "GET /decisions/{id}",
            "outcomes": "POST /decisions/{id}/outcomes",
            "links": "POST /decisions/{id}/links",
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


# For running with: python -m contextgrade.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
