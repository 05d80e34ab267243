from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import init_db
from app.features.permissions.lifecycle import GrantValidationError
from app.features.permissions.routes import router as permission_router
from app.features.permissions.snapshot import SnapshotError, restore_snapshot
from app.features.permissions.store import GrantStore
from app.features.users.dependencies import get_authorization_header
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Scoped Grants",
    description="Scoped permission grants for customers and classes",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header, default_limits=[config.RATE_LIMIT])
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if not config.JWT_SECRET:
    log.warning("JWT_SECRET not set, authenticated endpoints will refuse requests")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(GrantValidationError)
async def grant_validation_exception_handler(_request: Request, exc: GrantValidationError):
    log.info("Grant rejected: %s", exc.message)
    return JSONResponse(status_code=400, content={"detail": exc.message, "field": exc.field})


@app.exception_handler(SnapshotError)
async def snapshot_exception_handler(_request: Request, exc: SnapshotError):
    return JSONResponse(
        status_code=503,
        content={"detail": "Grant change applied but could not be saved; it will be lost on restart"},
    )


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize the audit database and the grant store."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")

    store = GrantStore()
    if config.GRANT_SNAPSHOT_PATH:
        restore_snapshot(store, config.GRANT_SNAPSHOT_PATH)
    else:
        log.warning("GRANT_SNAPSHOT_PATH not set, grants are kept in memory only")
    app.state.grant_store = store


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Scoped Grants API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "All /permissions endpoints require a Bearer token in the Authorization header",
            "admin_endpoints": [
                "/permissions/users/{user_id}/grants/*", "/permissions/holders",
                "/permissions/reset", "/permissions/purge-expired", "/permissions/audit-logs"
            ],
        },
        "features": {
            "permissions": "Global, customer-scoped and class-scoped grants with precedence resolution",
            "snapshots": "Versioned JSON persistence of the grant store",
            "audit": "Audit log of every grant change",
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    store = getattr(app.state, "grant_store", None)
    return {"status": "healthy", "grants": len(store) if store is not None else None}


# Permission routes
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
