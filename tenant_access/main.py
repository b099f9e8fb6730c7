from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from tenant_access.core import config
from tenant_access.core.database.engine import AsyncSessionLocal, init_db
from tenant_access.core.errors import register_error_handlers
from tenant_access.features.audit.routes import router as audit_router
from tenant_access.features.groups.routes import router as group_router
from tenant_access.features.permissions.routes import router as permission_router
from tenant_access.features.roles.defaults import ensure_default_roles
from tenant_access.features.roles.routes import router as role_router
from tenant_access.features.tenants.routes import router as tenant_router
from tenant_access.features.users.dependencies import get_authorization_header
from tenant_access.features.users.routes import router as user_router
from tenant_access.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Tenant Access",
    description="Tenant-scoped roles, groups and permission checks",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.tenant_access.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
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

register_error_handlers(app)


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


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize database and system roles on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")

    if config.SEED_DEFAULT_ROLES:
        async with AsyncSessionLocal() as db:
            await ensure_default_roles(db)


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Tenant Access API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "protected_endpoints": [
                "/tenants/*", "/users/*", "/roles/*", "/groups/*", "/permissions/*", "/audit-logs/*"
            ],
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(tenant_router, prefix="/tenants", tags=["tenants"])
app.include_router(user_router, prefix="/users", tags=["users"])
app.include_router(role_router, prefix="/roles", tags=["roles"])
app.include_router(group_router, prefix="/groups", tags=["groups"])
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
app.include_router(audit_router, prefix="/audit-logs", tags=["audit"])
