import asyncio

from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.core.errors import AppError, UpstreamError
from app.core.rate_limit import limiter
from app.features.auth.routes import router as auth_router
from app.features.invitations.routes import router as invitation_router
from app.features.invitations.store import InvitationTokenStore
from app.features.oauth.pending import PendingOAuthUserCache
from app.features.oauth.routes import router as oauth_router
from app.features.organizations.routes import router as organization_router
from app.features.permissions.routes import router as permission_router
from app.features.subscriptions.middleware import SubscriptionGateMiddleware
from app.features.subscriptions.routes import router as subscription_router
from app.features.users.routes import router as user_router
from app.utils import configure_logging, get_logger


configure_logging(config.LOG_LEVEL)
log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Pool Service Backend",
    description="Multi-tenant pool service management: onboarding, invitations, permissions and subscriptions",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter
# Middleware and the sweeper open their own sessions from here; tests swap it
app.state.session_factory = AsyncSessionLocal


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(SubscriptionGateMiddleware)
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


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if isinstance(exc, UpstreamError):
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
    else:
        log.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message, "code": exc.code},
    )


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


async def sweep_once(session_factory) -> tuple[int, int]:
    """Drop expired pending OAuth users and expire stale invitations."""
    async with session_factory() as db:
        removed = await PendingOAuthUserCache(db).sweep_expired()
        expired = await InvitationTokenStore(db).expire_stale()
        await db.commit()
    return removed, expired


async def sweep_forever(session_factory, interval: int):
    while True:
        await asyncio.sleep(interval)
        try:
            await sweep_once(session_factory)
        except Exception:
            log.exception("Periodic sweep failed")


@app.on_event("startup")
async def startup():
    """Initialize database and start the periodic sweep."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")
    if config.SWEEP_INTERVAL_SECONDS > 0:
        app.state.sweeper = asyncio.create_task(
            sweep_forever(app.state.session_factory, config.SWEEP_INTERVAL_SECONDS)
        )


@app.on_event("shutdown")
async def shutdown():
    sweeper = getattr(app.state, "sweeper", None)
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
app.include_router(oauth_router, prefix="/api/oauth", tags=["oauth"])
app.include_router(invitation_router, prefix="/api/invitations", tags=["invitations"])
app.include_router(user_router, prefix="/api/users", tags=["users"])
app.include_router(organization_router, prefix="/api/organizations", tags=["organizations"])
app.include_router(permission_router, prefix="/api/permissions", tags=["permissions"])
app.include_router(subscription_router, prefix="/api/subscription", tags=["subscription"])
