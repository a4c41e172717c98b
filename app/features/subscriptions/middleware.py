"""
ASGI middleware enforcing the subscription gate on every request.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse

from app.features.subscriptions.gate import SubscriptionGate
from app.features.users.auth import resolve_session_user
from app.utils import get_logger


log = get_logger(__name__)

PRICING_PATH = "/pricing"


class SubscriptionGateMiddleware(BaseHTTPMiddleware):
    """
    Redirects (302) requests from non-entitled organizations to
    ``/pricing?error=<reason>``.

    Database sessions come from ``app.state.session_factory`` so tests can
    point the middleware at their own engine.
    """

    def __init__(self, app, gate: SubscriptionGate | None = None):
        super().__init__(app)
        self.gate = gate or SubscriptionGate.from_config()

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if self.gate.is_public_path(path):
            return await call_next(request)

        session_factory = request.app.state.session_factory
        async with session_factory() as db:
            try:
                user = await resolve_session_user(request, db)
            except Exception:
                log.exception("Could not resolve session for %s; allowing request", path)
                user = None
            decision = await self.gate.check(db, path, user)

        if not decision.allowed:
            return RedirectResponse(f"{PRICING_PATH}?error={decision.reason.value}", status_code=302)
        return await call_next(request)
