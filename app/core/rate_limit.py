"""
Request rate limiting (slowapi).

Limits are keyed on the caller's credentials, or their address when anonymous.
"""
from slowapi import Limiter
from starlette.requests import Request


def get_authorization_header(request: Request) -> str:
    auth = request.headers.get("Authorization", "")
    if auth:
        return auth
    return request.client.host if request.client else "anonymous"


limiter = Limiter(key_func=get_authorization_header)

# Endpoints that take a secret (password, invitation token) from anonymous callers
CREDENTIAL_LIMIT = "10/minute"
LOOKUP_LIMIT = "30/minute"
