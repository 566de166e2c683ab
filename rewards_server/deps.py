"""Request helpers shared by the router modules."""

from starlette.requests import Request

from rewards_server.models import SignedRequest


def get_server(request: Request):
    """The RewardsServer that owns this app."""
    return request.app.state.server


async def require_admin(request: Request, purpose: str, req: SignedRequest) -> str:
    """Verify an owner-signed admin request for ``purpose``; returns the admin address."""
    srv = get_server(request)
    return await srv.auth.verify_admin(purpose, req.address, req.timestamp, req.signature)
