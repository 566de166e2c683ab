"""User router: /api/users/* endpoints."""

from fastapi import APIRouter
from starlette.requests import Request

from rewards_server.chain import normalize_address
from rewards_server.deps import get_server
from rewards_server.models import LoginRequest, SignedRequest, TxHashRequest

router = APIRouter()


@router.post("/api/users/upsert-from-chain")
async def upsert_from_chain(request: Request, req: SignedRequest):
    srv = get_server(request)
    address = srv.auth.verify_user(req.address, req.timestamp, req.signature)

    key = address.lower()
    claim = srv.upsert_guard.begin(key)
    if claim:
        return {"ok": True, claim: True}
    try:
        result = await srv.users.sync_from_chain(address)
    finally:
        srv.upsert_guard.finish(key)
    return {
        "ok": True,
        "userId": result["userId"],
        "referrerId": result["referrerId"],
        "referral_bonus": result["referral_bonus"],
    }


@router.post("/api/users/register-lite")
async def register_lite(request: Request, req: TxHashRequest):
    srv = get_server(request)
    result = await srv.users.register_lite(req.tx_hash)
    return {
        "ok": True,
        "user": {
            "address": result["address"],
            "userId": result["userId"],
            "referrerId": result["referrerId"],
        },
        "referral_bonus": result["referral_bonus"],
    }


@router.post("/api/users/{address}/login")
async def daily_login(request: Request, address: str, req: LoginRequest):
    srv = get_server(request)
    address = normalize_address(address)
    srv.auth.verify_user(address, req.timestamp, req.signature)
    return await srv.users.daily_login(address)
