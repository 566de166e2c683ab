"""Public router: /api/health, /api/debug/rpc, /api/stats/{address}."""

import time

from fastapi import APIRouter
from starlette.requests import Request

from rewards_server.deps import get_server

router = APIRouter()


@router.get("/api/health")
async def health():
    return {"ok": True, "time": int(time.time() * 1000)}


@router.get("/api/debug/rpc")
async def debug_rpc(request: Request):
    srv = get_server(request)
    chain_id = await srv.chain.chain_id()
    return {
        "ok": True,
        "chainId": chain_id,
        "contract": srv.chain.contract_address,
        "decimals": await srv.chain.token_decimals(),
    }


@router.get("/api/stats/{address}")
async def stats(request: Request, address: str):
    srv = get_server(request)
    return await srv.users.stats(address)
