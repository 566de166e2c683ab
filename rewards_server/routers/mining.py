"""Mining router: /api/mining/* endpoints."""

from fastapi import APIRouter
from starlette.requests import Request

from rewards_server.deps import get_server
from rewards_server.errors import InvalidInput
from rewards_server.models import RecordPurchaseRequest, TxHashRequest

router = APIRouter()


@router.post("/api/mining/record-purchase")
async def record_purchase(request: Request, req: RecordPurchaseRequest):
    srv = get_server(request)
    if not req.tx_hash:
        raise InvalidInput("Missing tx_hash")
    address = srv.auth.verify_user(req.address, req.timestamp, req.signature)
    return await srv.mining.record_purchase(req.tx_hash, expected_user=address)


@router.post("/api/mining/record-purchase-lite")
async def record_purchase_lite(request: Request, req: TxHashRequest):
    srv = get_server(request)
    if not req.tx_hash:
        raise InvalidInput("Missing tx_hash")
    return await srv.mining.record_purchase(req.tx_hash)


@router.get("/api/mining/history/{address}")
async def mining_history(request: Request, address: str):
    srv = get_server(request)
    return await srv.mining.history(address)
