"""Admin router: /api/admin/* endpoints.

Every POST carries an admin signature over its own purpose string and is
accepted only from the contract owner.
"""

from fastapi import APIRouter
from starlette.requests import Request

from rewards_server.deps import get_server, require_admin
from rewards_server.models import (
    AdjustCoinsRequest,
    MinerAddRequest,
    MinerRefRequest,
    MiningEditRequest,
    ReconcileUserRequest,
    UserLookupRequest,
    WalletRequest,
)
from rewards_server.reconcile import DEFAULT_LOOKBACK_DAYS

router = APIRouter()


@router.get("/api/admin/overview")
async def overview(request: Request):
    srv = get_server(request)
    return await srv.reconcile.overview()


@router.post("/api/admin/user-info")
async def user_info(request: Request, req: UserLookupRequest):
    srv = get_server(request)
    await require_admin(request, "user_info", req)
    return await srv.reconcile.user_info(wallet=req.wallet, user_id=req.user_id)


@router.post("/api/admin/adjust-coins")
async def adjust_coins(request: Request, req: AdjustCoinsRequest):
    srv = get_server(request)
    admin = await require_admin(request, "adjust_coins", req)
    return await srv.reconcile.adjust_coins(
        admin, req.delta, req.reason, wallet=req.wallet, user_id=req.user_id,
    )


@router.post("/api/admin/miner-add")
async def miner_add(request: Request, req: MinerAddRequest):
    srv = get_server(request)
    admin = await require_admin(request, "miner_add", req)
    return await srv.reconcile.miner_add(
        admin, req.wallet,
        mode=req.mode,
        tx_hash=req.tx_hash,
        amount_usd=req.amount_usd,
        start_date=req.start_date,
        total_days=req.total_days,
    )


@router.post("/api/admin/miner-remove")
async def miner_remove(request: Request, req: MinerRefRequest):
    srv = get_server(request)
    admin = await require_admin(request, "miner_remove", req)
    return await srv.reconcile.miner_remove(admin, req.wallet, purchase_id=req.id, tx_hash=req.tx_hash)


@router.post("/api/admin/miner-fix")
async def miner_fix(request: Request, req: MinerRefRequest):
    srv = get_server(request)
    admin = await require_admin(request, "miner_fix", req)
    return await srv.reconcile.miner_fix(admin, req.wallet, purchase_id=req.id, tx_hash=req.tx_hash)


@router.post("/api/admin/reconcile-user")
async def reconcile_user(request: Request, req: ReconcileUserRequest):
    srv = get_server(request)
    await require_admin(request, "reconcile_user", req)
    return await srv.reconcile.reconcile_user(
        wallet=req.wallet, user_id=req.user_id,
        lookback_days=req.lookback_days or DEFAULT_LOOKBACK_DAYS,
    )


@router.post("/api/admin/mining-edit")
async def mining_edit(request: Request, req: MiningEditRequest):
    srv = get_server(request)
    admin = await require_admin(request, "mining_edit", req)
    return await srv.reconcile.mining_edit(admin, req.wallet, req.set_to, req.reason)


@router.post("/api/admin/normalize-miners")
async def normalize_miners(request: Request, req: WalletRequest):
    srv = get_server(request)
    await require_admin(request, "normalize_miners", req)
    result = await srv.reconcile.bulk_normalize(req.wallet)
    return {"ok": True, "wallet": req.wallet.lower(), **result}


@router.post("/api/admin/import-miners")
async def import_miners(request: Request, req: WalletRequest):
    srv = get_server(request)
    await require_admin(request, "import_miners", req)
    result = await srv.reconcile.import_from_logs(req.wallet, req.lookback_days or DEFAULT_LOOKBACK_DAYS)
    return {"ok": True, "wallet": req.wallet.lower(), **result}
