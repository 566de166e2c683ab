"""
server.py - Mining rewards backend entry point.

Single-process server combining:
 - SQLite persistent storage via StorageManager
 - Read-only contract client (ChainReader over JSON-RPC)
 - Reward services (users, mining purchases, accrual, admin reconciliation)
 - REST API (FastAPI on uvicorn, port 8787)

Usage:
    python -m rewards_server.server [--api-port 8787] [--db-path data/rewards.db] --rpc-url URL --contract ADDR
    python rewards_server/server.py [--api-port 8787] [--db-path data/rewards.db] --rpc-url URL --contract ADDR

Every flag defaults from the environment (API_PORT, DB_PATH, RPC_URL,
CONTRACT_ADDRESS, ALLOWED_ORIGINS, WEIRD_RATE_THRESHOLD, RPC_TIMEOUT).
"""

import argparse
import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Optional, Sequence

# Ensure project root is on sys.path so imports work both ways
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from rewards_server import __version__
from rewards_server.accrual import WEIRD_RATE_THRESHOLD, AccrualEngine
from rewards_server.auth import AuthService
from rewards_server.chain import DEFAULT_RPC_TIMEOUT, ChainReader
from rewards_server.daymath import utcnow
from rewards_server.errors import ChainReadFailure, InvalidInput, RewardsError
from rewards_server.mining import PurchaseRecorder
from rewards_server.ratelimit import UpsertGuard
from rewards_server.reconcile import ReconciliationService
from rewards_server.routers import register_all_routers
from rewards_server.storage import StorageManager
from rewards_server.users import UserService

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)-10s] %(levelname)-5s %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("server")


def _error_body(reason: str) -> dict:
    return {"ok": False, "error": reason}


def register_error_handlers(app: FastAPI):
    """Render every failure as ``{"ok": false, "error": <reason>}``."""

    @app.exception_handler(RewardsError)
    async def rewards_error(request: Request, exc: RewardsError):
        if isinstance(exc, ChainReadFailure):
            logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.reason, exc)
        else:
            logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.reason, exc)
        return JSONResponse(_error_body(exc.reason), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        logger.info("%s %s -> invalid body: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(_error_body(InvalidInput.reason), status_code=InvalidInput.status_code)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception("%s %s failed", request.method, request.url.path)
        return JSONResponse(_error_body(RewardsError.reason), status_code=500)


# ---------------------------------------------------------------------------
# Rewards server
# ---------------------------------------------------------------------------

class RewardsServer:
    """Single-process rewards backend: storage, chain reader, services and REST API."""

    def __init__(
        self,
        api_port: int = 8787,
        db_path: str = "data/rewards.db",
        rpc_url: str = "",
        contract_address: str = "",
        allowed_origins: Sequence[str] = ("*",),
        weird_rate_threshold: int = WEIRD_RATE_THRESHOLD,
        rpc_timeout: float = DEFAULT_RPC_TIMEOUT,
        chain: Optional[ChainReader] = None,
        clock: Callable = utcnow,
    ):
        self.api_port = api_port
        self.db_path = db_path
        self.weird_rate_threshold = weird_rate_threshold
        self._clock = clock

        self.chain = chain or ChainReader(rpc_url, contract_address, timeout=rpc_timeout)
        self.auth = AuthService(self.chain)
        self.upsert_guard = UpsertGuard()

        # Storage + services are initialized async in _init_services()
        self.storage: Optional[StorageManager] = None
        self.accrual: Optional[AccrualEngine] = None
        self.users: Optional[UserService] = None
        self.mining: Optional[PurchaseRecorder] = None
        self.reconcile: Optional[ReconciliationService] = None
        self._uvicorn_server: Optional[uvicorn.Server] = None

        # FastAPI app
        self.app = FastAPI(title="Mining Rewards Backend", version=__version__, lifespan=self._lifespan)
        self.app.state.server = self
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=list(allowed_origins),
            allow_credentials=False,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization"],
        )
        register_error_handlers(self.app)
        register_all_routers(self.app)

    async def _init_services(self):
        """Initialize storage and wire up services (must be called in async context)."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir and self.db_path != ":memory:":
            os.makedirs(db_dir, exist_ok=True)

        self.storage = StorageManager(self.db_path)
        await self.storage.initialize()

        self.accrual = AccrualEngine(
            self.storage, self.chain,
            weird_rate_threshold=self.weird_rate_threshold, clock=self._clock,
        )
        self.users = UserService(self.storage, self.chain, self.accrual)
        self.mining = PurchaseRecorder(self.storage, self.chain, self.accrual, self.users)
        self.reconcile = ReconciliationService(self.storage, self.chain, self.accrual, self.users)

        logger.info("Services initialized (db=%s)", self.db_path)

    async def _shutdown_services(self):
        if self.storage:
            await self.storage.close()
            self.storage = None

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self._init_services()
        try:
            yield
        finally:
            await self._shutdown_services()

    # -------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------

    async def start(self):
        """Run the API server; storage comes up in the app lifespan."""
        config = uvicorn.Config(
            self.app,
            host="0.0.0.0",
            port=self.api_port,
            log_level="info",
        )
        self._uvicorn_server = uvicorn.Server(config)
        logger.info("REST API starting on port %d", self.api_port)
        await self._uvicorn_server.serve()

    async def stop(self):
        if self._uvicorn_server:
            self._uvicorn_server.should_exit = True


def _split_origins(value: str):
    origins = [o.strip() for o in (value or "").split(",") if o.strip()]
    return origins or ["*"]


def main():
    """CLI entry point for the rewards backend."""
    env = os.environ
    parser = argparse.ArgumentParser(description="Mining Rewards Backend")
    parser.add_argument("--api-port", type=int, default=int(env.get("API_PORT", 8787)),
                        help="REST API port (default: 8787)")
    parser.add_argument("--db-path", default=env.get("DB_PATH", "data/rewards.db"),
                        help="SQLite database path (default: data/rewards.db)")
    parser.add_argument("--rpc-url", default=env.get("RPC_URL", ""), help="JSON-RPC endpoint of the chain")
    parser.add_argument("--contract", default=env.get("CONTRACT_ADDRESS", ""), help="Platform contract address")
    parser.add_argument("--allowed-origins", default=env.get("ALLOWED_ORIGINS", "*"),
                        help="Comma-separated CORS origins (default: *)")
    parser.add_argument("--weird-rate-threshold", type=int,
                        default=int(env.get("WEIRD_RATE_THRESHOLD", WEIRD_RATE_THRESHOLD)),
                        help="Stored daily rates above this are re-derived from chain (default: 100000)")
    parser.add_argument("--rpc-timeout", type=float, default=float(env.get("RPC_TIMEOUT", DEFAULT_RPC_TIMEOUT)),
                        help="Seconds before a chain read is abandoned (default: 15)")
    args = parser.parse_args()

    if not args.rpc_url or not args.contract:
        parser.error("--rpc-url and --contract (or RPC_URL / CONTRACT_ADDRESS) are required")

    server = RewardsServer(
        api_port=args.api_port,
        db_path=args.db_path,
        rpc_url=args.rpc_url,
        contract_address=args.contract,
        allowed_origins=_split_origins(args.allowed_origins),
        weird_rate_threshold=args.weird_rate_threshold,
        rpc_timeout=args.rpc_timeout,
    )

    logger.info("=" * 60)
    logger.info("  Mining Rewards Backend %s", __version__)
    logger.info("  REST API:    http://localhost:%d", args.api_port)
    logger.info("  Database:    %s", args.db_path)
    logger.info("  RPC:         %s", args.rpc_url)
    logger.info("  Contract:    %s", server.chain.contract_address)
    logger.info("=" * 60)

    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
