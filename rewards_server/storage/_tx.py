import asyncio
import contextvars
from contextlib import asynccontextmanager

import aiosqlite


class Transactor:
    """Serializes write transactions on a single shared connection.

    ``atomic()`` opens ``BEGIN IMMEDIATE`` and commits on success or rolls
    back on any exception. Nested ``atomic()`` calls from the same task join
    the outer transaction instead of starting a new one.
    """

    def __init__(self, db: aiosqlite.Connection):
        self._db = db
        self._lock = asyncio.Lock()
        self._depth = contextvars.ContextVar(f"tx_depth_{id(self)}", default=0)

    @asynccontextmanager
    async def atomic(self):
        depth = self._depth.get()
        if depth:
            token = self._depth.set(depth + 1)
            try:
                yield self._db
            finally:
                self._depth.reset(token)
            return

        async with self._lock:
            token = self._depth.set(1)
            try:
                await self._db.execute("BEGIN IMMEDIATE")
                try:
                    yield self._db
                except BaseException:
                    await self._db.rollback()
                    raise
                await self._db.commit()
            finally:
                self._depth.reset(token)
