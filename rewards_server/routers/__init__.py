"""Router package: collects all API routers and registers them on the FastAPI app."""

from fastapi import FastAPI

from rewards_server.routers import (
    public,
    users,
    mining,
    admin,
)


def register_all_routers(app: FastAPI):
    app.include_router(public.router)
    app.include_router(users.router)
    app.include_router(mining.router)
    app.include_router(admin.router)
