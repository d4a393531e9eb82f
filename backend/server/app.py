"""
FastAPI status app.

Responsibilities:
- Health check for supervisors / load balancers
- Read-only view of live TM sessions

Served by uvicorn inside the simulator's event loop, next to the TCP
listener, when a status port is configured.
"""

from __future__ import annotations

from typing import Any

import uvicorn
from fastapi import FastAPI

from server.listener import TMServer


def create_app(server: TMServer) -> FastAPI:
    """
    Create the status application bound to a running TMServer.
    """
    app = FastAPI(title="TM Simulator Status")
    app.state.tm_server = server

    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        """Health check endpoint for load balancers."""
        return {"status": "ok"}

    @app.get("/sessions")
    async def sessions() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        tm_server: TMServer = app.state.tm_server
        return tm_server.snapshot()

    return app


def build_status_server(server: TMServer, *, host: str, port: int) -> uvicorn.Server:
    """Build a uvicorn server for the status app; caller awaits serve()."""
    config = uvicorn.Config(
        create_app(server),
        host=host,
        port=port,
        log_level="warning",
        lifespan="off",
    )
    return uvicorn.Server(config)
