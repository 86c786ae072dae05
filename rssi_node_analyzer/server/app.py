"""FastAPI application factory for the node analyzer server."""

from __future__ import annotations

from fastapi import FastAPI

from rssi_node_analyzer.config import AnalyzerConfig
from rssi_node_analyzer.engine import Engine
from rssi_node_analyzer.server.routes import router
from rssi_node_analyzer.server.ws import router as ws_router


def create_app(engine: Engine | None = None) -> FastAPI:
    cfg = AnalyzerConfig()
    app = FastAPI(title="RSSI Node Analyzer")
    app.state.engine = engine or Engine(cfg)
    app.include_router(router)
    app.include_router(ws_router)
    return app


# Provide a default app instance for non-factory uvicorn usage.
app = create_app()
