# src/node_service/app.py
"""
Node Service - HTTP surface of one consensus node

Routes:
- GET  /status      liveness probe ("live" 200, "faulty" 500)
- POST /message     inbound proposal/vote from a peer
- GET  /start       arm the round driver
- GET  /stop        kill the node
- GET  /getState    reported node state
- GET  /debug/status engine status with per-round history
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Literal, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from src.binary_consensus import (
    ConsensusEngine,
    ConsensusMessage,
    InvalidMessageError,
    RoundDriver,
)
from src.middleware.correlation import CorrelationIdMiddleware

logger = logging.getLogger("consensus.node")


class MessagePayload(BaseModel):
    """Wire format of a consensus message"""
    type: Literal["proposal", "vote"]
    value: int = Field(..., ge=0, le=1)
    round: int = Field(..., ge=1)
    sender: int = Field(..., ge=0)


class NodeStateResponse(BaseModel):
    killed: bool
    x: Optional[int] = None
    decided: Optional[bool] = None
    k: Optional[int] = None


def create_node_app(engine: ConsensusEngine, driver: Optional[RoundDriver] = None) -> FastAPI:
    """Build the FastAPI application serving one node"""
    driver = driver or RoundDriver(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await driver.shutdown()
        await engine.transport.close()
        logger.info(f"Node {engine.node_id} service stopped")

    app = FastAPI(
        title=f"Consensus Node {engine.node_id}",
        description="Binary consensus node",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(CorrelationIdMiddleware)
    app.state.engine = engine
    app.state.driver = driver

    @app.exception_handler(InvalidMessageError)
    async def invalid_message_handler(request: Request, exc: InvalidMessageError):
        logger.warning(f"Node {engine.node_id} rejected message: {exc}")
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.get("/status", response_class=PlainTextResponse)
    async def status():
        if not engine.is_alive():
            return PlainTextResponse("faulty", status_code=500)
        return PlainTextResponse("live", status_code=200)

    @app.post("/message", response_class=PlainTextResponse)
    async def receive_message(request: Request):
        # Killed and faulty nodes drop everything, well-formed or not
        if engine.killed or engine.is_faulty:
            return PlainTextResponse("", status_code=200)

        try:
            payload = MessagePayload.model_validate(await request.json())
        except ValueError as e:
            logger.warning(f"Node {engine.node_id} rejected message body: {e}")
            return JSONResponse(status_code=422, content={"detail": str(e)})

        message = ConsensusMessage.from_dict(payload.model_dump())
        engine.deliver(message)
        return PlainTextResponse("Message processed", status_code=200)

    @app.get("/start", response_class=PlainTextResponse)
    async def start():
        if engine.is_faulty or engine.killed:
            return PlainTextResponse("Node is faulty or killed", status_code=500)

        driver.start()
        return PlainTextResponse("Consensus started", status_code=200)

    @app.get("/stop", response_class=PlainTextResponse)
    async def stop():
        driver.stop()
        return PlainTextResponse("Consensus stopped", status_code=200)

    @app.get("/getState", response_model=NodeStateResponse)
    async def get_state():
        return engine.get_state().to_dict()

    @app.get("/debug/status")
    async def debug_status():
        status = engine.get_status()
        status["driver_running"] = driver.running
        return status

    return app
