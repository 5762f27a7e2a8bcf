import logging

from fastapi import FastAPI

from agent_desk import config
from agent_desk.api.v1.route import api_router as MainRouter
from agent_desk.service.desk import build_desk

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="agent_desk", version="0.0.1")
app.include_router(router=MainRouter, prefix="/api/v1")
app.state.desk = None


@app.on_event("startup")
async def start_desk() -> None:
    if app.state.desk is None:
        app.state.desk = build_desk()
    await app.state.desk.start()


@app.on_event("shutdown")
async def shutdown_event() -> None:
    if app.state.desk is not None:
        await app.state.desk.aclose()
