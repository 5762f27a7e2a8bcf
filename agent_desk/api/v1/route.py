from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, File, Form, Request, UploadFile

from agent_desk.model.action.action_request import SendMessageRequest
from agent_desk.model.action.action_response import ActionResponse
from agent_desk.model.channel.channel import DeskSnapshot
from agent_desk.service.desk import AgentDesk

api_router = APIRouter()


def get_desk(request: Request) -> AgentDesk:
    return request.app.state.desk


def _status(done: bool, count: Optional[int] = None) -> ActionResponse:
    return ActionResponse(status="ok" if done else "ignored", count=count)


@api_router.get("/channels", response_model=DeskSnapshot)
async def list_channels(desk: AgentDesk = Depends(get_desk)):
    return desk.snapshot()


@api_router.post("/channels/{key}/attend", response_model=ActionResponse)
async def attend_channel(key: str, desk: AgentDesk = Depends(get_desk)):
    return _status(desk.attend(key))


@api_router.post("/channels/{key}/close", response_model=ActionResponse)
async def close_channel(key: str, desk: AgentDesk = Depends(get_desk)):
    return _status(desk.close(key))


@api_router.post("/channels/{key}/focus", response_model=ActionResponse)
async def focus_channel(key: str, desk: AgentDesk = Depends(get_desk)):
    return _status(desk.select(key))


@api_router.post("/channels/{key}/read", response_model=ActionResponse)
async def read_channel(key: str, desk: AgentDesk = Depends(get_desk)):
    return _status(desk.mark_read(key))


@api_router.post("/channels/{key}/messages", response_model=ActionResponse)
async def send_message(key: str, req: SendMessageRequest, desk: AgentDesk = Depends(get_desk)):
    sent = desk.send(
        key,
        req.text,
        media_url=req.media_url,
        media_type=req.media_type,
        file_name=req.file_name,
    )
    return _status(sent)


@api_router.post("/channels/{key}/files", response_model=ActionResponse)
async def send_file(
    key: str,
    file: UploadFile = File(...),
    caption: str = Form(default=""),
    desk: AgentDesk = Depends(get_desk),
):
    content = await file.read()
    sent = await desk.send_file(key, file.filename or "attachment", content, file.content_type, caption)
    return _status(sent)


@api_router.post("/channels/{key}/history", response_model=ActionResponse)
async def load_history(key: str, desk: AgentDesk = Depends(get_desk)):
    loaded = await desk.load_history(key)
    return _status(loaded > 0, count=loaded)


@api_router.post("/events/{event_name}", response_model=ActionResponse)
async def receive_event(event_name: str, payload: Any = Body(default=None), desk: AgentDesk = Depends(get_desk)):
    handled = desk.receive(event_name, payload)
    return _status(handled > 0)
