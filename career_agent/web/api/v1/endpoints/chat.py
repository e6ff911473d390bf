"""Chat endpoints: streamed turns, stop, resume, history, context and hand-off."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, Query, Response, status
from fastapi.responses import StreamingResponse

from .....chat.service import ChatService
from .....errors import APIError, ErrorKind
from .....streaming.events import format_sse_event
from ....auth import AuthSession
from ....schemas import (
    ChatResponse,
    HandoffRequest,
    HandoffResponse,
    MessageResponse,
    MessagesResponse,
    PostChatRequest,
    StopTurnRequest,
    StopTurnResponse,
)
from ..deps import get_auth_session, get_chat_service

router = APIRouter(prefix="/chat", tags=["chat"])
logger = logging.getLogger("career_agent.web.api")

POLL_INTERVAL_SECONDS = 0.05


def _turn_stream(
    service: ChatService,
    chat_id: str,
    turn_id: str,
    user_id: str,
    start_index: int,
    headers: Optional[Dict[str, str]] = None,
) -> StreamingResponse:
    async def event_stream() -> AsyncGenerator[str, None]:
        cursor = start_index
        while True:
            events, turn_status = await service.snapshot_events(chat_id, turn_id, user_id)
            if cursor < len(events):
                for event in events[cursor:]:
                    yield format_sse_event(event["event_id"], event["payload"])
                    cursor += 1

            if turn_status != "streaming" and cursor >= len(events):
                break

            await asyncio.sleep(POLL_INTERVAL_SECONDS)

    response_headers = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
    response_headers.update(headers or {})
    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=response_headers)


@router.post("")
async def post_chat(
    request: PostChatRequest,
    auth: AuthSession = Depends(get_auth_session),
    service: ChatService = Depends(get_chat_service),
    last_event_id: Optional[str] = Header(default=None, alias="Last-Event-ID"),
) -> StreamingResponse:
    turn, reused = await service.submit_message(
        user_id=auth.user_id,
        user_type=auth.user_type,
        chat_id=request.chat_id,
        message_id=request.message.id,
        parts=[part.to_part() for part in request.message.parts],
        visibility=request.visibility,
        persona_hint=request.selected_persona_hint,
    )
    start_index = 0
    if reused:
        start_index = await service.event_index_after(request.chat_id, turn.turn_id, last_event_id, auth.user_id)
    logger.info(
        "turn_accepted chat_id=%s turn_id=%s user_id=%s persona=%s reused=%s",
        request.chat_id,
        turn.turn_id,
        auth.user_id,
        turn.persona_id,
        reused,
    )
    return _turn_stream(
        service,
        request.chat_id,
        turn.turn_id,
        auth.user_id,
        start_index,
        headers={
            "X-Turn-ID": turn.turn_id,
            "X-Message-ID": turn.assistant_message_id,
            "X-Turn-Reused": "true" if reused else "false",
        },
    )


@router.get("/{chat_id}/turns/{turn_id}/stream")
async def stream_turn_events(
    chat_id: str,
    turn_id: str,
    auth: AuthSession = Depends(get_auth_session),
    service: ChatService = Depends(get_chat_service),
    last_event_id: Optional[str] = Header(default=None, alias="Last-Event-ID"),
) -> StreamingResponse:
    # Validate turn existence before opening stream.
    await service.get_turn(chat_id, turn_id, auth.user_id)
    start_index = await service.event_index_after(chat_id, turn_id, last_event_id, auth.user_id)
    return _turn_stream(service, chat_id, turn_id, auth.user_id, start_index)


@router.post("/{chat_id}/stop", response_model=StopTurnResponse)
async def stop_turn(
    chat_id: str,
    response: Response,
    request: Optional[StopTurnRequest] = Body(default=None),
    auth: AuthSession = Depends(get_auth_session),
    service: ChatService = Depends(get_chat_service),
) -> StopTurnResponse:
    turn = await service.stop_turn(chat_id, auth.user_id, turn_id=request.turn_id if request else None)
    response.status_code = status.HTTP_200_OK if turn.is_terminal else status.HTTP_202_ACCEPTED
    return StopTurnResponse(turn_id=turn.turn_id, status=turn.status, stop_requested=turn.stop_requested)


@router.delete("", response_model=ChatResponse)
async def delete_chat(
    id: Optional[str] = Query(default=None),
    auth: AuthSession = Depends(get_auth_session),
    service: ChatService = Depends(get_chat_service),
) -> ChatResponse:
    if not id:
        raise APIError(400, "BAD_REQUEST", "Query parameter 'id' is required", kind=ErrorKind.BAD_REQUEST)
    chat = await service.delete_chat(id, auth.user_id)
    return ChatResponse(**chat.to_dict())


@router.get("/{chat_id}/messages", response_model=MessagesResponse)
async def list_messages(
    chat_id: str,
    auth: AuthSession = Depends(get_auth_session),
    service: ChatService = Depends(get_chat_service),
) -> MessagesResponse:
    messages = await service.list_messages(chat_id, auth.user_id)
    return MessagesResponse(items=[MessageResponse(**message.to_dict()) for message in messages])


@router.get("/{chat_id}/context")
async def get_conversation_context(
    chat_id: str,
    limit: int = Query(default=10, ge=1, le=50),
    auth: AuthSession = Depends(get_auth_session),
    service: ChatService = Depends(get_chat_service),
) -> Dict[str, Any]:
    return await service.get_context(chat_id, auth.user_id, limit=limit)


@router.post("/{chat_id}/handoff", response_model=HandoffResponse)
async def handoff_to_persona(
    chat_id: str,
    request: HandoffRequest,
    auth: AuthSession = Depends(get_auth_session),
    service: ChatService = Depends(get_chat_service),
) -> HandoffResponse:
    result = await service.accept_handoff(chat_id, auth.user_id, request.persona_id, context=request.context)
    return HandoffResponse(**result)
