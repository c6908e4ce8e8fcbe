"""Chat API controller with FastAPI endpoints."""

import logging
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Path, Query, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.dependencies import (
    get_caller,
    get_db,
    get_session_factory,
    get_stream_context,
    get_token_producer,
)
from app.domains.chat import frames
from app.domains.chat.context import StreamContext
from app.domains.chat.producer import TokenProducer
from app.domains.chat.resumption import ResumptionService
from app.domains.chat.service import Caller, ChatService
from app.schemas.base import ErrorResponse
from app.schemas.chat import ChatHistoryResponse, ChatResponse, ChatTurnRequest

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/chat",
    tags=["chat"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
)


def _frame_response(body) -> StreamingResponse:
    return StreamingResponse(
        body,
        media_type=frames.DATA_STREAM_MEDIA_TYPE,
        headers=frames.DATA_STREAM_HEADERS,
    )


@router.post("", response_class=StreamingResponse)
async def post_chat_turn(
    chat_request: ChatTurnRequest = Body(...),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    producer: TokenProducer = Depends(get_token_producer),
    stream_context: StreamContext = Depends(get_stream_context),
):
    """Send a user message and stream the assistant reply.

    The user message is stored before generation starts. The response body is
    a data stream of text, tool and finish frames.
    """
    service = ChatService(db, session_factory, producer=producer, stream_context=stream_context)
    turn = await service.prepare_turn(chat_request, caller)
    logger.info(f"Streaming turn for chat {turn.chat_id} on stream {turn.stream_id}")
    return _frame_response(await service.open_stream(turn))


@router.get("", response_class=StreamingResponse)
async def resume_chat_stream(
    chat_id: UUID = Query(..., alias="chatId", description="Chat to resume"),
    skip: int = Query(0, ge=0, description="Frames the client already received"),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    stream_context: StreamContext = Depends(get_stream_context),
):
    """Reconnect to the chat's latest generation.

    Returns 204 when there is nothing to resume.
    """
    service = ResumptionService(db, stream_context)
    body = await service.resume(chat_id, caller, skip=skip)
    if body is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return _frame_response(body)


@router.delete("", response_model=ChatResponse)
async def delete_chat(
    chat_id: UUID = Query(..., alias="id", description="Chat ID"),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Delete a chat owned by the caller."""
    service = ChatService(db, session_factory)
    return await service.delete_chat(chat_id, caller)


@router.get("/{chat_id}/history", response_model=ChatHistoryResponse)
async def get_chat_history(
    chat_id: UUID = Path(..., description="Chat ID"),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Get a chat and its messages."""
    service = ChatService(db, session_factory)
    return await service.get_history(chat_id, caller)
