"""Group chat endpoints."""
import asyncio
import logging
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from langcampus.api.chat import action_response
from langcampus.api.streaming import SSE_HEADERS, event_stream
from langcampus.schemas.chat import (
    ActionResult,
    CreateGroupRequest,
    GroupState,
    TextMessageRequest,
    TopicRequest,
    UserRequest,
)
from langcampus.services.session import SessionFacade, get_session_facade

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=GroupState)
async def create_group(request: CreateGroupRequest, facade: SessionFacade = Depends(get_session_facade)):
    return facade.create_group(request.user_id, request.partner)


@router.get("/{group_id}", response_model=GroupState)
async def get_group(group_id: str, facade: SessionFacade = Depends(get_session_facade)):
    return facade.groups.get(group_id)


@router.delete("/{group_id}")
async def delete_group(group_id: str, user_id: str, facade: SessionFacade = Depends(get_session_facade)):
    facade.delete_group(user_id, group_id)
    return {"status": "deleted"}


@router.post("/{group_id}/join", response_model=ActionResult)
async def join_group(group_id: str, request: UserRequest, facade: SessionFacade = Depends(get_session_facade)):
    return facade.join_group(request.user_id, group_id)


@router.post("/{group_id}/leave", response_model=ActionResult)
async def leave_group(group_id: str, request: UserRequest, facade: SessionFacade = Depends(get_session_facade)):
    return facade.leave_group(request.user_id, group_id)


@router.put("/{group_id}/topic", response_model=ActionResult)
async def set_group_topic(group_id: str, request: TopicRequest, facade: SessionFacade = Depends(get_session_facade)):
    """Host-only; requests from other members leave the topic unchanged."""
    return facade.set_group_topic(request.user_id, group_id, request.topic.strip())


@router.post("/{group_id}/messages", response_model=ActionResult)
async def post_message(
    group_id: str,
    request: TextMessageRequest,
    facade: SessionFacade = Depends(get_session_facade),
):
    """Messages starting with the mention token (@bot) also get a bot reply."""
    result = await facade.send_text(
        request.user_id,
        group_id,
        request.text.strip(),
        corrections_enabled=request.corrections_enabled,
    )
    return action_response(result)


@router.get("/{group_id}/events")
async def group_events(group_id: str, facade: SessionFacade = Depends(get_session_facade)):
    """SSE stream of full group snapshots; a "closed" event once the group is deleted."""
    state = facade.groups.get(group_id)
    queue: asyncio.Queue = asyncio.Queue()
    queue.put_nowait(state.model_dump(mode="json"))
    unsubscribe = facade.groups.subscribe(
        group_id, lambda s: queue.put_nowait(s.model_dump(mode="json") if s is not None else None)
    )
    return StreamingResponse(
        event_stream(queue, "group", unsubscribe),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
