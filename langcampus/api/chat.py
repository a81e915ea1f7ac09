"""Solo chat endpoints. Messages may also target a group id; the facade routes by kind."""
import asyncio
import logging
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse
from langcampus.api.streaming import SSE_HEADERS, event_stream
from langcampus.schemas.chat import (
    ActionResult,
    ConversationView,
    OpenChatRequest,
    QuizResultRequest,
    TextMessageRequest,
    TranscriptRequest,
    UserRequest,
)
from langcampus.services.session import SessionFacade, get_session_facade

logger = logging.getLogger(__name__)

router = APIRouter()

# Denials carry the current messages so the UI can keep rendering
STATUS_CODES = {"ok": 200, "denied": 429, "busy": 409}


def action_response(result: ActionResult) -> JSONResponse:
    """HTTP response for a facade action: 200 ok, 429 quota denial, 409 turn in progress."""
    return JSONResponse(status_code=STATUS_CODES[result.status], content=result.model_dump(mode="json"))


@router.post("", response_model=ConversationView)
async def open_chat(request: OpenChatRequest, facade: SessionFacade = Depends(get_session_facade)):
    """Open a solo chat. An empty chat gets a welcome message shortly after opening."""
    conv = await facade.open_chat(
        request.user_id,
        request.partner,
        corrections_enabled=request.corrections_enabled,
        resume_saved=request.resume_saved,
    )
    return conv.view()


@router.get("/{conversation_id}", response_model=ConversationView)
async def get_chat(conversation_id: str, user_id: str, facade: SessionFacade = Depends(get_session_facade)):
    return facade.get_chat(user_id, conversation_id).view()


@router.delete("/{conversation_id}")
async def close_chat(conversation_id: str, user_id: str, facade: SessionFacade = Depends(get_session_facade)):
    facade.close_chat(user_id, conversation_id)
    return {"status": "closed"}


@router.post("/{conversation_id}/messages", response_model=ActionResult)
async def send_text(
    conversation_id: str,
    request: TextMessageRequest,
    facade: SessionFacade = Depends(get_session_facade),
):
    result = await facade.send_text(
        request.user_id,
        conversation_id,
        request.text.strip(),
        corrections_enabled=request.corrections_enabled,
    )
    return action_response(result)


@router.post("/{conversation_id}/transcripts", response_model=ActionResult)
async def send_audio_transcript(
    conversation_id: str,
    request: TranscriptRequest,
    facade: SessionFacade = Depends(get_session_facade),
):
    result = await facade.send_audio_transcript(
        request.user_id, conversation_id, request.transcript.strip(), audio_ref=request.audio_ref
    )
    return action_response(result)


@router.post("/{conversation_id}/quiz-results", response_model=ActionResult)
async def share_quiz_result(
    conversation_id: str,
    request: QuizResultRequest,
    facade: SessionFacade = Depends(get_session_facade),
):
    result = await facade.share_quiz_result(
        request.user_id, conversation_id, request.topic, request.score, request.total
    )
    return action_response(result)


@router.post("/{conversation_id}/save")
async def save_chat(
    conversation_id: str,
    request: UserRequest,
    facade: SessionFacade = Depends(get_session_facade),
):
    facade.save_chat(request.user_id, conversation_id)
    return {"status": "saved"}


@router.get("/{conversation_id}/events")
async def chat_events(conversation_id: str, user_id: str, facade: SessionFacade = Depends(get_session_facade)):
    """
    SSE stream of the conversation: a "state" event with the full view after
    every change (user turns, AI replies, nudges, generation flag), and a
    "closed" event once the chat is closed or evicted. An open stream keeps
    the chat from going idle.
    """
    conv = facade.get_chat(user_id, conversation_id)
    queue: asyncio.Queue = asyncio.Queue()
    queue.put_nowait(conv.view().model_dump(mode="json"))
    unsubscribe = conv.subscribe(
        lambda c: queue.put_nowait(None if c.closed else c.view().model_dump(mode="json"))
    )
    return StreamingResponse(
        event_stream(queue, "state", unsubscribe, on_heartbeat=conv.touch),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
