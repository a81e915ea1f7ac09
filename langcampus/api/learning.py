"""Metered learning content endpoints and account endpoints."""
import base64
import logging
from typing import List
from fastapi import APIRouter, Depends
from langcampus.schemas.chat import (
    LessonRequest,
    LessonResponse,
    NotesRequest,
    Partner,
    PartnerSearchRequest,
    QuizQuestion,
    QuizRequest,
    SpeechRequest,
    SpeechResponse,
    UsageResponse,
    UserProfile,
)
from langcampus.services.session import SessionFacade, get_session_facade

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/partners/search", response_model=List[Partner])
async def find_partners(request: PartnerSearchRequest, facade: SessionFacade = Depends(get_session_facade)):
    return await facade.find_partners(
        request.user_id, request.native_language, request.target_language, request.interests
    )


@router.post("/lessons", response_model=LessonResponse)
async def get_lesson(request: LessonRequest, facade: SessionFacade = Depends(get_session_facade)):
    content = await facade.get_lesson(
        request.user_id, request.topic, request.kind, request.target_language, request.native_language
    )
    return LessonResponse(topic=request.topic, kind=request.kind, content=content)


@router.post("/quizzes", response_model=List[QuizQuestion])
async def generate_quiz(request: QuizRequest, facade: SessionFacade = Depends(get_session_facade)):
    return await facade.generate_quiz(request.user_id, request.topic, request.kind, request.language)


@router.post("/speech", response_model=SpeechResponse)
async def play_audio(request: SpeechRequest, facade: SessionFacade = Depends(get_session_facade)):
    wav = await facade.play_audio(request.user_id, request.text, request.language_code)
    return SpeechResponse(audio_base64=base64.b64encode(wav).decode("ascii"))


@router.get("/users/{user_id}/usage", response_model=UsageResponse)
async def get_usage(user_id: str, facade: SessionFacade = Depends(get_session_facade)):
    return facade.usage(user_id)


@router.put("/users/{user_id}/profile", response_model=UserProfile)
async def update_profile(user_id: str, profile: UserProfile, facade: SessionFacade = Depends(get_session_facade)):
    return facade.update_profile(user_id, profile)


@router.get("/users/{user_id}/notes", response_model=NotesRequest)
async def get_notes(user_id: str, facade: SessionFacade = Depends(get_session_facade)):
    return NotesRequest(notes=facade.get_notes(user_id))


@router.put("/users/{user_id}/notes")
async def update_notes(user_id: str, request: NotesRequest, facade: SessionFacade = Depends(get_session_facade)):
    facade.update_notes(user_id, request.notes)
    return {"status": "saved"}


@router.delete("/users/{user_id}/saved-chat")
async def delete_saved_chat(user_id: str, facade: SessionFacade = Depends(get_session_facade)):
    facade.delete_saved_chat(user_id)
    return {"status": "deleted"}
