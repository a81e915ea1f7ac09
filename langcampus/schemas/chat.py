"""Request and response schemas for the session engine."""
import time
from enum import Enum
from pydantic import BaseModel, Field
from typing import List, Literal, Optional


class SubscriptionState(str, Enum):
    FREE = "free"
    SUBSCRIBER = "subscriber"


class UsageAction(str, Enum):
    """Metered actions, one daily counter each."""
    SEARCHES = "searches"
    MESSAGES = "messages"
    AUDIO_PLAYS = "audioPlays"
    LESSONS = "lessons"
    QUIZZES = "quizzes"


class Partner(BaseModel):
    """AI conversation partner identity."""
    name: str = Field(..., min_length=1, max_length=100)
    avatar: str = ""
    native_language: str
    learning_language: str
    interests: List[str] = Field(default_factory=list)


class UserProfile(BaseModel):
    name: str = ""
    hobbies: str = ""
    bio: str = ""
    native_language: str = "English (US)"


class Message(BaseModel):
    """One chat message. Conversations are ordered by timestamp (epoch seconds)."""
    sender: Literal["user", "ai"]
    text: str
    sender_id: Optional[str] = None
    sender_name: Optional[str] = None
    correction: Optional[str] = None
    audio_ref: Optional[str] = None
    timestamp: float = Field(default_factory=time.time)


class QuizQuestion(BaseModel):
    question: str
    options: List[str]
    correct_answer: str


class GroupState(BaseModel):
    """Snapshot of a group chat as stored; messages sorted by timestamp."""
    id: str
    creator_id: str
    member_ids: List[str]
    partner: Partner
    topic: Optional[str] = None
    active: bool = True
    share_link: str = ""
    messages: List[Message] = Field(default_factory=list)


class ConversationView(BaseModel):
    """What the UI renders for an open conversation."""
    conversation_id: str
    kind: Literal["solo", "group"]
    partner: Partner
    messages: List[Message]
    pending_generation: bool = False
    nudges_issued: int = 0


class ActionResult(BaseModel):
    """Outcome of a facade action: updated messages or a denial reason."""
    status: Literal["ok", "denied", "busy"]
    reason: Optional[str] = None
    action: Optional[UsageAction] = None
    messages: List[Message] = Field(default_factory=list)


class OpenChatRequest(BaseModel):
    user_id: str = Field(..., description="User identifier")
    partner: Partner
    corrections_enabled: bool = False
    resume_saved: bool = Field(False, description="Restore the user's saved chat with this partner")


class TextMessageRequest(BaseModel):
    user_id: str = Field(..., description="User identifier")
    text: str = Field(..., min_length=1, max_length=2000, description="User message")
    corrections_enabled: Optional[bool] = None


class TranscriptRequest(BaseModel):
    user_id: str = Field(..., description="User identifier")
    transcript: str = Field(..., min_length=1, max_length=2000, description="Transcribed voice message")
    audio_ref: Optional[str] = Field(None, description="Storage reference of the recorded audio")


class QuizResultRequest(BaseModel):
    user_id: str
    topic: str = Field(..., min_length=1, max_length=200)
    score: int = Field(..., ge=0)
    total: int = Field(..., gt=0)


class UserRequest(BaseModel):
    user_id: str = Field(..., description="User identifier")


class CreateGroupRequest(BaseModel):
    user_id: str
    partner: Partner


class TopicRequest(BaseModel):
    user_id: str
    topic: str = Field(..., min_length=1, max_length=200)


class PartnerSearchRequest(BaseModel):
    user_id: str
    native_language: str
    target_language: str
    interests: str = ""


class LessonRequest(BaseModel):
    user_id: str
    topic: str = Field(..., min_length=1, max_length=200)
    kind: Literal["Grammar", "Vocabulary"] = "Grammar"
    target_language: str
    native_language: str


class LessonResponse(BaseModel):
    topic: str
    kind: str
    content: str


class QuizRequest(BaseModel):
    user_id: str
    topic: str = Field(..., min_length=1, max_length=200)
    kind: Literal["Grammar", "Vocabulary"] = "Grammar"
    language: str


class SpeechRequest(BaseModel):
    user_id: str
    text: str = Field(..., min_length=1, max_length=5000, description="Text to synthesize")
    language_code: str = Field(default="en-US", description="BCP-47 style code, e.g. fr-FR")


class SpeechResponse(BaseModel):
    audio_base64: str
    mime_type: str = "audio/wav"


class NotesRequest(BaseModel):
    notes: str = Field("", max_length=20000)


class UsageResponse(BaseModel):
    subscription: SubscriptionState
    counters: dict
    limits: dict
