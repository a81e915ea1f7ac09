"""Session facade: the single entry point the UI calls for chat actions."""
import asyncio
import time
import logging
import uuid
from typing import Callable, Dict, List, Optional

from langcampus.core.config import settings
from langcampus.core.errors import (
    ConversationNotFound,
    GenerationFailure,
    NotAuthorized,
    QuotaExceeded,
    StoreUnavailable,
)
from langcampus.schemas.chat import (
    ActionResult,
    GroupState,
    Message,
    Partner,
    QuizQuestion,
    UsageAction,
    UsageResponse,
    UserProfile,
)
from langcampus.services.conversation import ConversationState
from langcampus.services.groups import GroupSessionCoordinator, GroupStore
from langcampus.services.llm import GeminiGenerator
from langcampus.services.nudges import IdleNudgeScheduler
from langcampus.services.quota import QuotaLedger
from langcampus.services.tts import synthesize_speech
from langcampus.services.turns import TurnCoordinator
from langcampus.services.users import UserStore

logger = logging.getLogger(__name__)

QUIZ_SHARE_TEMPLATE = 'I scored {score}/{total} on the "{topic}" quiz!'


class SessionFacade:
    """
    Routes every user action through quota admission, then into the solo
    turn path or the group path.

    Chat actions return an ActionResult: the updated message list, or a
    denial ("denied" when the daily quota is spent, "busy" when a reply is
    still being generated). Content actions raise QuotaExceeded instead.
    StoreUnavailable always propagates so the UI can offer a retry.
    """

    def __init__(
        self,
        ledger: QuotaLedger,
        users: UserStore,
        turns: TurnCoordinator,
        groups: GroupSessionCoordinator,
        generator,
        *,
        speech: Callable[[str, str], bytes] = synthesize_speech,
        nudges_enabled: bool = True,
        nudge_options: Optional[dict] = None,
        idle_ttl_seconds: Optional[float] = None,
    ):
        self._ledger = ledger
        self._users = users
        self._turns = turns
        self._groups = groups
        self._generator = generator
        self._speech = speech
        self._nudges_enabled = nudges_enabled
        self._nudge_options = nudge_options or {}
        self._idle_ttl = float(idle_ttl_seconds if idle_ttl_seconds is not None else settings.chat_idle_ttl_seconds)
        self._chats: Dict[str, ConversationState] = {}
        self._schedulers: Dict[str, IdleNudgeScheduler] = {}

    @property
    def groups(self) -> GroupSessionCoordinator:
        return self._groups

    async def _admit(self, user_id: str, action: UsageAction) -> None:
        def _check() -> bool:
            subscription = self._users.subscription_state(user_id)
            return self._ledger.check_and_admit(user_id, action, subscription)

        try:
            admitted = await asyncio.wait_for(
                asyncio.to_thread(_check),
                timeout=float(settings.store_timeout_seconds),
            )
        except asyncio.TimeoutError:
            logger.warning(f"Quota check timed out for user {user_id} ({action.value})")
            raise StoreUnavailable("The data store is unavailable. Please try again.")
        if not admitted:
            raise QuotaExceeded(action.value)

    # Solo chats

    async def open_chat(
        self,
        user_id: str,
        partner: Partner,
        *,
        corrections_enabled: bool = False,
        resume_saved: bool = False,
    ) -> ConversationState:
        self.evict_idle_chats()
        messages: List[Message] = []
        if resume_saved:
            saved = self._users.load_saved_chat(user_id)
            if saved and saved[0].name == partner.name:
                messages = saved[1]
        conv = ConversationState(
            conversation_id=uuid.uuid4().hex,
            kind="solo",
            partner=partner,
            owner_id=user_id,
            messages=messages,
            corrections_enabled=corrections_enabled,
        )
        self._chats[conv.id] = conv
        if self._nudges_enabled:
            profile = self._users.get_profile(user_id)
            scheduler = IdleNudgeScheduler(
                conv,
                self._generator,
                profile=profile,
                native_language=profile.native_language,
                **self._nudge_options,
            )
            self._schedulers[conv.id] = scheduler
            scheduler.start()
        logger.info(f"Chat {conv.id} opened by {user_id} with {partner.name} ({len(messages)} messages)")
        return conv

    def get_chat(self, user_id: str, conversation_id: str) -> ConversationState:
        conv = self._chats.get(conversation_id)
        if conv is None or conv.owner_id != user_id:
            raise ConversationNotFound(conversation_id)
        conv.touch()
        return conv

    def close_chat(self, user_id: str, conversation_id: str) -> None:
        """Discard an open chat. Unsaved messages are dropped."""
        self.get_chat(user_id, conversation_id)
        self._discard(conversation_id)
        logger.info(f"Chat {conversation_id} closed by {user_id}")

    def evict_idle_chats(self, now: Optional[float] = None) -> int:
        """
        Drop open chats with no activity for the idle TTL, and the cached
        conversations of groups nobody is watching. Chats with a turn in
        flight are kept. Returns the number of solo chats dropped.
        """
        now = time.monotonic() if now is None else now
        stale = [
            conversation_id
            for conversation_id, conv in self._chats.items()
            if not conv.pending_generation and now - conv.last_activity > self._idle_ttl
        ]
        for conversation_id in stale:
            self._discard(conversation_id)
        groups = self._groups.evict_idle(self._idle_ttl, now)
        if stale or groups:
            logger.info(f"Evicted {len(stale)} idle chats and {groups} idle group conversations")
        return len(stale)

    def _discard(self, conversation_id: str) -> None:
        scheduler = self._schedulers.pop(conversation_id, None)
        if scheduler is not None:
            scheduler.stop()
        conv = self._chats.pop(conversation_id, None)
        if conv is not None:
            conv.close()

    def save_chat(self, user_id: str, conversation_id: str) -> None:
        conv = self.get_chat(user_id, conversation_id)
        self._users.save_chat(user_id, conv.partner, conv.messages)

    def delete_saved_chat(self, user_id: str) -> None:
        self._users.delete_saved_chat(user_id)

    # Messages, routed by conversation kind

    async def send_text(
        self,
        user_id: str,
        conversation_id: str,
        text: str,
        *,
        corrections_enabled: Optional[bool] = None,
    ) -> ActionResult:
        return await self._send(user_id, conversation_id, text, corrections_enabled=corrections_enabled)

    async def send_audio_transcript(
        self,
        user_id: str,
        conversation_id: str,
        transcript: str,
        audio_ref: Optional[str] = None,
    ) -> ActionResult:
        return await self._send(user_id, conversation_id, transcript, audio_ref=audio_ref)

    async def share_quiz_result(
        self,
        user_id: str,
        conversation_id: str,
        topic: str,
        score: int,
        total: int,
    ) -> ActionResult:
        text = QUIZ_SHARE_TEMPLATE.format(score=score, total=total, topic=topic)
        return await self._send(user_id, conversation_id, text)

    async def _send(
        self,
        user_id: str,
        conversation_id: str,
        text: str,
        *,
        audio_ref: Optional[str] = None,
        corrections_enabled: Optional[bool] = None,
    ) -> ActionResult:
        conv = self._chats.get(conversation_id)
        if conv is None:
            return await self._send_to_group(
                user_id, conversation_id, text, audio_ref=audio_ref, corrections_enabled=corrections_enabled
            )
        if conv.owner_id != user_id:
            raise ConversationNotFound(conversation_id)

        # Taken before admission so an overlapping send is turned away without consuming quota
        if not conv.begin_generation():
            return ActionResult(status="busy", reason="turn_in_progress", messages=conv.messages)
        try:
            if not await self._admit_message(user_id):
                return ActionResult(
                    status="denied", reason="quota_exceeded", action=UsageAction.MESSAGES, messages=conv.messages
                )
            profile = self._users.get_profile(user_id)
            await self._turns.request_turn(
                conv,
                self._user_message(user_id, profile, text, audio_ref),
                profile=profile,
                topic_context=self._lesson_context(user_id),
                corrections_enabled=corrections_enabled,
                guard_held=True,
            )
            return ActionResult(status="ok", messages=conv.messages)
        finally:
            conv.end_generation()

    async def _send_to_group(
        self,
        user_id: str,
        group_id: str,
        text: str,
        *,
        audio_ref: Optional[str] = None,
        corrections_enabled: Optional[bool] = None,
    ) -> ActionResult:
        group = self._groups.get(group_id)
        if user_id not in group.member_ids:
            raise NotAuthorized("Only group members can post messages.")
        if not await self._admit_message(user_id):
            return ActionResult(
                status="denied", reason="quota_exceeded", action=UsageAction.MESSAGES, messages=group.messages
            )
        profile = self._users.get_profile(user_id)
        state = await self._groups.post_message(
            group_id,
            self._user_message(user_id, profile, text, audio_ref),
            corrections_enabled=bool(corrections_enabled),
        )
        return ActionResult(status="ok", messages=state.messages)

    async def _admit_message(self, user_id: str) -> bool:
        try:
            await self._admit(user_id, UsageAction.MESSAGES)
        except QuotaExceeded as e:
            logger.info(f"Message denied for user {user_id}: {e}")
            return False
        return True

    @staticmethod
    def _user_message(user_id: str, profile: UserProfile, text: str, audio_ref: Optional[str]) -> Message:
        return Message(
            sender="user",
            text=text,
            sender_id=user_id,
            sender_name=profile.name or None,
            audio_ref=audio_ref,
        )

    def _lesson_context(self, user_id: str) -> Optional[str]:
        cache = self._users.get_teach_me_cache(user_id)
        if not cache:
            return None
        return f'{cache.get("type", "Grammar")} lesson on "{cache.get("topic", "")}" ({cache.get("language", "")})'

    # Groups (not metered)

    def create_group(self, user_id: str, partner: Partner) -> GroupState:
        return self._groups.create_group(user_id, partner)

    def set_group_topic(self, user_id: str, group_id: str, topic: str) -> ActionResult:
        state = self._groups.set_topic(group_id, topic, user_id)
        return ActionResult(status="ok", messages=state.messages)

    def join_group(self, user_id: str, group_id: str) -> ActionResult:
        state = self._groups.join(group_id, user_id)
        return ActionResult(status="ok", messages=state.messages)

    def leave_group(self, user_id: str, group_id: str) -> ActionResult:
        state = self._groups.leave(group_id, user_id)
        return ActionResult(status="ok", messages=state.messages if state else [])

    def delete_group(self, user_id: str, group_id: str) -> None:
        self._groups.delete_group(group_id, user_id)

    # Metered content actions

    async def find_partners(
        self, user_id: str, native_language: str, target_language: str, interests: str
    ) -> List[Partner]:
        await self._admit(user_id, UsageAction.SEARCHES)
        return await self._call(self._generator.generate_partners, native_language, target_language, interests)

    async def get_lesson(
        self, user_id: str, topic: str, kind: str, target_language: str, native_language: str
    ) -> str:
        await self._admit(user_id, UsageAction.LESSONS)
        content = await self._call(
            self._generator.generate_lesson, topic, kind, target_language, native_language
        )
        self._users.set_teach_me_cache(user_id, target_language, kind, topic, content)
        return content

    async def generate_quiz(self, user_id: str, topic: str, kind: str, language: str) -> List[QuizQuestion]:
        await self._admit(user_id, UsageAction.QUIZZES)
        return await self._call(self._generator.generate_quiz, topic, kind, language)

    async def play_audio(self, user_id: str, text: str, language_code: str) -> bytes:
        await self._admit(user_id, UsageAction.AUDIO_PLAYS)
        return await self._call(self._speech, text, language_code, timeout=settings.tts_timeout_seconds)

    async def _call(self, func, *args, timeout: Optional[float] = None):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args),
                timeout=float(timeout or settings.llm_timeout_seconds),
            )
        except asyncio.TimeoutError:
            logger.warning(f"{getattr(func, '__name__', 'generation')} timed out")
            raise GenerationFailure("Request took too long. Please try again.")

    # Account

    def usage(self, user_id: str) -> UsageResponse:
        return UsageResponse(
            subscription=self._users.subscription_state(user_id),
            counters=self._ledger.usage(user_id),
            limits=self._ledger.limits,
        )

    def update_profile(self, user_id: str, profile: UserProfile) -> UserProfile:
        return self._users.update_profile(user_id, profile)

    def get_notes(self, user_id: str) -> str:
        return self._users.get_notes(user_id)

    def update_notes(self, user_id: str, notes: str) -> None:
        self._users.update_notes(user_id, notes)

    def shutdown(self) -> None:
        for conversation_id in list(self._chats):
            self._discard(conversation_id)


_facade: Optional[SessionFacade] = None


def get_session_facade() -> SessionFacade:
    """Process-wide facade (FastAPI dependency). Built lazily on first use."""
    global _facade
    if _facade is None:
        users = UserStore()
        generator = GeminiGenerator()
        turns = TurnCoordinator(generator)
        _facade = SessionFacade(
            ledger=QuotaLedger(),
            users=users,
            turns=turns,
            groups=GroupSessionCoordinator(GroupStore(), turns, users),
            generator=generator,
        )
    return _facade
