"""Idle nudge scheduler: AI-initiated messages for a solo chat that has gone quiet."""
import asyncio
import logging
import time
from typing import Optional

from langcampus.core.config import settings
from langcampus.core.errors import GenerationFailure
from langcampus.schemas.chat import UserProfile
from langcampus.services.conversation import ConversationState

logger = logging.getLogger(__name__)

IDLE = "idle"
ARMED = "armed"
FIRED = "fired"


class IdleNudgeScheduler:
    """
    Idle -> Armed -> Fired state machine for one open solo conversation.

    Re-evaluated on every conversation change: any outstanding timer is
    cancelled first, then re-armed only when no generation is pending, the
    AI-initiated budget is not spent, and it is the user's turn to speak
    (empty chat, or the last message came from the AI).

    A fired nudge is appended only if the message count still equals the
    count captured when the timer was armed. Otherwise the user moved the
    conversation on while the nudge was generating and it is discarded.

    The cap counts attempts, not deliveries: a welcome or nudge that fails or
    times out uses up one of the ``max_messages`` slots, so an unreliable
    model can leave fewer AI-initiated messages in the chat. Discarded nudges
    do not count.
    """

    def __init__(
        self,
        conversation: ConversationState,
        generator,
        *,
        profile: Optional[UserProfile] = None,
        native_language: Optional[str] = None,
        welcome_delay: Optional[float] = None,
        nudge_delay: Optional[float] = None,
        max_messages: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.conversation = conversation
        self._generator = generator
        self._profile = profile or UserProfile()
        self._native_language = native_language or self._profile.native_language
        self._welcome_delay = welcome_delay if welcome_delay is not None else settings.welcome_delay_seconds
        self._nudge_delay = nudge_delay if nudge_delay is not None else settings.nudge_delay_seconds
        self._max_messages = max_messages if max_messages is not None else settings.max_ai_initiated_messages
        self._timeout = float(timeout_seconds if timeout_seconds is not None else settings.llm_timeout_seconds)

        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._armed_length = 0
        self._failures = 0
        self._unsubscribe = None
        self._stopped = False

    @property
    def state(self) -> str:
        if self._task is not None:
            return FIRED
        if self._timer is not None:
            return ARMED
        return IDLE

    def start(self) -> None:
        """Begin watching the conversation. Must be called from the running event loop."""
        self._stopped = False
        self._unsubscribe = self.conversation.subscribe(self._on_change)
        self.evaluate()

    def stop(self) -> None:
        """Stop watching. An in-flight nudge finishes but its result is dropped."""
        self._stopped = True
        self._cancel_timer()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_change(self, _conversation: ConversationState) -> None:
        self.evaluate()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _budget_spent(self) -> bool:
        return self.conversation.nudges_issued + self._failures >= self._max_messages

    def evaluate(self) -> None:
        self._cancel_timer()
        if self._stopped or self._task is not None:
            return
        conv = self.conversation
        if conv.closed or conv.pending_generation or self._budget_spent():
            return
        if conv.messages and conv.messages[-1].sender != "ai":
            return
        delay = self._welcome_delay if not conv.messages else self._nudge_delay
        self._armed_length = len(conv.messages)
        self._timer = asyncio.get_running_loop().call_later(delay, self._fire)
        logger.debug(f"Nudge armed for conversation {conv.id} ({delay}s, {self._armed_length} messages)")

    def _fire(self) -> None:
        self._timer = None
        if self._stopped:
            return
        if self.conversation.pending_generation:
            logger.debug(f"Nudge for conversation {self.conversation.id} aborted; generation pending")
            return
        self._task = asyncio.get_running_loop().create_task(self._run(self._armed_length))

    async def _run(self, snapshot_length: int) -> None:
        conv = self.conversation
        try:
            try:
                if snapshot_length == 0:
                    call = asyncio.to_thread(self._generator.generate_welcome, conv.partner)
                else:
                    call = asyncio.to_thread(
                        self._generator.generate_nudge,
                        list(conv.messages),
                        conv.partner,
                        self._profile,
                        self._native_language,
                    )
                message = await asyncio.wait_for(call, timeout=self._timeout)
            except asyncio.TimeoutError:
                self._failures += 1
                logger.warning(f"Nudge timed out for conversation {conv.id}")
                return
            except GenerationFailure as e:
                self._failures += 1
                logger.warning(f"Nudge generation failed for conversation {conv.id}: {e}")
                return
            except Exception as e:
                self._failures += 1
                logger.error(f"Unexpected nudge error for conversation {conv.id}: {e}", exc_info=True)
                return

            if self._stopped or conv.closed:
                return
            if len(conv.messages) != snapshot_length:
                logger.info(f"Nudge discarded for conversation {conv.id}; user moved the conversation on")
                return
            message = message.model_copy(update={"sender": "ai", "timestamp": time.time()})
            conv.append(message)
            conv.record_nudge()
            logger.info(f"Nudge {conv.nudges_issued}/{self._max_messages} sent for conversation {conv.id}")
        finally:
            self._task = None
            if not self._stopped:
                self.evaluate()
