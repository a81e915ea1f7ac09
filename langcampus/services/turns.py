"""Turn coordinator: at most one in-flight AI generation per conversation."""
import asyncio
import logging
import time
from typing import Optional

from langcampus.core.config import settings
from langcampus.core.errors import GenerationFailure
from langcampus.schemas.chat import Message, UserProfile
from langcampus.services.conversation import ConversationState

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Sorry, I'm having trouble connecting right now."


def is_mention(text: str, token: Optional[str] = None) -> bool:
    """True if a group message starts with the mention token (case-insensitive)."""
    token = (token or settings.mention_token).lower()
    return (text or "").lower().startswith(token)


class TurnCoordinator:
    """
    Issues AI turns for a conversation.

    The ``pending_generation`` guard is taken synchronously before the first
    await and released in ``finally``, so a second request while one is in
    flight is ignored rather than producing a duplicate turn. Generation
    failures and timeouts become a single fallback message and are never
    raised to the caller.
    """

    def __init__(self, generator, timeout_seconds: Optional[float] = None):
        self._generator = generator
        self._timeout = float(timeout_seconds if timeout_seconds is not None else settings.llm_timeout_seconds)

    async def request_turn(
        self,
        conversation: ConversationState,
        new_user_message: Message,
        *,
        profile: Optional[UserProfile] = None,
        topic_context: Optional[str] = None,
        corrections_enabled: Optional[bool] = None,
        guard_held: bool = False,
    ) -> Optional[Message]:
        """
        Append the user message, generate a reply and append it.

        Returns the AI message, or None when a generation was already pending
        (nothing is appended in that case). With ``guard_held`` the caller has
        already taken the guard and remains responsible for releasing it.
        """
        if not guard_held and not conversation.begin_generation():
            logger.info(f"Turn already in flight for conversation {conversation.id}; request ignored")
            return None
        try:
            # Optimistic append so observers see the message before the round trip
            conversation.append(new_user_message)
            if corrections_enabled is None:
                corrections_enabled = conversation.corrections_enabled
            reply = await self._generate(conversation, profile, topic_context, corrections_enabled)
            conversation.append(reply)
            return reply
        finally:
            if not guard_held:
                conversation.end_generation()

    async def _generate(
        self,
        conversation: ConversationState,
        profile: Optional[UserProfile],
        topic_context: Optional[str],
        corrections_enabled: bool,
    ) -> Message:
        partner = conversation.partner
        context = list(conversation.messages)
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(
                    self._generator.generate_turn,
                    context,
                    partner,
                    corrections_enabled,
                    profile,
                    topic_context,
                    conversation.kind == "group",
                ),
                timeout=self._timeout,
            )
            text = (result.get("text") or "").strip()
            if not text:
                raise GenerationFailure("Empty reply from generation service")
            return Message(
                sender="ai",
                text=text,
                correction=result.get("correction") or None,
                sender_name=partner.name,
                timestamp=time.time(),
            )
        except asyncio.TimeoutError:
            logger.warning(f"Generation timed out after {self._timeout}s for conversation {conversation.id}")
        except GenerationFailure as e:
            logger.warning(f"Generation failed for conversation {conversation.id}: {e}")
        except Exception as e:
            logger.error(f"Unexpected generation error for conversation {conversation.id}: {e}", exc_info=True)
        return Message(sender="ai", text=FALLBACK_REPLY, sender_name=partner.name, timestamp=time.time())
