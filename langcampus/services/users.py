"""User record access: profile, subscription signal, saved chat, notes and lesson cache."""
import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from langcampus.database import session_scope
from langcampus.models.tables import User
from langcampus.schemas.chat import Message, Partner, SubscriptionState, UserProfile

logger = logging.getLogger(__name__)


class UserStore:
    """Reads and writes the per-user document. Never touches usage counters."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    def _get_or_create(self, db, user_id: str) -> User:
        user = db.get(User, user_id)
        if user is None:
            user = User(id=user_id)
            db.add(user)
            db.flush()
        return user

    def subscription_state(self, user_id: str) -> SubscriptionState:
        """Read-only signal maintained by the payment webhook."""
        with session_scope(self._session_factory) as db:
            user = db.get(User, user_id)
            if user is None or user.subscription_status != SubscriptionState.SUBSCRIBER.value:
                return SubscriptionState.FREE
            return SubscriptionState.SUBSCRIBER

    def get_profile(self, user_id: str) -> UserProfile:
        with session_scope(self._session_factory) as db:
            user = db.get(User, user_id)
            if user is None:
                return UserProfile()
            return UserProfile(
                name=user.name or "",
                hobbies=user.hobbies or "",
                bio=user.bio or "",
                native_language=user.native_language or "English (US)",
            )

    def update_profile(self, user_id: str, profile: UserProfile) -> UserProfile:
        with session_scope(self._session_factory) as db:
            user = self._get_or_create(db, user_id)
            user.name = profile.name
            user.hobbies = profile.hobbies
            user.bio = profile.bio
            user.native_language = profile.native_language
        return profile

    def save_chat(self, user_id: str, partner: Partner, messages: List[Message]) -> None:
        """Keep one saved chat per user; a new save replaces the old one."""
        with session_scope(self._session_factory) as db:
            user = self._get_or_create(db, user_id)
            user.saved_chat = {
                "partner": partner.model_dump(),
                "messages": [m.model_dump() for m in messages],
            }
        logger.info(f"Saved chat with {partner.name} for user {user_id} ({len(messages)} messages)")

    def load_saved_chat(self, user_id: str) -> Optional[Tuple[Partner, List[Message]]]:
        with session_scope(self._session_factory) as db:
            user = db.get(User, user_id)
            if user is None or not user.saved_chat:
                return None
            data = user.saved_chat
        partner = Partner(**data["partner"])
        messages = [Message(**m) for m in data.get("messages", [])]
        return partner, messages

    def delete_saved_chat(self, user_id: str) -> None:
        with session_scope(self._session_factory) as db:
            user = db.get(User, user_id)
            if user is not None:
                user.saved_chat = None

    def get_notes(self, user_id: str) -> str:
        with session_scope(self._session_factory) as db:
            user = db.get(User, user_id)
            return (user.notes or "") if user else ""

    def update_notes(self, user_id: str, notes: str) -> None:
        with session_scope(self._session_factory) as db:
            user = self._get_or_create(db, user_id)
            user.notes = notes

    def set_teach_me_cache(self, user_id: str, language: str, kind: str, topic: str, content: str) -> None:
        """Remember the user's latest lesson; solo turns use it as lesson context."""
        with session_scope(self._session_factory) as db:
            user = self._get_or_create(db, user_id)
            user.teach_me_cache = {
                "language": language,
                "type": kind,
                "topic": topic,
                "content": content,
            }

    def get_teach_me_cache(self, user_id: str) -> Optional[dict]:
        with session_scope(self._session_factory) as db:
            user = db.get(User, user_id)
            return dict(user.teach_me_cache) if user and user.teach_me_cache else None

    def get_active_group(self, user_id: str) -> Optional[str]:
        with session_scope(self._session_factory) as db:
            user = db.get(User, user_id)
            return user.active_group_id if user else None
