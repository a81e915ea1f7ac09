"""Group session coordinator: shared topic, membership and @bot turns for group chats."""
import logging
import time
import uuid
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from langcampus.core.config import settings
from langcampus.core.errors import GroupFullError, GroupNotFound, NotAuthorized
from langcampus.database import session_scope
from langcampus.models.tables import GroupChat, GroupMember, GroupMessage, User
from langcampus.schemas.chat import GroupState, Message, Partner
from langcampus.services.conversation import ConversationState
from langcampus.services.turns import TurnCoordinator, is_mention
from langcampus.services.users import UserStore

logger = logging.getLogger(__name__)

GroupListener = Callable[[Optional[GroupState]], None]


def _to_state(group: GroupChat) -> GroupState:
    messages = sorted(
        (
            Message(
                sender=m.sender,
                text=m.text,
                sender_id=m.sender_id,
                sender_name=m.sender_name,
                correction=m.correction,
                audio_ref=m.audio_ref,
                timestamp=m.timestamp,
            )
            for m in group.messages
        ),
        key=lambda m: m.timestamp,
    )
    return GroupState(
        id=group.id,
        creator_id=group.creator_id,
        member_ids=[m.user_id for m in sorted(group.members, key=lambda m: (m.joined_at, m.id or 0))],
        partner=Partner(**group.partner),
        topic=group.topic,
        active=group.active,
        share_link=group.share_link,
        messages=messages,
    )


class GroupStore:
    """Persistence for group documents and the user's activeGroupId pointer."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    @staticmethod
    def _point_user(db, user_id: str, group_id: Optional[str]) -> None:
        user = db.get(User, user_id)
        if user is None:
            user = User(id=user_id)
            db.add(user)
        user.active_group_id = group_id

    def create(self, group_id: str, creator_id: str, partner: Partner, share_link: str) -> GroupState:
        with session_scope(self._session_factory) as db:
            group = GroupChat(
                id=group_id,
                creator_id=creator_id,
                partner=partner.model_dump(),
                topic=None,
                active=True,
                share_link=share_link,
            )
            group.members.append(GroupMember(user_id=creator_id))
            db.add(group)
            self._point_user(db, creator_id, group_id)
            db.flush()
            return _to_state(group)

    def load(self, group_id: str) -> Optional[GroupState]:
        with session_scope(self._session_factory) as db:
            group = db.get(GroupChat, group_id)
            return _to_state(group) if group is not None else None

    def add_member(self, group_id: str, user_id: str, max_members: int) -> Optional[str]:
        """
        Add a member, leaving the user's current group in the same transaction.

        The target group is validated first, so a full or closed group leaves
        the user where they were. Returns the id of the group that was left.
        """
        with session_scope(self._session_factory) as db:
            group = db.query(GroupChat).filter(GroupChat.id == group_id).with_for_update().first()
            if group is None:
                raise GroupNotFound(group_id)
            if not group.active:
                raise NotAuthorized("This group has been closed by its host.")
            if any(m.user_id == user_id for m in group.members):
                return None
            if len(group.members) >= max_members:
                raise GroupFullError(f"Group {group_id} already has {max_members} members.")

            user = db.get(User, user_id)
            previous = user.active_group_id if user is not None else None
            if previous and previous != group_id:
                self._remove(db, previous, user_id)
            else:
                previous = None
            group.members.append(GroupMember(user_id=user_id))
            self._point_user(db, user_id, group_id)
            return previous

    def remove_member(self, group_id: str, user_id: str) -> bool:
        """
        Remove a member. The creator leaving makes the group inert; the last
        member leaving deletes it. Returns True if the group still exists.
        """
        with session_scope(self._session_factory) as db:
            user = db.get(User, user_id)
            if user is not None and user.active_group_id == group_id:
                user.active_group_id = None
            return self._remove(db, group_id, user_id)

    @staticmethod
    def _remove(db, group_id: str, user_id: str) -> bool:
        group = db.query(GroupChat).filter(GroupChat.id == group_id).with_for_update().first()
        if group is None:
            return False
        for member in list(group.members):
            if member.user_id == user_id:
                group.members.remove(member)
        if user_id == group.creator_id:
            group.active = False
        if not group.members:
            db.delete(group)
            return False
        return True

    def set_topic(self, group_id: str, topic: str) -> None:
        with session_scope(self._session_factory) as db:
            group = db.get(GroupChat, group_id)
            if group is None:
                raise GroupNotFound(group_id)
            group.topic = topic

    def add_message(self, group_id: str, message: Message) -> None:
        with session_scope(self._session_factory) as db:
            if db.get(GroupChat, group_id) is None:
                raise GroupNotFound(group_id)
            db.add(GroupMessage(
                group_id=group_id,
                sender=message.sender,
                sender_id=message.sender_id,
                sender_name=message.sender_name,
                text=message.text,
                correction=message.correction,
                audio_ref=message.audio_ref,
                timestamp=message.timestamp,
            ))

    def delete(self, group_id: str) -> None:
        with session_scope(self._session_factory) as db:
            group = db.get(GroupChat, group_id)
            if group is None:
                return
            for member in group.members:
                user = db.get(User, member.user_id)
                if user is not None and user.active_group_id == group_id:
                    user.active_group_id = None
            db.delete(group)


class GroupSessionCoordinator:
    """
    Keeps every member's view of a group consistent.

    Each change is written to the store and then the whole group is reloaded
    and re-sorted by timestamp (full-state replace), because members write
    concurrently and arrival order is not causal order. Subscribers receive
    the fresh snapshot, or None once the group is gone.
    """

    def __init__(
        self,
        store: GroupStore,
        turns: TurnCoordinator,
        users: UserStore,
        *,
        max_members: Optional[int] = None,
        mention_token: Optional[str] = None,
        share_base_url: Optional[str] = None,
    ):
        self._store = store
        self._turns = turns
        self._users = users
        self._max_members = max_members or settings.group_max_members
        self._mention_token = mention_token or settings.mention_token
        self._share_base_url = share_base_url or settings.share_base_url
        self._conversations: Dict[str, ConversationState] = {}
        self._listeners: Dict[str, List[GroupListener]] = {}

    def get(self, group_id: str) -> GroupState:
        state = self._store.load(group_id)
        if state is None:
            raise GroupNotFound(group_id)
        return state

    def conversation(self, group_id: str) -> ConversationState:
        """Shared conversation for a group; appends are persisted through the store."""
        conv = self._conversations.get(group_id)
        if conv is None:
            state = self.get(group_id)
            conv = ConversationState(
                conversation_id=group_id,
                kind="group",
                partner=state.partner,
                messages=state.messages,
                sink=lambda message: self._persist(group_id, message),
            )
            self._conversations[group_id] = conv
        return conv

    def subscribe(self, group_id: str, listener: GroupListener) -> Callable[[], None]:
        self._listeners.setdefault(group_id, []).append(listener)

        def _unsubscribe() -> None:
            listeners = self._listeners.get(group_id, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(group_id, None)

        return _unsubscribe

    def create_group(self, creator_id: str, partner: Partner) -> GroupState:
        self._leave_current(creator_id)
        group_id = uuid.uuid4().hex
        share_link = f"{self._share_base_url.rstrip('/')}/{group_id}"
        self._store.create(group_id, creator_id, partner, share_link)
        logger.info(f"Group {group_id} created by {creator_id} with partner {partner.name}")
        return self.sync(group_id)

    def set_topic(self, group_id: str, topic: str, requester_id: str) -> GroupState:
        """Host-only. Requests from anyone else are ignored."""
        state = self.get(group_id)
        if requester_id != state.creator_id:
            logger.info(f"Topic change by non-creator {requester_id} ignored for group {group_id}")
            return state
        self._store.set_topic(group_id, topic)
        return self.sync(group_id)

    def join(self, group_id: str, user_id: str) -> GroupState:
        state = self.get(group_id)
        if user_id in state.member_ids:
            return state
        previous = self._store.add_member(group_id, user_id, self._max_members)
        logger.info(f"User {user_id} joined group {group_id}")
        if previous:
            logger.info(f"User {user_id} left group {previous}")
            self.sync(previous)
        return self.sync(group_id)

    def leave(self, group_id: str, user_id: str) -> Optional[GroupState]:
        """Returns the remaining group, or None if it was deleted."""
        self.get(group_id)
        exists = self._store.remove_member(group_id, user_id)
        logger.info(f"User {user_id} left group {group_id}")
        if not exists:
            self._drop(group_id)
            return None
        return self.sync(group_id)

    def delete_group(self, group_id: str, requester_id: str) -> None:
        state = self.get(group_id)
        if requester_id != state.creator_id:
            raise NotAuthorized("Only the group creator can delete the group.")
        self._store.delete(group_id)
        logger.info(f"Group {group_id} deleted by {requester_id}")
        self._drop(group_id)

    async def post_message(
        self,
        group_id: str,
        message: Message,
        *,
        corrections_enabled: bool = False,
    ) -> GroupState:
        """
        Append a member's message. If it starts with the mention token and the
        group is still active, also generate one bot turn anchored to the
        group's shared topic.
        """
        state = self.get(group_id)
        if message.sender_id not in state.member_ids:
            raise NotAuthorized("Only group members can post messages.")
        conv = self.conversation(group_id)
        conv.replace(state.messages)
        if state.active and is_mention(message.text, self._mention_token):
            profile = self._users.get_profile(message.sender_id)
            reply = await self._turns.request_turn(
                conv,
                message,
                profile=profile,
                topic_context=state.topic,
                corrections_enabled=corrections_enabled,
            )
            if reply is None:
                conv.append(message)
        else:
            conv.append(message)
        return self.get(group_id)

    def sync(self, group_id: str) -> Optional[GroupState]:
        """Reload from the store, replace the shared conversation and push to subscribers."""
        state = self._store.load(group_id)
        if state is None:
            self._drop(group_id)
            return None
        conv = self._conversations.get(group_id)
        if conv is not None:
            conv.replace(state.messages)
        self._publish(group_id, state)
        return state

    def evict_idle(self, max_idle_seconds: float, now: Optional[float] = None) -> int:
        """Forget cached conversations of groups with no subscribers and no recent activity."""
        now = time.monotonic() if now is None else now
        stale = [
            group_id
            for group_id, conv in self._conversations.items()
            if not conv.pending_generation
            and not self._listeners.get(group_id)
            and now - conv.last_activity > max_idle_seconds
        ]
        for group_id in stale:
            self._conversations.pop(group_id, None)
        return len(stale)

    def _persist(self, group_id: str, message: Message) -> None:
        if not message.timestamp:
            message = message.model_copy(update={"timestamp": time.time()})
        self._store.add_message(group_id, message)
        self.sync(group_id)

    def _publish(self, group_id: str, state: Optional[GroupState]) -> None:
        for listener in list(self._listeners.get(group_id, [])):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"Group listener failed for {group_id}: {e}", exc_info=True)

    def _drop(self, group_id: str) -> None:
        self._conversations.pop(group_id, None)
        self._publish(group_id, None)
        self._listeners.pop(group_id, None)

    def _leave_current(self, user_id: str) -> None:
        """A user belongs to at most one group: leave the one activeGroupId points at."""
        current = self._users.get_active_group(user_id)
        if current:
            try:
                self.leave(current, user_id)
            except GroupNotFound:
                logger.info(f"Stale active group {current} for user {user_id}")
