"""In-memory conversation state shared by the turn coordinator and the idle nudge scheduler."""
import logging
import time
from typing import Callable, List, Optional

from langcampus.schemas.chat import ConversationView, Message, Partner

logger = logging.getLogger(__name__)

Listener = Callable[["ConversationState"], None]


class ConversationState:
    """
    Messages plus the generation guard and nudge count for one open chat.

    Every mutation notifies listeners synchronously, so observers (the nudge
    scheduler, SSE streams) re-evaluate on each state change.

    A group conversation is given a ``sink``: appends are written through it to
    the store, and the store's full snapshot comes back through ``replace``.
    """

    def __init__(
        self,
        conversation_id: str,
        kind: str,
        partner: Partner,
        owner_id: Optional[str] = None,
        messages: Optional[List[Message]] = None,
        corrections_enabled: bool = False,
        sink: Optional[Callable[[Message], None]] = None,
    ):
        if kind not in ("solo", "group"):
            raise ValueError(f"Unknown conversation kind: {kind}")
        self.id = conversation_id
        self.kind = kind
        self.partner = partner
        self.owner_id = owner_id
        self.corrections_enabled = corrections_enabled
        self.messages: List[Message] = list(messages or [])
        self.pending_generation = False
        self.nudges_issued = 0
        self.last_activity = time.monotonic()
        self.closed = False
        self._sink = sink
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def _notify(self) -> None:
        self.touch()
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Conversation listener failed for {self.id}: {e}", exc_info=True)

    def append(self, message: Message) -> None:
        if self._sink is not None:
            self._sink(message)
            return
        self.messages.append(message)
        self._notify()

    def replace(self, messages: List[Message]) -> None:
        """Full-state replace; arrival order is not trusted, so re-sort by timestamp."""
        self.messages = sorted(messages, key=lambda m: m.timestamp)
        self._notify()

    def begin_generation(self) -> bool:
        """Take the generation guard. False if a generation is already in flight."""
        if self.pending_generation:
            return False
        self.pending_generation = True
        self._notify()
        return True

    def end_generation(self) -> None:
        self.pending_generation = False
        self._notify()

    def close(self) -> None:
        """Mark the conversation as discarded; observers see it once and should let go."""
        self.closed = True
        self._notify()

    def record_nudge(self) -> None:
        self.nudges_issued += 1
        self._notify()

    def view(self) -> ConversationView:
        return ConversationView(
            conversation_id=self.id,
            kind=self.kind,
            partner=self.partner,
            messages=list(self.messages),
            pending_generation=self.pending_generation,
            nudges_issued=self.nudges_issued,
        )
