"""Quota ledger: daily admission control for metered actions."""
import logging
from datetime import date
from typing import Callable, Dict, Optional, Union

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from langcampus.core.config import settings
from langcampus.core.errors import StoreUnavailable
from langcampus.database import session_scope
from langcampus.models.tables import USAGE_COLUMNS, User
from langcampus.schemas.chat import SubscriptionState, UsageAction

logger = logging.getLogger(__name__)


def daily_limits() -> Dict[str, int]:
    """Free-tier limit per action, keyed by action name."""
    return {
        UsageAction.SEARCHES.value: settings.limit_searches,
        UsageAction.MESSAGES.value: settings.limit_messages,
        UsageAction.AUDIO_PLAYS.value: settings.limit_audio_plays,
        UsageAction.LESSONS.value: settings.limit_lessons,
        UsageAction.QUIZZES.value: settings.limit_quizzes,
    }


class QuotaLedger:
    """
    Per-user, per-day counters for the five metered actions.

    All writes are single conditional UPDATE statements, so the store's row
    atomicity is the only lock: a stale day is reset by whichever caller gets
    there first (later callers match no row), and an increment only lands
    while the counter is still below its limit.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        limits: Optional[Dict[str, int]] = None,
        today: Callable[[], date] = date.today,
    ):
        self._session_factory = session_factory
        self._limits = limits or daily_limits()
        self._today = today

    @property
    def limits(self) -> Dict[str, int]:
        return dict(self._limits)

    def check_and_admit(
        self,
        user_id: str,
        action: Union[UsageAction, str],
        subscription_state: Union[SubscriptionState, str],
    ) -> bool:
        """
        Admit one use of ``action`` for ``user_id``.

        Subscribers are always admitted and never metered. Free users are
        admitted while the day's counter is below the limit, consuming one
        unit. Raises StoreUnavailable when the store cannot be reached; the
        action must then be treated as denied.
        """
        action = UsageAction(action)
        if SubscriptionState(subscription_state) == SubscriptionState.SUBSCRIBER:
            return True

        column_name = USAGE_COLUMNS[action.value]
        limit = self._limits[action.value]
        today = self._today()

        self._ensure_user(user_id, today)
        with session_scope(self._session_factory) as db:
            if self.reset_if_stale(db, user_id, today):
                logger.info(f"Usage counters reset for user {user_id} ({today.isoformat()})")
            column = getattr(User, column_name)
            result = db.execute(
                update(User)
                .where(
                    User.id == user_id,
                    User.last_reset_date == today,
                    column < limit,
                )
                .values({column_name: column + 1})
                .execution_options(synchronize_session=False)
            )
            admitted = result.rowcount == 1

        if not admitted:
            logger.info(f"Usage limit reached for {action.value} (user {user_id}, limit {limit})")
        return admitted

    def reset_if_stale(self, db: Session, user_id: str, today: date) -> bool:
        """
        Zero every counter if the stored day is not ``today``.

        Returns True only for the caller whose UPDATE matched; a concurrent
        caller that observes the already-reset row changes nothing.
        """
        result = db.execute(
            update(User)
            .where(
                User.id == user_id,
                or_(User.last_reset_date.is_(None), User.last_reset_date != today),
            )
            .values(
                searches=0,
                messages=0,
                audio_plays=0,
                lessons=0,
                quizzes=0,
                last_reset_date=today,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def usage(self, user_id: str) -> Dict[str, int]:
        """Today's counters for display. A stale day reads as all zeros."""
        today = self._today()
        with session_scope(self._session_factory) as db:
            user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
            if user is None or user.last_reset_date != today:
                return {action: 0 for action in USAGE_COLUMNS}
            return {action: getattr(user, column) for action, column in USAGE_COLUMNS.items()}

    def _ensure_user(self, user_id: str, today: date) -> None:
        """Create the user record with zeroed counters on first admission check."""
        try:
            with session_scope(self._session_factory) as db:
                if db.get(User, user_id) is None:
                    db.add(User(id=user_id, last_reset_date=today))
                    db.flush()
        except StoreUnavailable as e:
            # A concurrent first request created the row
            if not isinstance(e.__cause__, IntegrityError):
                raise
