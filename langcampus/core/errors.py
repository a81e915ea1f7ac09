"""Error taxonomy for the session engine."""


class LangCampusError(Exception):
    """Base class for all engine errors."""


class QuotaExceeded(LangCampusError):
    """Free-tier daily limit reached for an action. Expected, not a fault."""

    def __init__(self, action: str):
        super().__init__(f"Daily limit reached for {action}.")
        self.action = action


class GenerationFailure(LangCampusError):
    """The generation service failed or returned unusable output."""


class StoreUnavailable(LangCampusError):
    """The backing store could not be reached. Retryable."""


class GroupFullError(LangCampusError):
    """The group already has the maximum number of members."""


class NotAuthorized(LangCampusError):
    """The requester may not perform this operation."""


class GroupNotFound(LangCampusError):
    """No group with the given id exists."""


class ConversationNotFound(LangCampusError):
    """No open conversation with the given id exists for the user."""
