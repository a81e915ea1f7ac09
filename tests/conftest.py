"""Shared fixtures: an in-memory store and a scriptable generation service."""
import os

# Must be set before langcampus.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("CACHE_ENABLED", "false")
os.environ.setdefault("APP_ENV", "dev")

import threading
import time
from datetime import date

import pytest

from langcampus.core.errors import GenerationFailure
from langcampus.database import make_session_factory
from langcampus.models.tables import User
from langcampus.schemas.chat import Message, Partner
from langcampus.services.groups import GroupSessionCoordinator, GroupStore
from langcampus.services.quota import QuotaLedger
from langcampus.services.session import SessionFacade
from langcampus.services.turns import TurnCoordinator
from langcampus.services.users import UserStore


class FakeGenerator:
    """Stands in for GeminiGenerator. Optionally fails, or blocks until ``gate`` is set."""

    def __init__(self, reply="¡Hola! ¿Qué tal?", fail=False, gate=None):
        self.reply = reply
        self.fail = fail
        self.gate = gate
        self.turn_calls = []
        self.welcome_calls = 0
        self.nudge_calls = 0

    def _wait(self):
        if self.gate is not None:
            self.gate.wait(timeout=5)

    def generate_turn(self, context, partner, corrections_enabled, profile, topic_context=None, group=False):
        self.turn_calls.append({
            "context": list(context),
            "corrections_enabled": corrections_enabled,
            "topic_context": topic_context,
            "group": group,
        })
        self._wait()
        if self.fail:
            raise GenerationFailure("model unavailable")
        return {"text": self.reply, "correction": "Hola, ¿qué tal?" if corrections_enabled else ""}

    def generate_welcome(self, partner):
        self.welcome_calls += 1
        self._wait()
        if self.fail:
            raise GenerationFailure("model unavailable")
        return Message(sender="ai", text=f"Hi, I'm {partner.name}!", sender_name=partner.name)

    def generate_nudge(self, context, partner, profile, native_language):
        self.nudge_calls += 1
        self._wait()
        if self.fail:
            raise GenerationFailure("model unavailable")
        return Message(sender="ai", text="Still there?", sender_name=partner.name)

    def generate_partners(self, native_language, target_language, interests):
        return [Partner(name="Lucía", native_language=target_language, learning_language=native_language)]

    def generate_lesson(self, topic, kind, target_language, native_language):
        return f"# {topic}\n\nLesson body."

    def generate_quiz(self, topic, kind, language):
        return []


@pytest.fixture
def session_factory():
    return make_session_factory("sqlite://")


@pytest.fixture
def partner():
    return Partner(
        name="Lucía",
        native_language="Spanish",
        learning_language="English",
        interests=["cooking", "football"],
    )


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def gate():
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def seed_user(session_factory):
    """Insert a user row with explicit counters."""
    def _seed(user_id="user-1", subscription_status="free", last_reset_date=None, **counters):
        db = session_factory()
        try:
            db.add(User(
                id=user_id,
                name="Sam",
                subscription_status=subscription_status,
                last_reset_date=last_reset_date or date.today(),
                **counters,
            ))
            db.commit()
        finally:
            db.close()
    return _seed


def user_message(text="Hola", user_id="user-1", name="Sam", timestamp=None):
    return Message(
        sender="user",
        text=text,
        sender_id=user_id,
        sender_name=name,
        timestamp=timestamp if timestamp is not None else time.time(),
    )


@pytest.fixture
def build_facade(session_factory):
    """SessionFacade over the in-memory store, with nudges off unless asked for."""
    def _build(generator=None, ledger=None, speech=None, nudges_enabled=False, **options):
        generator = generator or FakeGenerator()
        users = UserStore(session_factory)
        turns = TurnCoordinator(generator, timeout_seconds=2)
        groups = GroupSessionCoordinator(
            GroupStore(session_factory),
            turns,
            users,
            max_members=3,
            mention_token="@bot",
            share_base_url="https://practicefor.fun/groups",
        )
        if speech is not None:
            options["speech"] = speech
        return SessionFacade(
            ledger or QuotaLedger(session_factory),
            users,
            turns,
            groups,
            generator,
            nudges_enabled=nudges_enabled,
            **options,
        )
    return _build
