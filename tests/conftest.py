"""
Shared fixtures for the categorization pipeline tests.
"""
import os
import threading

import pytest

os.environ.setdefault("OPENROUTER_KEY", "test-key")

from core.config import Settings, reset_settings
from core.db import Database
from core.exceptions import LLMError
from core.job_store import JobStore


class FakeClient:
    """
    Stand-in for the classification client.

    Returns the queued responses in order; the last one repeats.
    Exceptions in the queue are raised instead of returned.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self._lock = threading.Lock()

    def call_with_structured_output(self, system_prompt, user_message, response_schema, temperature=0.1):
        with self._lock:
            self.calls.append(user_message)
            if not self.responses:
                raise LLMError("No response configured")
            response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def line(mode, category, amount, description=""):
    return {"apportion_mode": mode, "category": category, "amount": amount, "description": description}


def answer(*items, ambiguity=""):
    return {"ambiguity_flag": ambiguity, "spendings": list(items)}


@pytest.fixture(autouse=True)
def _reset_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        openrouter_api_key="test-key",
        database_path=str(tmp_path / "test.db"),
        num_workers=2,
        queue_size=10,
        enqueue_timeout_seconds=0.1,
        classification_timeout_seconds=5.0,
        reconcile_interval_seconds=3600.0,
        stale_pending_after_seconds=30.0,
    )


@pytest.fixture
def database(settings):
    db = Database(settings.database_path)
    db.init_db()
    return db


@pytest.fixture
def job_store(database):
    return JobStore(database)


@pytest.fixture
def buyer(database):
    return database.add_user("demo_user", "Demo")


@pytest.fixture
def partner(database, buyer):
    partner_id = database.add_user("partner_user", "Partner")
    database.link_partners(buyer, partner_id)
    return partner_id


@pytest.fixture
def single(database):
    return database.add_user("single_user", "Solo")
