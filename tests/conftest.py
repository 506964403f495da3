"""Shared fixtures for the MatchFoundry tests."""

import pytest

from matchfoundry.data_models import Learning, Need, User
from matchfoundry.store import Store


@pytest.fixture
def store():
    """Store with a founder, two experts and an admin."""
    s = Store()
    s.add_user(User(id="alice", name="Alice Founder", email="alice@example.com", role="founder"))
    s.add_user(User(id="bob", name="Bob Expert", email="bob@example.com", role="expert"))
    s.add_user(User(id="dana", name="Dana Expert", email="dana@example.com", role="expert"))
    s.add_user(User(id="carla", name="Carla Community", email="carla@example.com", role="admin"))
    return s


@pytest.fixture
def make_need():
    def _make(user_id, label, category, id=None, **kw):
        fields = {"user_id": user_id, "label": label, "category": category, **kw}
        if id is not None:
            fields["id"] = id
        return Need(**fields)
    return _make


@pytest.fixture
def make_learning():
    def _make(user_id, label, category, id=None, **kw):
        fields = {"user_id": user_id, "label": label, "category": category, **kw}
        if id is not None:
            fields["id"] = id
        return Learning(**fields)
    return _make


@pytest.fixture
def chat_ready(store):
    """Store where alice has a marketing need and bob can help with it."""
    needs, _ = store.check_in("alice", [{"label": "Need help with go-to-market messaging", "category": "marketing"}])
    store.check_in("bob", [], [{"label": "Helped three startups with go-to-market strategy", "category": "marketing"}])
    return store, needs[0]


@pytest.fixture(autouse=True)
def no_openai_key(monkeypatch):
    """Keep extraction on the heuristic path unless a test opts in."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
