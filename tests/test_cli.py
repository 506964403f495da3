"""End-to-end CLI runs against a temporary state file."""

import json
import os

import pytest
from typer.testing import CliRunner

from matchfoundry.chats import ChatNegotiation
from matchfoundry.errors import ConflictError
from matchfoundry.main import app
from matchfoundry.store import Store, state_lock

runner = CliRunner()


@pytest.fixture
def state(tmp_path):
    path = tmp_path / "state.json"
    result = runner.invoke(app, ["seed", "--state", str(path)])
    assert result.exit_code == 0, result.output
    return path


def _user_id(path, email):
    return Store.load(path).find_user_by_email(email).id


def test_seed_is_repeatable(state):
    result = runner.invoke(app, ["seed", "--state", str(state)])
    assert result.exit_code == 0
    assert [u.email for u in Store.load(state).list_users()] == [
        "alice@example.com",
        "bob@example.com",
        "carla@example.com",
    ]


def test_extract_prints_json():
    result = runner.invoke(app, ["extract", "Need help with fundraising"])
    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["needs"] == [{"label": "Need help with fundraising", "category": "fundraising"}]


def test_extract_blank_text_fails():
    result = runner.invoke(app, ["extract", "   "])
    assert result.exit_code == 1
    assert "Error" in result.output


def test_checkin_compute_and_schedule(state):
    alice = _user_id(state, "alice@example.com")
    bob = _user_id(state, "bob@example.com")

    assert runner.invoke(app, ["checkin", alice, "Need help with SEO content", "--state", str(state)]).exit_code == 0
    assert runner.invoke(app, ["checkin", bob, "Grew organic traffic with SEO content", "--state", str(state)]).exit_code == 0

    result = runner.invoke(app, ["compute", "--state", str(state)])
    assert result.exit_code == 0, result.output

    store = Store.load(state)
    need = store.list_needs(user_id=alice)[0]
    assert need.category == "marketing"
    suggestion = next(s for s in store.list_suggestions() if s.need_id == need.id)
    assert suggestion.expert_user_id == bob
    assert suggestion.reason.endswith("70% match confidence")

    assert runner.invoke(app, ["matches", alice, "--state", str(state)]).exit_code == 0

    result = runner.invoke(app, ["request-chat", need.id, alice, bob, "--state", str(state)])
    assert result.exit_code == 0, result.output
    chat_id = Store.load(state).list_chats()[0].id

    result = runner.invoke(
        app,
        [
            "propose", chat_id,
            "--slot", "2025-03-03T09:00:00Z,2025-03-03T09:30:00Z",
            "--slot", "2025-03-04T14:00:00Z,2025-03-04T14:30:00Z",
            "--state", str(state),
        ],
    )
    assert result.exit_code == 0, result.output
    slot_id = Store.load(state).get_chat(chat_id).proposed_slots[1].id

    result = runner.invoke(app, ["select", chat_id, slot_id, "--state", str(state)])
    assert result.exit_code == 0, result.output
    chat = Store.load(state).get_chat(chat_id)
    assert chat.status == "scheduled"
    assert chat.chosen_slot_id == slot_id

    again = runner.invoke(app, ["select", chat_id, slot_id, "--state", str(state)])
    assert again.exit_code == 1

    assert runner.invoke(app, ["chats", bob, "--role", "expert", "--state", str(state)]).exit_code == 0
    assert runner.invoke(app, ["overview", "--state", str(state)]).exit_code == 0


def test_errors_exit_with_code_one_and_keep_state(state):
    before = state.read_text(encoding="utf-8")

    result = runner.invoke(app, ["select", "no-chat", "no-slot", "--state", str(state)])
    assert result.exit_code == 1
    assert "not found" in result.output

    result = runner.invoke(app, ["matches", "someone", "--role", "admin", "--state", str(state)])
    assert result.exit_code == 1

    assert state.read_text(encoding="utf-8") == before


def test_ingest_csv(state, tmp_path):
    users = tmp_path / "users.csv"
    users.write_text("name,email,role\nErin Expert,erin@example.com,expert\n", encoding="utf-8")
    result = runner.invoke(app, ["ingest", "--users-csv", str(users), "--state", str(state)])
    assert result.exit_code == 0, result.output
    assert _user_id(state, "erin@example.com")


def test_users_lists_seeded_accounts(state):
    result = runner.invoke(app, ["users", "--state", str(state)])
    assert result.exit_code == 0, result.output
    assert "alice@example.com" in result.output
    assert "carla@example.com" in result.output


# ============================================================
# SHARED STATE FILE
# ============================================================

@pytest.fixture
def proposed_chat(state):
    """A chat with two proposed slots, saved to the state file."""
    with Store.open(state) as store:
        alice = store.find_user_by_email("alice@example.com").id
        bob = store.find_user_by_email("bob@example.com").id
        needs, _ = store.check_in(alice, [{"label": "Need help with SEO content", "category": "marketing"}])
        negotiation = ChatNegotiation(store)
        chat = negotiation.create(needs[0].id, alice, bob)
        slots = negotiation.propose_slots(
            chat.id,
            [
                {"startTime": "2025-03-03T09:00:00Z", "endTime": "2025-03-03T09:30:00Z"},
                {"startTime": "2025-03-04T14:00:00Z", "endTime": "2025-03-04T14:30:00Z"},
            ],
        ).proposed_slots
        store.save(state)
    return chat.id, [s.id for s in slots]


def test_select_waits_for_the_state_file(state, proposed_chat, monkeypatch):
    chat_id, slot_ids = proposed_chat
    monkeypatch.setenv("MATCHFOUNDRY_LOCK_TIMEOUT", "0.1")
    with state_lock(state, timeout=1):
        result = runner.invoke(app, ["select", chat_id, slot_ids[0], "--state", str(state)])
    assert result.exit_code == 1
    assert Store.load(state).get_chat(chat_id).status == "proposed"


def test_writer_loaded_before_select_cannot_overwrite_it(state, proposed_chat):
    chat_id, slot_ids = proposed_chat
    stale = Store.load(state)

    result = runner.invoke(app, ["select", chat_id, slot_ids[0], "--state", str(state)])
    assert result.exit_code == 0, result.output

    ChatNegotiation(stale).select_slot(chat_id, slot_ids[1])
    with pytest.raises(ConflictError):
        stale.save(state)
    assert Store.load(state).get_chat(chat_id).chosen_slot_id == slot_ids[0]


# ============================================================
# .env SETTINGS
# ============================================================

@pytest.fixture
def restore_environ():
    saved = dict(os.environ)
    yield
    os.environ.clear()
    os.environ.update(saved)


def test_dotenv_settings_apply(tmp_path, monkeypatch, restore_environ):
    monkeypatch.delenv("MATCHFOUNDRY_STATE_FILE", raising=False)
    monkeypatch.delenv("MATCHFOUNDRY_MEETING_BASE_URL", raising=False)
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".env").write_text(
        "MATCHFOUNDRY_STATE_FILE=custom_state.json\n"
        "MATCHFOUNDRY_MEETING_BASE_URL=https://meet.example.org\n",
        encoding="utf-8",
    )

    result = runner.invoke(app, ["seed"])
    assert result.exit_code == 0, result.output
    state = tmp_path / "custom_state.json"
    assert state.exists()

    with Store.open(state) as store:
        alice = store.find_user_by_email("alice@example.com").id
        bob = store.find_user_by_email("bob@example.com").id
        needs, _ = store.check_in(alice, [{"label": "Need help with SEO content", "category": "marketing"}])
        negotiation = ChatNegotiation(store)
        chat = negotiation.create(needs[0].id, alice, bob)
        slot = negotiation.propose_slots(
            chat.id, [{"startTime": "2025-03-03T09:00:00Z", "endTime": "2025-03-03T09:30:00Z"}]
        ).proposed_slots[0]
        store.save(state)

    result = runner.invoke(app, ["select", chat.id, slot.id])
    assert result.exit_code == 0, result.output
    link = Store.load(state).get_chat(chat.id).meeting_link
    assert link == f"https://meet.example.org/matchfoundry-{chat.id}"
