import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from pollingapp.entities import ConstraintError, EntityValidationError, NotFoundError
from pollingapp.predicates import eq
from pollingapp.store import Store


@pytest.fixture
def store():
    db = Store()
    yield db
    db.close()


@pytest.fixture
def poll_setup(store):
    user = store.create_user("testuser", "test@example.com")
    poll = store.create_poll(user.id, "Test Poll")
    option = store.create_option(poll.id, "Option 1")
    return user, poll, option


def count(store, table):
    return store.execute(f"SELECT COUNT(*) AS n FROM {table}")[0]["n"]


def test_create_user_round_trip(store):
    user = store.create_user("pollowner", "owner@example.com")
    assert user.id >= 1
    row = store.execute("SELECT * FROM users WHERE id = ?", (user.id,))[0]
    assert row["username"] == "pollowner"
    assert row["email"] == "owner@example.com"
    assert datetime.fromisoformat(row["created_at"]) == user.created_at


@pytest.mark.parametrize(
    "username, email",
    [("existinguser", "new@example.com"), ("newuser", "existing@example.com")],
)
def test_duplicate_user_is_constraint_error(store, username, email):
    store.create_user("existinguser", "existing@example.com")
    with pytest.raises(ConstraintError):
        store.create_user(username, email)
    assert count(store, "users") == 1


def test_poll_needs_existing_owner(store):
    with pytest.raises(ConstraintError):
        store.create_poll(99999, "Test Poll")


def test_create_vote_defaults_time(store, poll_setup):
    user, poll, option = poll_setup
    before = datetime.now(timezone.utc)
    vote = store.create_vote(poll.id, option.id, user.id)
    after = datetime.now(timezone.utc)
    assert before <= vote.created_at <= after
    assert (vote.poll_id, vote.option_id, vote.user_id) == (poll.id, option.id, user.id)


def test_create_vote_keeps_given_time(store, poll_setup):
    user, poll, option = poll_setup
    moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    vote = store.create_vote(poll.id, option.id, user.id, created_at=moment)
    row = store.execute("SELECT created_at FROM votes WHERE id = ?", (vote.id,))[0]
    assert datetime.fromisoformat(row["created_at"]) == moment


def test_second_vote_on_poll_is_constraint_error(store, poll_setup):
    user, poll, option = poll_setup
    store.create_vote(poll.id, option.id, user.id)
    with pytest.raises(ConstraintError):
        store.create_vote(poll.id, option.id, user.id)
    assert count(store, "votes") == 1


def test_vote_for_missing_option_is_constraint_error(store, poll_setup):
    user, poll, _ = poll_setup
    with pytest.raises(ConstraintError):
        store.create_vote(poll.id, 99999, user.id)


@pytest.mark.parametrize("missing", ["poll_id", "option_id", "user_id"])
def test_missing_vote_field(store, poll_setup, missing):
    user, poll, option = poll_setup
    fields = {"poll_id": poll.id, "option_id": option.id, "user_id": user.id}
    fields[missing] = None
    with pytest.raises(EntityValidationError) as info:
        store.create_vote(**fields)
    assert info.value.name == missing


def test_create_votes_is_all_or_nothing(store, poll_setup):
    user, poll, option = poll_setup
    row = {"poll_id": poll.id, "option_id": option.id, "user_id": user.id}
    with pytest.raises(ConstraintError):
        store.create_votes([row, dict(row)])
    assert count(store, "votes") == 0


def test_create_votes_returns_all(store, poll_setup):
    user, poll, option = poll_setup
    other = store.create_user("testuser2", "test2@example.com")
    votes = store.create_votes(
        [
            {"poll_id": poll.id, "option_id": option.id, "user_id": user.id},
            {"poll_id": poll.id, "option_id": option.id, "user_id": other.id},
        ]
    )
    assert [v.user_id for v in votes] == [user.id, other.id]
    assert len({v.id for v in votes}) == 2
    assert count(store, "votes") == 2


def test_delete_votes_by_predicate(store, poll_setup):
    user, poll, option = poll_setup
    other_poll = store.create_poll(user.id, "Other")
    other_option = store.create_option(other_poll.id, "Other option")
    store.create_vote(poll.id, option.id, user.id)
    kept = store.create_vote(other_poll.id, other_option.id, user.id)
    assert store.delete_votes(eq("poll_id", poll.id)) == 1
    remaining = store.execute("SELECT id FROM votes")
    assert [r["id"] for r in remaining] == [kept.id]


def test_delete_vote_missing(store):
    with pytest.raises(NotFoundError) as info:
        store.delete_vote(99999)
    assert info.value.label == "vote"


def test_delete_vote(store, poll_setup):
    user, poll, option = poll_setup
    vote = store.create_vote(poll.id, option.id, user.id)
    store.delete_vote(vote.id)
    assert count(store, "votes") == 0


def test_delete_poll_missing(store):
    with pytest.raises(NotFoundError) as info:
        store.delete_poll(99999)
    assert info.value.label == "poll"


def test_delete_poll_with_options_is_refused(store, poll_setup):
    _, poll, _ = poll_setup
    with pytest.raises(ConstraintError):
        store.delete_poll(poll.id)
    assert count(store, "polls") == 1


def test_cascade_delete_by_hand(store, poll_setup):
    user, poll, option = poll_setup
    store.create_vote(poll.id, option.id, user.id)
    with store.transaction():
        assert store.delete_votes(eq("poll_id", poll.id)) == 1
        assert store.delete_options(eq("poll_id", poll.id)) == 1
        store.delete_poll(poll.id)
    assert count(store, "polls") == 0
    assert count(store, "poll_options") == 0
    assert count(store, "votes") == 0
    assert count(store, "users") == 1


def test_transaction_rolls_back(store):
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.create_user("testuser", "test@example.com")
            raise RuntimeError("boom")
    assert count(store, "users") == 0


def test_nested_transaction_rolls_back_inner_only(store):
    with store.transaction():
        store.create_user("outer", "outer@example.com")
        with pytest.raises(ConstraintError):
            with store.transaction():
                store.create_user("inner", "inner@example.com")
                store.create_user("outer", "other@example.com")
    names = [r["username"] for r in store.execute("SELECT username FROM users")]
    assert names == ["outer"]


def test_context_manager_closes():
    with Store() as db:
        db.create_user("testuser", "test@example.com")
    with pytest.raises(sqlite3.ProgrammingError):
        db.execute("SELECT 1")


def test_file_store_persists(tmp_path):
    path = tmp_path / "polls.db"
    with Store(path) as db:
        user = db.create_user("testuser", "test@example.com")
    with Store(path) as db:
        rows = db.execute("SELECT id, username FROM users")
    assert [(r["id"], r["username"]) for r in rows] == [(user.id, "testuser")]


def test_naive_time_is_taken_as_utc(store, poll_setup):
    user, poll, option = poll_setup
    naive = datetime(2024, 1, 2, 3, 4, 5)
    vote = store.create_vote(poll.id, option.id, user.id, created_at=naive)
    row = store.execute("SELECT created_at FROM votes WHERE id = ?", (vote.id,))[0]
    stored = datetime.fromisoformat(row["created_at"])
    assert stored.utcoffset() == timedelta(0)
    assert stored.replace(tzinfo=None) == naive