from types import SimpleNamespace

import pytest

from pollingapp.entities import (
    USER_LABEL,
    EntityValidationError,
    NotFoundError,
    NotSingularError,
)
from pollingapp.predicates import eq
from pollingapp.store import Store
from pollingapp.userqueries import PollOptionQuery, PollQuery, UserQuery


@pytest.fixture
def store():
    with Store() as s:
        yield s


@pytest.fixture
def data(store):
    alice = store.create_user("alice", "alice@example.com")
    bob = store.create_user("bob", "bob@example.com")
    poll = store.create_poll(alice.id, "Favorite Color?")
    red = store.create_option(poll.id, "Red")
    blue = store.create_option(poll.id, "Blue")
    v1 = store.create_vote(poll.id, red.id, alice.id)
    v2 = store.create_vote(poll.id, red.id, bob.id)
    return SimpleNamespace(
        alice=alice, bob=bob, poll=poll, red=red, blue=blue, v1=v1, v2=v2
    )


def test_all_ordered_by_id(store, data):
    users = UserQuery(store).order("id").all()
    assert [u.username for u in users] == ["alice", "bob"]


def test_order_descending(store, data):
    users = UserQuery(store).order("-username").all()
    assert [u.username for u in users] == ["bob", "alice"]


def test_offset_skips_rows(store, data):
    users = UserQuery(store).order("id").offset(1).all()
    assert [u.id for u in users] == [data.bob.id]


def test_only_by_username(store, data):
    user = UserQuery(store).where(eq("username", "alice")).only()
    assert user.email == "alice@example.com"
    assert user.id == data.alice.id


def test_first_on_empty_raises_not_found(store):
    with pytest.raises(NotFoundError) as info:
        UserQuery(store).first()
    assert info.value.label == USER_LABEL


def test_only_with_several_raises_not_singular(store, data):
    with pytest.raises(NotSingularError):
        UserQuery(store).only()


def test_with_polls_loads_owned_polls(store, data):
    users = {u.id: u for u in UserQuery(store).with_polls().all()}
    assert [p.id for p in users[data.alice.id].polls] == [data.poll.id]
    assert users[data.bob.id].polls == []


def test_with_votes_loads_each_users_votes(store, data):
    users = {u.id: u for u in UserQuery(store).with_votes().all()}
    assert [v.id for v in users[data.alice.id].votes] == [data.v1.id]
    assert [v.id for v in users[data.bob.id].votes] == [data.v2.id]


def test_poll_with_options_and_votes(store, data):
    poll = PollQuery(store).where(eq("id", data.poll.id)).with_options(with_votes=True).only()
    assert [o.text for o in poll.options] == ["Red", "Blue"]
    red, blue = poll.options
    assert [v.id for v in red.votes] == [data.v1.id, data.v2.id]
    assert blue.votes == []


def test_poll_with_options_without_votes(store, data):
    poll = PollQuery(store).with_options().only()
    assert [o.id for o in poll.options] == [data.red.id, data.blue.id]
    assert all(o.votes == [] for o in poll.options)


def test_poll_without_options_has_none_loaded(store, data):
    poll = PollQuery(store).only()
    assert poll.title == "Favorite Color?"
    assert poll.options == []


def test_option_query_with_votes(store, data):
    options = (
        PollOptionQuery(store).where(eq("poll_id", data.poll.id)).order("id").with_votes().all()
    )
    assert [len(o.votes) for o in options] == [len([data.v1, data.v2]), 0]


def test_count_and_exist(store, data):
    assert UserQuery(store).where(eq("username", "bob")).count() == 1
    assert UserQuery(store).where(eq("username", "carol")).exist() is False
    assert UserQuery(store).where(eq("username", "alice")).exist() is True


def test_select_invalid_field_raises(store, data):
    with pytest.raises(EntityValidationError) as info:
        UserQuery(store).select("password_hash")
    assert info.value.name == "password_hash"


def test_group_by_owner(store, data):
    second = store.create_poll(data.alice.id, "Second")
    rows = PollQuery(store).group_by("owner_id")
    assert rows == [{"owner_id": data.alice.id, "count": len([data.poll, second])}]


def test_clone_is_independent(store, data):
    query = UserQuery(store).with_polls()
    narrowed = query.clone().where(eq("username", "bob"))
    assert narrowed.count() == 1
    assert query.count() == len([data.alice, data.bob])
    assert [p.id for p in query.where(eq("id", data.alice.id)).only().polls] == [data.poll.id]