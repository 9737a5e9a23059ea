import threading

import pytest
from sqlmodel import Session, select

from socialhub.credentials import (
    create_user,
    find_by_identifier,
    get_user,
    search_users,
    update_user_fields,
)
from socialhub.errors import Conflict, NotFound
from socialhub.models import User


def test_create_user_normalizes_identifiers(session):
    u = create_user(session, "  Alice ", "ALICE@X.com", "digest")
    assert u.id is not None
    assert u.username == "alice"
    assert u.email == "alice@x.com"
    assert get_user(session, u.id).password_hash == "digest"


def test_duplicate_username_conflicts_case_insensitively(session):
    create_user(session, "alice", "alice@x.com", "d")
    with pytest.raises(Conflict) as exc:
        create_user(session, "ALICE", "other@x.com", "d")
    assert exc.value.field == "username"
    assert exc.value.message == "Username already taken"
    assert len(session.exec(select(User)).all()) == 1


def test_duplicate_email_conflicts(session):
    create_user(session, "alice", "alice@x.com", "d")
    with pytest.raises(Conflict) as exc:
        create_user(session, "alice2", "Alice@X.COM", "d")
    assert exc.value.field == "email"
    assert exc.value.message == "Email already in use"


def test_racing_registrations_leave_one_row(engine):
    """Two sessions insert the same username at once; the store keeps one."""
    barrier = threading.Barrier(2)
    outcomes = []

    def attempt(email):
        with Session(engine) as s:
            barrier.wait()
            try:
                create_user(s, "racer", email, "d")
                outcomes.append("ok")
            except Conflict as e:
                outcomes.append(e.field)

    threads = [threading.Thread(target=attempt, args=(f"racer{i}@x.com",)) for i in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["ok", "username"]
    with Session(engine) as s:
        assert len(s.exec(select(User).where(User.username == "racer")).all()) == 1


def test_find_by_identifier_matches_username_or_email(session):
    u = create_user(session, "alice", "alice@x.com", "d")
    assert find_by_identifier(session, "Alice").id == u.id
    assert find_by_identifier(session, " ALICE@x.com ").id == u.id
    assert find_by_identifier(session, "nobody") is None
    assert find_by_identifier(session, "") is None


def test_update_user_fields(session):
    u = create_user(session, "alice", "alice@x.com", "d")
    before = u.updated_at
    updated = update_user_fields(session, u.id, username="Alicia", email=None)
    assert updated.username == "alicia"
    assert updated.email == "alice@x.com"
    assert updated.updated_at >= before


def test_update_user_fields_conflict(session):
    create_user(session, "alice", "alice@x.com", "d")
    bob = create_user(session, "bob", "bob@x.com", "d")
    with pytest.raises(Conflict) as exc:
        update_user_fields(session, bob.id, email="ALICE@x.com")
    assert exc.value.field == "email"
    assert get_user(session, bob.id).email == "bob@x.com"


def test_update_user_fields_rejects_unknown_and_missing(session):
    u = create_user(session, "alice", "alice@x.com", "d")
    with pytest.raises(ValueError):
        update_user_fields(session, u.id, id=5)
    with pytest.raises(NotFound):
        update_user_fields(session, 999, username="ghost")


def test_search_users(session):
    for name in ("alice", "alina", "bob", "carol"):
        create_user(session, name, f"{name}@x.com", "d")
    create_user(session, "dave", "dave@ali.org", "d")

    names = [u.username for u in search_users(session, "ALI")]
    assert names == ["alice", "alina", "dave"]
    assert [u.username for u in search_users(session, "ali", limit=1)] == ["alice"]
    assert search_users(session, "  ") == []


def test_search_users_treats_wildcards_literally(session):
    create_user(session, "alice", "alice@x.com", "d")
    create_user(session, "per_cent", "pc@x.com", "d")
    assert [u.username for u in search_users(session, "_")] == ["per_cent"]
    assert search_users(session, "%") == []
