import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest

from trueauth.audit_log import (
    AuditAction,
    AuditLogEntry,
    find_audit_log_entries,
    new_audit_log_entry,
)
from trueauth.pagination import Pagination
from trueauth.storage import StorageError, dial


@dataclass
class FakeUser:
    id: uuid.UUID
    email: str = ""
    phone: str = ""
    user_metadata: dict = field(default_factory=dict)


INSTANCE = uuid.UUID(int=0)


@pytest.fixture
def conn():
    connection = dial(driver="sqlite")
    connection.ensure_table(AuditLogEntry)
    yield connection
    connection.close()


def test_entries_are_stored_in_audit_log_entries_table(conn):
    actor = FakeUser(id=uuid.uuid4(), email="someone@example.com")
    new_audit_log_entry(conn, INSTANCE, actor, AuditAction.LOGIN)
    assert conn.query("SELECT COUNT(*) AS n FROM audit_log_entries", ()) == [{"n": 1}]


def test_new_entry_payload(conn):
    actor = FakeUser(id=uuid.uuid4(), email="someone@example.com",
                     user_metadata={"full_name": "Some One"})
    entry = new_audit_log_entry(conn, INSTANCE, actor, AuditAction.LOGIN, {"provider": "email"})
    assert entry.payload["actor_username"] == "someone@example.com"
    assert entry.payload["actor_id"] == str(actor.id)
    assert entry.payload["action"] == "login"
    assert entry.payload["log_type"] == "account"
    assert entry.payload["actor_name"] == "Some One"
    assert entry.payload["traits"] == {"provider": "email"}
    assert entry.payload["timestamp"].endswith("Z")


def test_phone_takes_precedence_and_no_optional_keys(conn):
    actor = FakeUser(id=uuid.uuid4(), email="someone@example.com", phone="5550100")
    entry = new_audit_log_entry(conn, INSTANCE, actor, AuditAction.TOKEN_REFRESHED)
    assert entry.payload["actor_username"] == "5550100"
    assert entry.payload["log_type"] == "token"
    assert "traits" not in entry.payload
    assert "actor_name" not in entry.payload


def test_unmapped_action_has_empty_log_type(conn):
    actor = FakeUser(id=uuid.uuid4(), email="someone@example.com")
    entry = new_audit_log_entry(conn, INSTANCE, actor, AuditAction.USER_REAUTHENTICATE)
    assert entry.payload["log_type"] == ""


def test_round_trip_and_instance_scope(conn):
    actor = FakeUser(id=uuid.uuid4(), email="someone@example.com")
    created = new_audit_log_entry(conn, INSTANCE, actor, AuditAction.USER_SIGNED_UP)
    new_audit_log_entry(conn, uuid.uuid4(), actor, AuditAction.LOGIN)
    found = find_audit_log_entries(conn, INSTANCE)
    assert [e.id for e in found] == [created.id]
    assert found[0].payload == created.payload


def test_filter_is_case_insensitive(conn):
    alice = FakeUser(id=uuid.uuid4(), email="alice@example.com")
    bob = FakeUser(id=uuid.uuid4(), email="bob@example.com")
    new_audit_log_entry(conn, INSTANCE, alice, AuditAction.LOGIN)
    new_audit_log_entry(conn, INSTANCE, bob, AuditAction.LOGOUT)
    found = find_audit_log_entries(conn, INSTANCE, ["actor_username", "action"], "ALICE")
    assert [e.payload["actor_username"] for e in found] == ["alice@example.com"]
    found = find_audit_log_entries(conn, INSTANCE, ["action"], "log")
    assert len(found) == 2


def test_order_and_pagination(conn):
    start = datetime(2022, 1, 1, tzinfo=timezone.utc)
    for step in range(3):
        conn.create(AuditLogEntry(instance_id=INSTANCE, payload={"n": step},
                                  created_at=start + timedelta(minutes=step)))
    found = find_audit_log_entries(conn, INSTANCE)
    assert [e.payload["n"] for e in found] == [2, 1, 0]

    page = Pagination(page=2, per_page=2)
    found = find_audit_log_entries(conn, INSTANCE, page_params=page)
    assert [e.payload["n"] for e in found] == [0]
    assert page.count == 3


def test_create_failure_is_wrapped():
    connection = dial(driver="sqlite")
    actor = FakeUser(id=uuid.uuid4(), email="someone@example.com")
    with pytest.raises(StorageError, match="Database error creating audit log entry"):
        new_audit_log_entry(connection, INSTANCE, actor, AuditAction.LOGIN)
    connection.close()