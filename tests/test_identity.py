import uuid
from dataclasses import dataclass, field

import pytest

from trueauth.errors import IdentityNotFoundError, is_not_found_error
from trueauth.identity import (
    Identity,
    find_identities_by_user,
    find_identity_by_id_and_provider,
    find_providers_by_user,
    new_identity,
)
from trueauth.storage import dial


@dataclass
class FakeUser:
    id: uuid.UUID
    email: str = ""
    phone: str = ""
    user_metadata: dict = field(default_factory=dict)


@pytest.fixture
def conn():
    connection = dial(driver="sqlite")
    connection.ensure_table(Identity)
    yield connection
    connection.close()


@pytest.fixture
def user():
    return FakeUser(id=uuid.uuid4(), email="someone@example.com")


def _create_identity(conn, user, provider="email"):
    data = {"sub": str(uuid.UUID(int=0)), "name": "test", "email": user.email}
    identity = new_identity(user, provider, data)
    conn.create(identity)
    return identity


def test_identities_are_stored_in_identities_table(conn, user):
    _create_identity(conn, user)
    assert conn.query("SELECT COUNT(*) AS n FROM identities", ()) == [{"n": 1}]


def test_new_identity_without_provider_id(user):
    with pytest.raises(ValueError, match="Error missing provider id"):
        new_identity(user, "email", {})


def test_new_identity_successfully(user):
    identity = new_identity(user, "email", {"sub": str(uuid.UUID(int=0))})
    assert identity.user_id == user.id
    assert identity.id == "00000000-0000-0000-0000-000000000000"
    assert identity.provider == "email"
    assert identity.last_sign_in_at is not None and identity.last_sign_in_at.tzinfo is not None


def test_find_user_identities(conn, user):
    _create_identity(conn, user)
    identities = find_identities_by_user(conn, user)
    assert len(identities) == 1
    assert identities[0].user_id == user.id
    assert identities[0].identity_data["email"] == "someone@example.com"


def test_find_identities_of_other_user_is_empty(conn, user):
    _create_identity(conn, user)
    other = FakeUser(id=uuid.uuid4())
    assert find_identities_by_user(conn, other) == []


def test_find_identity_by_id_and_provider(conn, user):
    created = _create_identity(conn, user)
    found = find_identity_by_id_and_provider(conn, created.id, "email")
    assert found.user_id == user.id
    assert found.identity_data == created.identity_data
    assert found.created_at is not None


def test_find_identity_missing(conn, user):
    _create_identity(conn, user)
    with pytest.raises(IdentityNotFoundError) as info:
        find_identity_by_id_and_provider(conn, "unknown", "email")
    assert is_not_found_error(info.value)
    assert str(info.value) == "Identity not found"


def test_find_providers_by_user(conn, user):
    _create_identity(conn, user, "email")
    assert find_providers_by_user(conn, user) == ["email"]
    assert find_providers_by_user(conn, FakeUser(id=uuid.uuid4())) == []