"""Identities linking a user to an external or built-in sign-in provider."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar

from trueauth.errors import IdentityNotFoundError
from trueauth.storage import Connection, Model, StorageError


@dataclass
class Identity(Model):
    """A provider account attached to a user."""

    table_name: ClassVar[str] = "identities"

    id: str = ""
    user_id: uuid.UUID = uuid.UUID(int=0)
    identity_data: dict[str, Any] = field(default_factory=dict)
    provider: str = ""
    last_sign_in_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


def new_identity(user: Any, provider: str, identity_data: dict[str, Any]) -> Identity:
    """Build an identity for ``user`` from the provider's data, keyed by its ``sub``."""
    if "sub" not in identity_data:
        raise ValueError("Error missing provider id")
    provider_id = identity_data["sub"]
    if not isinstance(provider_id, str):
        raise ValueError("provider id must be a string")
    return Identity(
        id=provider_id,
        user_id=user.id,
        identity_data=identity_data,
        provider=provider,
        last_sign_in_at=datetime.now(timezone.utc),
    )


def _select(tx: Connection, sql: str, params: tuple, what: str) -> list[dict[str, Any]]:
    try:
        return tx.query(sql, params)
    except StorageError as exc:
        raise StorageError(f"error finding {what}: {exc}") from exc


def find_identity_by_id_and_provider(tx: Connection, provider_id: str, provider: str) -> Identity:
    """Return the identity with this provider id and provider."""
    rows = _select(
        tx,
        'SELECT * FROM "identities" WHERE "id" = ? AND "provider" = ? LIMIT 1',
        (provider_id, provider),
        "identity",
    )
    if not rows:
        raise IdentityNotFoundError()
    return Identity.from_row(rows[0])


def find_identities_by_user(tx: Connection, user: Any) -> list[Identity]:
    """Return every identity that belongs to ``user``."""
    rows = _select(
        tx,
        'SELECT * FROM "identities" WHERE "user_id" = ?',
        (str(user.id),),
        "identities",
    )
    return [Identity.from_row(row) for row in rows]


def find_providers_by_user(tx: Connection, user: Any) -> list[str]:
    """Return the provider of each identity that belongs to ``user``."""
    rows = _select(
        tx,
        'SELECT "provider" FROM "identities" WHERE "user_id" = ?',
        (str(user.id),),
        "providers",
    )
    return [row["provider"] for row in rows]