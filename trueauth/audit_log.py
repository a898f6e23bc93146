"""Audit log entries recording what users did."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Sequence

from trueauth.pagination import Pagination
from trueauth.storage import Connection, Model, StorageError

_DEFAULT_PER_PAGE = 20


class AuditAction(str, Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    INVITE_ACCEPTED = "invite_accepted"
    USER_SIGNED_UP = "user_signedup"
    USER_INVITED = "user_invited"
    USER_DELETED = "user_deleted"
    USER_MODIFIED = "user_modified"
    USER_RECOVERY_REQUESTED = "user_recovery_requested"
    USER_REAUTHENTICATE = "user_reauthenticate_requested"
    USER_CONFIRMATION_REQUESTED = "user_confirmation_requested"
    USER_REPEATED_SIGN_UP = "user_repeated_signup"
    TOKEN_REVOKED = "token_revoked"
    TOKEN_REFRESHED = "token_refreshed"


_LOG_TYPES = {
    AuditAction.LOGIN: "account",
    AuditAction.LOGOUT: "account",
    AuditAction.INVITE_ACCEPTED: "account",
    AuditAction.USER_SIGNED_UP: "team",
    AuditAction.USER_INVITED: "team",
    AuditAction.USER_DELETED: "team",
    AuditAction.TOKEN_REVOKED: "token",
    AuditAction.TOKEN_REFRESHED: "token",
    AuditAction.USER_MODIFIED: "user",
    AuditAction.USER_RECOVERY_REQUESTED: "user",
    AuditAction.USER_CONFIRMATION_REQUESTED: "user",
    AuditAction.USER_REPEATED_SIGN_UP: "user",
}


@dataclass
class AuditLogEntry(Model):
    """One recorded action, with its details in ``payload``."""

    table_name: ClassVar[str] = "audit_log_entries"

    instance_id: uuid.UUID = uuid.UUID(int=0)
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


def new_audit_log_entry(
    tx: Connection,
    instance_id: uuid.UUID,
    actor: Any,
    action: AuditAction,
    traits: dict[str, Any] | None = None,
) -> AuditLogEntry:
    """Record ``action`` by ``actor`` and return the stored entry."""
    action = AuditAction(action)
    username = actor.phone or actor.email or ""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "actor_id": str(actor.id),
        "actor_username": username,
        "action": action.value,
        "log_type": _LOG_TYPES.get(action, ""),
    }
    metadata = actor.user_metadata or {}
    if "full_name" in metadata:
        payload["actor_name"] = metadata["full_name"]
    if traits is not None:
        payload["traits"] = traits

    entry = AuditLogEntry(instance_id=instance_id, payload=payload)
    try:
        tx.create(entry)
    except StorageError as exc:
        raise StorageError(f"Database error creating audit log entry: {exc}") from exc
    return entry


def _json_path(column: str) -> str:
    return '$."' + column.replace('"', '\\"') + '"'


def find_audit_log_entries(
    tx: Connection,
    instance_id: uuid.UUID,
    filter_columns: Sequence[str] = (),
    filter_value: str = "",
    page_params: Pagination | None = None,
) -> list[AuditLogEntry]:
    """Return an instance's entries, newest first, optionally filtered and paginated.

    With both filter columns and a value, an entry matches when any of the
    named payload fields contains the value, ignoring case.
    """
    where = ['"instance_id" = ?']
    params: list[Any] = [str(instance_id)]
    if filter_columns and filter_value:
        pattern = f"%{filter_value}%"
        where.append(
            "("
            + " OR ".join("json_extract(\"payload\", ?) LIKE ?" for _ in filter_columns)
            + ")"
        )
        for column in filter_columns:
            params.extend((_json_path(column), pattern))
    condition = " AND ".join(where)

    sql = f'SELECT * FROM "audit_log_entries" WHERE {condition} ORDER BY "created_at" DESC'
    if page_params is not None:
        page = max(page_params.page, 1)
        per_page = page_params.per_page if page_params.per_page >= 1 else _DEFAULT_PER_PAGE
        total = tx.query(
            f'SELECT COUNT(*) AS total FROM "audit_log_entries" WHERE {condition}', params
        )
        page_params.count = int(total[0]["total"])
        sql += " LIMIT ? OFFSET ?"
        params = [*params, per_page, (page - 1) * per_page]

    return [AuditLogEntry.from_row(row) for row in tx.query(sql, params)]