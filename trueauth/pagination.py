"""Pagination and sorting parameters, and table clean-up."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from trueauth.storage import Connection

CREATED_AT = "created_at"

# Identities go with their users, as a cascading truncate would take them.
_TRUNCATED_TABLES = ("identities", "users", "refresh_tokens", "audit_log_entries", "instances")


@dataclass
class Pagination:
    page: int
    per_page: int
    count: int = 0

    def offset(self) -> int:
        return (self.page - 1) * self.per_page


class SortDirection(str, Enum):
    ASCENDING = "ASC"
    DESCENDING = "DESC"


@dataclass
class SortField:
    name: str
    dir: SortDirection


@dataclass
class SortParams:
    fields: list[SortField] = field(default_factory=list)


def truncate_all(conn: Connection) -> None:
    """Empty every authentication table that exists, in one transaction."""
    with conn.transaction() as tx:
        existing = {
            row["name"]
            for row in tx.query("SELECT name FROM sqlite_master WHERE type = 'table'", ())
        }
        for table in _TRUNCATED_TABLES:
            if table in existing:
                tx.execute(f'DELETE FROM "{table}"', ())