import uuid
from dataclasses import dataclass, field
from typing import ClassVar

import pytest

from trueauth.pagination import (
    Pagination,
    SortDirection,
    SortField,
    SortParams,
    truncate_all,
)
from trueauth.storage import Model, dial


@dataclass
class Account(Model):
    table_name: ClassVar[str] = "users"
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    email: str = ""


def test_first_page_has_no_offset():
    assert Pagination(page=1, per_page=50).offset() == 0


@pytest.mark.parametrize("page, per_page", [(1, 10), (4, 25), (9, 1)])
def test_offset_steps_by_page_size(page, per_page):
    current = Pagination(page=page, per_page=per_page)
    following = Pagination(page=page + 1, per_page=per_page)
    assert following.offset() - current.offset() == per_page


def test_count_defaults_to_zero():
    assert Pagination(page=1, per_page=50).count == 0


def test_sort_directions_from_values():
    assert SortDirection("ASC") is SortDirection.ASCENDING
    assert SortDirection("DESC") is SortDirection.DESCENDING


def test_sort_params_hold_fields():
    params = SortParams(fields=[SortField(name="created_at", dir=SortDirection.DESCENDING)])
    assert [(f.name, f.dir) for f in params.fields] == [("created_at", SortDirection.DESCENDING)]


def test_truncate_all_empties_existing_tables():
    conn = dial("sqlite://:memory:", "", 1)
    conn.ensure_table(Account)
    conn.create(Account(email="ann@example.com"))
    conn.create(Account(email="bob@example.com"))
    truncate_all(conn)
    assert conn.query("SELECT COUNT(*) AS n FROM users", ()) == [{"n": 0}]
    assert conn.in_transaction is False
    conn.close()