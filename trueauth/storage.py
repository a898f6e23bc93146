"""Relational storage: a connection wrapper over SQLite and dataclass model mapping."""

from __future__ import annotations

import dataclasses
import json
import logging
import sqlite3
import types
import typing
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Iterable, Iterator, Mapping

logger = logging.getLogger(__name__)

SUPPORTED_DRIVERS = frozenset({"sqlite", "sqlite3"})

_EMPTY_VALUES = {str: str, dict: dict, list: list}

_NAMED_TYPES: dict[str, Any] = {
    "UUID": uuid.UUID,
    "datetime": datetime,
    "bool": bool,
    "int": int,
    "float": float,
    "str": str,
    "dict": dict,
    "Dict": dict,
    "Mapping": dict,
    "MutableMapping": dict,
    "JSONMap": dict,
    "list": list,
    "List": list,
    "Sequence": list,
    "Any": Any,
}


class StorageError(Exception):
    """Raised when the database rejects an operation or a model is misused."""


def to_null_string(value: str | None) -> str | None:
    """Map an empty string to SQL NULL."""
    return value if value else None


def from_null_string(value: Any) -> str:
    """Map SQL NULL to an empty string; reject non-string columns."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise StorageError("Column is not a string")
    return value


def _encode(value: Any, null_string: bool) -> Any:
    if null_string:
        return to_null_string(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


def _split_top_level(text: str) -> list[str]:
    parts: list[str] = []
    current: list[str] = []
    depth = 0
    for char in text:
        if char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
        if char == "|" and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


def _hint_from_type(hint: Any) -> tuple[Any, bool]:
    optional = False
    origin = typing.get_origin(hint)
    if origin is typing.Union or origin is types.UnionType:
        args = typing.get_args(hint)
        rest = [arg for arg in args if arg is not type(None)]
        optional = len(rest) < len(args)
        hint = rest[0] if len(rest) == 1 else Any
    return typing.get_origin(hint) or hint, optional


def _hint_from_text(text: str, field: dataclasses.Field) -> tuple[Any, bool]:
    text = text.replace(" ", "").strip("'\"")
    optional = False
    for prefix in ("typing.Optional[", "Optional["):
        if text.startswith(prefix) and text.endswith("]"):
            text = text[len(prefix):-1]
            optional = True
            break
    parts = _split_top_level(text)
    rest = [part for part in parts if part not in ("None", "NoneType")]
    if len(rest) < len(parts):
        optional = True
    if len(rest) != 1:
        return Any, optional
    name = rest[0].split("[", 1)[0].rsplit(".", 1)[-1]
    base = _NAMED_TYPES.get(name)
    if base is None:
        default = field.default
        if default is dataclasses.MISSING or default is None:
            base = Any
        else:
            base = type(default)
    return base, optional


def _field_hint(field: dataclasses.Field) -> tuple[Any, bool]:
    """Return the base type of a field and whether it may hold None."""
    if isinstance(field.type, str):
        return _hint_from_text(field.type, field)
    return _hint_from_type(field.type)


def _decode(value: Any, base: Any, optional: bool) -> Any:
    if value is None:
        if optional:
            return None
        factory = _EMPTY_VALUES.get(base)
        return factory() if factory else None
    if base is uuid.UUID:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    if base is datetime:
        return datetime.fromisoformat(value) if isinstance(value, str) else value
    if base is bool:
        return bool(value)
    if base in (dict, list):
        loaded = json.loads(value) if isinstance(value, (str, bytes)) else value
        return base() if loaded is None else loaded
    if isinstance(base, type) and issubclass(base, Enum):
        return base(value)
    if base in (int, float, str):
        return base(value)
    return value


class Model:
    """Base for dataclass models stored in one table.

    Each dataclass field is a column named after the field, unless its
    metadata gives ``db`` (a column name, or ``None`` for no column).
    Fields whose metadata sets ``null_string`` store empty strings as NULL.
    """

    table_name: ClassVar[str] = ""

    @classmethod
    def _column_fields(cls) -> list[tuple[str, dataclasses.Field]]:
        if not dataclasses.is_dataclass(cls):
            raise StorageError(f"{cls.__name__} is not a dataclass model")
        result = []
        for field in dataclasses.fields(cls):
            column = field.metadata.get("db", field.name)
            if column is not None:
                result.append((column, field))
        return result

    @classmethod
    def columns(cls) -> dict[str, str]:
        """Map each column name to the attribute that holds it."""
        return {column: field.name for column, field in cls._column_fields()}

    def to_row(self) -> dict[str, Any]:
        """Encode the model's columns into database values."""
        return {
            column: _encode(getattr(self, field.name), field.metadata.get("null_string", False))
            for column, field in self._column_fields()
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]):
        """Build a model from a database row."""
        init_values: dict[str, Any] = {}
        late_values: dict[str, Any] = {}
        for column, field in cls._column_fields():
            if column not in row:
                continue
            if field.metadata.get("null_string", False):
                value = from_null_string(row[column])
            else:
                base, optional = _field_hint(field)
                value = _decode(row[column], base, optional)
            (init_values if field.init else late_values)[field.name] = value
        instance = cls(**init_values)
        for name, value in late_values.items():
            setattr(instance, name, value)
        return instance


def _model_class(model: Any) -> type[Model]:
    cls = model if isinstance(model, type) else type(model)
    if not issubclass(cls, Model):
        raise StorageError(f"{cls.__name__} is not a model")
    return cls


def excluded_columns(model: Any, *include_columns: str) -> list[str]:
    """Return the columns of ``model`` not named in ``include_columns``.

    ``updated_at`` is never excluded, since it is kept current on every update.
    """
    columns = _model_class(model).columns()
    for name in include_columns:
        if name not in columns:
            raise StorageError(f"Invalid column name {name}")
    return [
        column
        for column in columns
        if column not in include_columns and column != "updated_at"
    ]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class Connection:
    """A database connection that persists :class:`Model` instances."""

    def __init__(self, raw: sqlite3.Connection, driver: str = "sqlite", max_pool_size: int = 0):
        self._raw = raw
        self.driver = driver
        self.max_pool_size = max_pool_size
        self._in_transaction = False

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def ensure_table(self, model_class: type[Model]) -> None:
        """Create the table for ``model_class`` if it does not exist."""
        cls = _model_class(model_class)
        if not cls.table_name:
            raise StorageError(f"{cls.__name__} has no table name")
        columns = ", ".join(_quote(column) for column in cls.columns())
        self.execute(f"CREATE TABLE IF NOT EXISTS {_quote(cls.table_name)} ({columns})", ())

    @contextmanager
    def transaction(self) -> Iterator["Connection"]:
        """Run the block in a transaction; nested use joins the outer one."""
        if self._in_transaction:
            yield self
            return
        self.execute("BEGIN", ())
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._in_transaction = False
            self._raw.execute("ROLLBACK")
            raise
        self._in_transaction = False
        self.execute("COMMIT", ())

    def execute(self, sql: str, params: Iterable[Any] = ()) -> int:
        """Run a statement and return the number of rows it touched."""
        try:
            cursor = self._raw.execute(sql, tuple(params))
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        return cursor.rowcount

    def query(self, sql: str, params: Iterable[Any] = ()) -> list[dict[str, Any]]:
        """Run a query and return its rows as dictionaries."""
        try:
            rows = self._raw.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        return [dict(row) for row in rows]

    @staticmethod
    def _run_hooks(model: Model, *names: str) -> None:
        for name in names:
            hook = getattr(model, name, None)
            if callable(hook):
                hook()

    def create(self, model: Model) -> None:
        """Insert ``model`` as a new row."""
        cls = _model_class(model)
        self._run_hooks(model, "before_save", "before_create")
        attributes = cls.columns()
        now = _now()
        if "created_at" in attributes and getattr(model, attributes["created_at"]) is None:
            setattr(model, attributes["created_at"], now)
        if "updated_at" in attributes:
            setattr(model, attributes["updated_at"], now)
        row = model.to_row()
        names = ", ".join(_quote(column) for column in row)
        marks = ", ".join("?" for _ in row)
        self.execute(
            f"INSERT INTO {_quote(cls.table_name)} ({names}) VALUES ({marks})", row.values()
        )

    def _update(self, model: Model, exclude: Iterable[str]) -> None:
        cls = _model_class(model)
        self._run_hooks(model, "before_save", "before_update")
        attributes = cls.columns()
        if "id" not in attributes:
            raise StorageError(f"{cls.__name__} has no id column")
        if "updated_at" in attributes:
            setattr(model, attributes["updated_at"], _now())
        skipped = set(exclude) | {"id"}
        row = model.to_row()
        changed = {column: value for column, value in row.items() if column not in skipped}
        if not changed:
            return
        assignments = ", ".join(f"{_quote(column)} = ?" for column in changed)
        self.execute(
            f"UPDATE {_quote(cls.table_name)} SET {assignments} WHERE {_quote('id')} = ?",
            [*changed.values(), row["id"]],
        )

    def update(self, model: Model) -> None:
        """Write every column of ``model`` to its row."""
        self._update(model, ())

    def update_only(self, model: Model, *include_columns: str) -> None:
        """Write only the named columns (and ``updated_at``) of ``model``."""
        self._update(model, excluded_columns(model, *include_columns))

    def close(self) -> None:
        self._raw.close()


def dial(url: str = "", driver: str = "", max_pool_size: int = 0) -> Connection:
    """Open a connection; the driver is taken from the URL scheme if not given."""
    scheme, separator, rest = url.partition("://")
    if not driver and url:
        driver = scheme if separator else ""
    if driver.lower() not in SUPPORTED_DRIVERS:
        raise StorageError(f"opening database connection: unsupported driver {driver!r}")
    database = (rest if separator else url) or ":memory:"
    try:
        raw = sqlite3.connect(database, isolation_level=None, check_same_thread=False)
    except sqlite3.Error as exc:
        raise StorageError(f"checking database connection: {exc}") from exc
    raw.row_factory = sqlite3.Row
    if logging.getLogger().isEnabledFor(logging.DEBUG):
        raw.set_trace_callback(logger.debug)
    return Connection(raw, driver.lower(), max_pool_size)