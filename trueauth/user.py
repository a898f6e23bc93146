"""Registered users and the queries that find them."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar

import bcrypt

from trueauth.errors import ConfirmationTokenNotFoundError, NotFoundError, UserNotFoundError
from trueauth.identity import Identity, find_identities_by_user, find_providers_by_user
from trueauth.pagination import Pagination, SortDirection, SortParams
from trueauth.storage import Connection, Model, StorageError

SYSTEM_USER_ID = "0"
SYSTEM_USER_UUID = uuid.UUID(int=0)

_BCRYPT_COST = 10
_BCRYPT_MAX_BYTES = 72
_DEFAULT_PER_PAGE = 20

_NULLABLE_TIMES = (
    "email_confirmed_at",
    "phone_confirmed_at",
    "invited_at",
    "confirmation_sent_at",
    "recovery_sent_at",
    "email_change_sent_at",
    "phone_change_sent_at",
    "reauthentication_sent_at",
    "last_sign_in_at",
    "banned_until",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _is_zero(moment: datetime) -> bool:
    return moment.replace(tzinfo=None) == datetime.min


def _as_aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def _hash_password(password: str) -> str:
    hashed = bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(_BCRYPT_COST))
    return hashed.decode("ascii")


def _merge(current: dict[str, Any] | None, updates: dict[str, Any] | None) -> dict[str, Any] | None:
    if current is None:
        return dict(updates) if updates is not None else None
    if updates is not None:
        for key, value in updates.items():
            if value is not None:
                current[key] = value
            else:
                current.pop(key, None)
    return current


@dataclass
class User(Model):
    """A registered user with email, phone and password authentication."""

    table_name: ClassVar[str] = "users"

    instance_id: uuid.UUID = SYSTEM_USER_UUID
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    aud: str = ""
    role: str = ""
    email: str = field(default="", metadata={"null_string": True})
    encrypted_password: str = field(default="", repr=False)
    email_confirmed_at: datetime | None = None
    invited_at: datetime | None = None

    phone: str = field(default="", metadata={"null_string": True})
    phone_confirmed_at: datetime | None = None

    confirmation_token: str = field(default="", repr=False)
    confirmation_sent_at: datetime | None = None

    recovery_token: str = field(default="", repr=False)
    recovery_sent_at: datetime | None = None

    email_change_token_current: str = field(default="", repr=False)
    email_change_token_new: str = field(default="", repr=False)
    email_change: str = ""
    email_change_sent_at: datetime | None = None
    email_change_confirm_status: int = 0

    phone_change_token: str = field(default="", repr=False)
    phone_change: str = ""
    phone_change_sent_at: datetime | None = None

    reauthentication_token: str = field(default="", repr=False)
    reauthentication_sent_at: datetime | None = None

    last_sign_in_at: datetime | None = None

    app_metadata: dict[str, Any] | None = field(
        default=None, metadata={"db": "raw_app_meta_data"}
    )
    user_metadata: dict[str, Any] | None = field(
        default=None, metadata={"db": "raw_user_meta_data"}
    )

    is_super_admin: bool = False
    identities: list[Identity] = field(default_factory=list, metadata={"db": None})

    created_at: datetime | None = None
    updated_at: datetime | None = None
    banned_until: datetime | None = None

    @property
    def confirmed_at(self) -> datetime | None:
        """The earliest of the email and phone confirmation times."""
        times = [t for t in (self.email_confirmed_at, self.phone_confirmed_at) if t is not None]
        return min(times, key=_as_aware) if times else None

    def before_save(self) -> None:
        """Refuse to persist the system user and clear zero timestamps."""
        if self.id == SYSTEM_USER_UUID:
            raise StorageError("Cannot persist system user")
        for name in _NULLABLE_TIMES:
            value = getattr(self, name)
            if value is not None and _is_zero(value):
                setattr(self, name, None)

    def is_confirmed(self) -> bool:
        return self.email_confirmed_at is not None

    def is_phone_confirmed(self) -> bool:
        return self.phone_confirmed_at is not None

    def set_role(self, tx: Connection, role_name: str) -> None:
        self.role = role_name.strip()
        tx.update_only(self, "role")

    def has_role(self, role_name: str) -> bool:
        return self.role == role_name

    def update_user_metadata(self, tx: Connection, updates: dict[str, Any] | None) -> None:
        """Merge ``updates`` into the user metadata; ``None`` values remove keys."""
        self.user_metadata = _merge(self.user_metadata, updates)
        tx.update_only(self, "raw_user_meta_data")

    def update_app_metadata(self, tx: Connection, updates: dict[str, Any] | None) -> None:
        """Merge ``updates`` into the app metadata; ``None`` values remove keys."""
        self.app_metadata = _merge(self.app_metadata, updates)
        tx.update_only(self, "raw_app_meta_data")

    def update_app_metadata_providers(self, tx: Connection) -> None:
        """Store the user's identity providers under ``providers`` in the app metadata."""
        providers = find_providers_by_user(tx, self)
        self.update_app_metadata(tx, {"providers": providers})

    def set_email(self, tx: Connection, email: str) -> None:
        self.email = email
        tx.update_only(self, "email")

    def set_phone(self, tx: Connection, phone: str) -> None:
        self.phone = phone
        tx.update_only(self, "phone")

    def update_password(self, tx: Connection, password: str) -> None:
        self.encrypted_password = _hash_password(password)
        tx.update_only(self, "encrypted_password")

    def update_phone(self, tx: Connection, phone: str) -> None:
        self.phone = phone
        tx.update_only(self, "phone")

    def authenticate(self, password: str) -> bool:
        """Tell whether ``password`` matches the stored hash."""
        try:
            return bcrypt.checkpw(
                _password_bytes(password), self.encrypted_password.encode("utf-8")
            )
        except ValueError:
            return False

    def confirm_reauthentication(self, tx: Connection) -> None:
        self.reauthentication_token = ""
        tx.update_only(self, "reauthentication_token")

    def confirm(self, tx: Connection) -> None:
        self.confirmation_token = ""
        self.email_confirmed_at = _now()
        tx.update_only(self, "confirmation_token", "email_confirmed_at")

    def confirm_phone(self, tx: Connection) -> None:
        self.confirmation_token = ""
        self.phone_confirmed_at = _now()
        tx.update_only(self, "confirmation_token", "phone_confirmed_at")

    def update_last_sign_in_at(self, tx: Connection) -> None:
        tx.update_only(self, "last_sign_in_at")

    def confirm_email_change(self, tx: Connection, status: int) -> None:
        self.email = self.email_change
        self.email_change = ""
        self.email_change_token_current = ""
        self.email_change_token_new = ""
        self.email_change_confirm_status = status
        tx.update_only(
            self,
            "email",
            "email_change",
            "email_change_token_current",
            "email_change_token_new",
            "email_change_confirm_status",
        )

    def confirm_phone_change(self, tx: Connection) -> None:
        self.phone = self.phone_change
        self.phone_change = ""
        self.phone_change_token = ""
        self.phone_confirmed_at = _now()
        tx.update_only(self, "phone", "phone_change", "phone_change_token", "phone_confirmed_at")

    def recover(self, tx: Connection) -> None:
        self.recovery_token = ""
        tx.update_only(self, "recovery_token")

    def is_banned(self) -> bool:
        if self.banned_until is None:
            return False
        return _now() < _as_aware(self.banned_until)

    def update_banned_until(self, tx: Connection) -> None:
        tx.update_only(self, "banned_until")


def new_user(
    instance_id: uuid.UUID,
    email: str,
    password: str,
    aud: str,
    user_data: dict[str, Any] | None = None,
) -> User:
    """Build a new user with a hashed password and a lower-cased email."""
    return User(
        instance_id=instance_id,
        id=uuid.uuid4(),
        aud=aud,
        email=email.lower(),
        user_metadata=user_data if user_data is not None else {},
        encrypted_password=_hash_password(password),
    )


def new_system_user(instance_id: uuid.UUID, aud: str) -> User:
    """Return the super-admin system user, which is never stored."""
    return User(instance_id=instance_id, id=SYSTEM_USER_UUID, aud=aud, is_super_admin=True)


def count_other_users(tx: Connection, instance_id: uuid.UUID, user_id: uuid.UUID) -> int:
    """Count the users of an instance other than ``user_id``."""
    try:
        rows = tx.query(
            'SELECT COUNT(*) AS total FROM "users" WHERE "instance_id" = ? AND "id" != ?',
            (str(instance_id), str(user_id)),
        )
    except StorageError as exc:
        raise StorageError(f"error finding registered users: {exc}") from exc
    return int(rows[0]["total"])


def _find_user(tx: Connection, condition: str, *params: Any) -> User:
    try:
        rows = tx.query(f'SELECT * FROM "users" WHERE {condition} LIMIT 1', params)
    except StorageError as exc:
        raise StorageError(f"error finding user: {exc}") from exc
    if not rows:
        raise UserNotFoundError()
    user = User.from_row(rows[0])
    user.identities = find_identities_by_user(tx, user)
    return user


def find_user_by_confirmation_token(tx: Connection, token: str) -> User:
    try:
        return _find_user(tx, '"confirmation_token" = ?', token)
    except StorageError as exc:
        raise ConfirmationTokenNotFoundError() from exc
    except NotFoundError as exc:
        raise ConfirmationTokenNotFoundError() from exc


def find_user_by_email_and_audience(
    tx: Connection, instance_id: uuid.UUID, email: str, aud: str
) -> User:
    return _find_user(
        tx,
        '"instance_id" = ? AND LOWER("email") = ? AND "aud" = ?',
        str(instance_id),
        email.lower(),
        aud,
    )


def find_user_by_phone_and_audience(
    tx: Connection, instance_id: uuid.UUID, phone: str, aud: str
) -> User:
    return _find_user(
        tx, '"instance_id" = ? AND "phone" = ? AND "aud" = ?', str(instance_id), phone, aud
    )


def find_user_by_id(tx: Connection, user_id: uuid.UUID) -> User:
    return _find_user(tx, '"id" = ?', str(user_id))


def find_user_by_instance_id_and_id(
    tx: Connection, instance_id: uuid.UUID, user_id: uuid.UUID
) -> User:
    return _find_user(tx, '"instance_id" = ? AND "id" = ?', str(instance_id), str(user_id))


def find_user_by_recovery_token(tx: Connection, token: str) -> User:
    return _find_user(tx, '"recovery_token" = ?', token)


def find_user_by_email_change_token(tx: Connection, token: str) -> User:
    return _find_user(
        tx, '"email_change_token_current" = ? OR "email_change_token_new" = ?', token, token
    )


def find_user_by_token_and_token_type(tx: Connection, token: str, token_type: str) -> User:
    """Find a user whose column ``token_type`` holds ``token``."""
    if token_type not in User.columns():
        raise StorageError(f"error finding user: no such column {token_type}")
    return _find_user(tx, f'"{token_type}" = ?', token)


def find_users_in_audience(
    tx: Connection,
    instance_id: uuid.UUID,
    aud: str,
    page_params: Pagination | None = None,
    sort_params: SortParams | None = None,
    filter_text: str = "",
) -> list[User]:
    """List the users of an audience, optionally filtered, sorted and paginated."""
    where = ['"instance_id" = ? AND "aud" = ?']
    params: list[Any] = [str(instance_id), aud]
    if filter_text:
        pattern = f"%{filter_text}%"
        where.append(
            "(\"email\" LIKE ? OR json_extract(\"raw_user_meta_data\", '$.full_name') LIKE ?)"
        )
        params.extend((pattern, pattern))
    condition = " AND ".join(where)

    sql = f'SELECT * FROM "users" WHERE {condition}'
    if sort_params is not None and sort_params.fields:
        columns = User.columns()
        order = []
        for sort_field in sort_params.fields:
            if sort_field.name not in columns:
                raise StorageError(f"Invalid sort column {sort_field.name}")
            order.append(f'"{sort_field.name}" {SortDirection(sort_field.dir).value}')
        sql += " ORDER BY " + ", ".join(order)

    if page_params is not None:
        page = max(page_params.page, 1)
        per_page = page_params.per_page if page_params.per_page >= 1 else _DEFAULT_PER_PAGE
        total = tx.query(f'SELECT COUNT(*) AS total FROM "users" WHERE {condition}', params)
        page_params.count = int(total[0]["total"])
        sql += " LIMIT ? OFFSET ?"
        params = [*params, per_page, (page - 1) * per_page]

    return [User.from_row(row) for row in tx.query(sql, params)]


def find_user_by_email_change_current_and_audience(
    tx: Connection, instance_id: uuid.UUID, email: str, token: str, aud: str
) -> User:
    return _find_user(
        tx,
        '"instance_id" = ? AND LOWER("email") = ? AND "email_change_token_current" = ? AND "aud" = ?',
        str(instance_id),
        email.lower(),
        token,
        aud,
    )


def find_user_by_email_change_new_and_audience(
    tx: Connection, instance_id: uuid.UUID, email: str, token: str, aud: str
) -> User:
    return _find_user(
        tx,
        '"instance_id" = ? AND LOWER("email_change") = ? AND "email_change_token_new" = ? AND "aud" = ?',
        str(instance_id),
        email.lower(),
        token,
        aud,
    )


def find_user_for_email_change(
    tx: Connection,
    instance_id: uuid.UUID,
    email: str,
    token: str,
    aud: str,
    secure_email_change_enabled: bool,
) -> User:
    """Find a user confirming an email change, by the current or the new address."""
    if secure_email_change_enabled:
        try:
            return find_user_by_email_change_current_and_audience(
                tx, instance_id, email, token, aud
            )
        except NotFoundError:
            pass
    return find_user_by_email_change_new_and_audience(tx, instance_id, email, token, aud)


def find_user_by_phone_change_and_audience(
    tx: Connection, instance_id: uuid.UUID, phone: str, aud: str
) -> User:
    return _find_user(
        tx, '"instance_id" = ? AND "phone_change" = ? AND "aud" = ?', str(instance_id), phone, aud
    )


def is_duplicated_email(tx: Connection, instance_id: uuid.UUID, email: str, aud: str) -> bool:
    try:
        find_user_by_email_and_audience(tx, instance_id, email, aud)
    except NotFoundError:
        return False
    return True


def is_duplicated_phone(tx: Connection, instance_id: uuid.UUID, phone: str, aud: str) -> bool:
    try:
        find_user_by_phone_and_audience(tx, instance_id, phone, aud)
    except NotFoundError:
        return False
    return True