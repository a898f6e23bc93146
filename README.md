# trueauth

The data layer of an authentication service: users, identities and audit-log
entries kept in a SQLite database, plus signed session cookies and hCaptcha
verification.

## Install

```
pip install trueauth
```

To run the test suite, install the test extra:

```
pip install "trueauth[test]"
pytest
```

## Storage

`trueauth.storage.dial(url, driver, max_pool_size)` opens a `Connection`.
Only SQLite is supported: the driver must be `sqlite` or `sqlite3`. If no
driver is given, it is taken from the URL scheme; the part after `://` is the
database file, and an empty one gives an in-memory database. Any other driver
raises `StorageError`.

Models are dataclasses derived from `trueauth.storage.Model` with a
`table_name`. Each field is a column, unless its metadata sets `db` to another
column name or to `None` (no column); fields with `null_string` in their
metadata store an empty string as `NULL`.

A connection offers:

- `ensure_table(model_class)`, which creates a model's table if it is missing;
- `transaction()`, a context manager that commits when the block succeeds and
  rolls back when it raises; a nested use joins the outer transaction;
- `create(model)` and `update(model)`, which keep `created_at` and
  `updated_at` current and run the model's `before_save` hook;
- `update_only(model, *columns)`, which writes only the named columns (and
  `updated_at`) and raises `StorageError` when a column name does not exist;
- `execute(sql, params)` and `query(sql, params)` for raw SQL; `query` returns
  rows as dictionaries;
- `close()`.

`excluded_columns(model, *columns)` returns the columns that `update_only`
leaves alone. `to_null_string` and `from_null_string` map an empty string to
SQL `NULL` and back. `trueauth.jsonmap` has `json_map_value` and
`json_map_scan` to turn a mapping into JSON text and back, with an empty or
`NULL` value read as `{}`.

## Users

```python
import uuid

from trueauth.identity import Identity
from trueauth.storage import dial
from trueauth.user import User, find_user_by_email_and_audience, new_user

conn = dial("sqlite://auth.db", "", 1)
conn.ensure_table(User)
conn.ensure_table(Identity)

instance_id = uuid.uuid4()
password = "password"
user = new_user(instance_id, "someone@example.com", password, "test", None)
conn.create(user)

found = find_user_by_email_and_audience(conn, instance_id, "someone@example.com", "test")
assert found.authenticate(password)
```

`new_user` stores the e-mail address in lower case and the password as a
bcrypt hash. `new_system_user` builds the super-admin user, which cannot be
saved: `before_save` raises `StorageError` for it.

Methods on a `User` change the user and write only the columns they touch:
`confirm`, `confirm_phone`, `confirm_email_change`, `confirm_phone_change`,
`confirm_reauthentication`, `recover`, `set_role`, `set_email`, `set_phone`,
`update_password`, `update_user_metadata`, `update_app_metadata`,
`update_app_metadata_providers` and others. In a metadata update, a key whose
value is `None` is removed. `is_banned()` is true while `banned_until` lies in
the future.

Lookups such as `find_user_by_id` and `find_user_by_recovery_token` raise
`UserNotFoundError` when no user matches, and fill in the user's
`identities`. `find_user_by_confirmation_token` raises
`ConfirmationTokenNotFoundError`. `is_duplicated_email` and
`is_duplicated_phone` tell whether a matching user exists.

`find_users_in_audience` lists users, optionally filtered by a text found in
the e-mail address or the `full_name` metadata, sorted by `SortParams`
(a list of `SortField` with a `SortDirection`) and paged by a `Pagination`,
whose `count` it fills in with the total number of matches. These classes
live in `trueauth.pagination`, together with `truncate_all(conn)`, which
empties the authentication tables that exist.

## Identities and audit log

- `trueauth.identity.new_identity(user, provider, identity_data)` needs a
  string `"sub"` key in `identity_data` and raises `ValueError` otherwise.
  `find_identity_by_id_and_provider`, `find_identities_by_user` and
  `find_providers_by_user` read identities back.
- `trueauth.audit_log.new_audit_log_entry(tx, instance_id, actor, action, traits)`
  stores an `AuditAction` performed by a user, with a timestamp, the actor's
  id, phone or e-mail, full name if known, and the action's log type.
- `find_audit_log_entries(tx, instance_id, filter_columns, filter_value, page_params)`
  returns an instance's entries newest first; with filter columns and a value,
  an entry matches when any of those payload fields contains the value,
  ignoring case.

## Errors

Every "not found" error derives from `trueauth.errors.NotFoundError`:
`UserNotFoundError`, `IdentityNotFoundError`,
`ConfirmationTokenNotFoundError`, `RefreshTokenNotFoundError`,
`InstanceNotFoundError` and `TotpSecretNotFoundError`.
`is_not_found_error(err)` tells whether an error is one of them.

## Sessions

`trueauth.session.SessionStore(key)` signs and timestamps cookie values with
HMAC-SHA256; without a key it uses a random one. Values older than 30 days are
rejected. `store_in_session(key, value, cookie_header, store)` returns a
`Set-Cookie` value for the `_gotrue_session` cookie, keeping what the current
cookie already holds. `get_from_session(key, cookie_header, store)` reads a
string back from a `Cookie` header and raises `SessionError` when it is not
there, including when the cookie's signature does not match. When no store is
given, both use one keyed by the `GOTRUE_SESSION_KEY` environment variable, or
a random key if it is unset.

## hCaptcha

`trueauth.hcaptcha.verify_request(body, remote_addr, secret_key)` reads
`gotrue_meta_security.hcaptcha_token` from a JSON request body and checks it
with the hCaptcha service through `verify_captcha_code`. It returns
`VerificationResult.SUCCESSFULLY_VERIFIED` on success and raises
`CaptchaError` otherwise; the error's `result` is `USER_REQUEST_FAILED` for a
missing or rejected token and `VERIFICATION_PROCESS_FAILURE` when the service
cannot be reached or answers with something unreadable.

## What this package does not do

It is a library only: there is no HTTP API, no server and no command to run.
It has no database migrations (tables come from `ensure_table`), supports no
database other than SQLite, and has no models for refresh tokens, instances or
TOTP secrets, although their "not found" errors exist.