"""User, identity and audit-log models stored in SQLite, with signed sessions and hCaptcha checks."""

__version__ = "0.1.0"