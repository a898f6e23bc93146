"""hCaptcha verification of incoming requests."""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from enum import IntEnum

logger = logging.getLogger(__name__)

VERIFY_URL = "https://hcaptcha.com/siteverify"
TIMEOUT_SECONDS = 10


class VerificationResult(IntEnum):
    USER_REQUEST_FAILED = 0
    VERIFICATION_PROCESS_FAILURE = 1
    SUCCESSFULLY_VERIFIED = 2


class CaptchaError(Exception):
    """Raised when verification fails; ``result`` tells whose fault it was."""

    def __init__(self, message: str, result: VerificationResult):
        super().__init__(message)
        self.result = result


def _extract_token(body: bytes | str) -> str:
    text = body.decode("utf-8") if isinstance(body, (bytes, bytearray)) else body
    failure = CaptchaError("couldn't decode captcha info", VerificationResult.USER_REQUEST_FAILED)
    try:
        data, _ = json.JSONDecoder().raw_decode(text.lstrip())
    except (ValueError, UnicodeDecodeError) as exc:
        raise failure from exc
    if not isinstance(data, dict):
        raise failure
    security = data.get("gotrue_meta_security", {})
    if not isinstance(security, dict):
        raise failure
    token = security.get("hcaptcha_token", "")
    if not isinstance(token, str) or not token.strip():
        raise failure
    return token


def verify_request(body: bytes | str, remote_addr: str, secret_key: str) -> VerificationResult:
    """Verify the hCaptcha token carried in a request body."""
    token = _extract_token(body)
    client_ip = remote_addr.split(":")[0]
    return verify_captcha_code(token, secret_key, client_ip)


def verify_captcha_code(token: str, secret_key: str, client_ip: str) -> VerificationResult:
    """Ask hCaptcha whether ``token`` is valid."""
    form = urllib.parse.urlencode(
        {"remoteip": client_ip, "response": token, "secret": secret_key}
    ).encode("ascii")
    request = urllib.request.Request(
        VERIFY_URL,
        data=form,
        method="POST",
        headers={
            "Content-Type": "application/x-www-form-urlencoded",
            "Content-Length": str(len(form)),
        },
    )
    try:
        with urllib.request.urlopen(request, timeout=TIMEOUT_SECONDS) as response:
            raw = response.read()
    except urllib.error.HTTPError as exc:
        raw = exc.read()
    except OSError as exc:
        raise CaptchaError(
            "failed to verify hcaptcha token", VerificationResult.VERIFICATION_PROCESS_FAILURE
        ) from exc

    decode_failure = CaptchaError(
        "failed to decode hcaptcha response", VerificationResult.VERIFICATION_PROCESS_FAILURE
    )
    try:
        result = json.loads(raw)
    except ValueError as exc:
        raise decode_failure from exc
    if not isinstance(result, dict) or not isinstance(result.get("success", False), bool):
        raise decode_failure
    logger.info("obtained hcaptcha verification result: %s", result)
    if not result.get("success", False):
        raise CaptchaError(
            "user request suppressed by hcaptcha", VerificationResult.USER_REQUEST_FAILED
        )
    return VerificationResult.SUCCESSFULLY_VERIFIED