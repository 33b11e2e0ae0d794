"""Telegram Mini App initData verification.

The Telegram client hands the web app a URL-encoded `initData` string signed
by Telegram with a key derived from the bot token. Verification recomputes
the signature over the sorted `key=value` lines and checks the `auth_date`
freshness window. The raw payload and its hash are never logged.
"""

import hashlib
import hmac
import json
import math
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple
from urllib.parse import parse_qsl

from nptma.models.constants import (
    ErrorCode,
    MAX_USER_ID,
    MSG_EXPIRED_INITDATA,
    MSG_INVALID_AUTH_DATE,
    MSG_INVALID_INITDATA,
    MSG_INVALID_SIGNATURE,
    MSG_INVALID_USER,
    MSG_USER_NOT_FOUND,
    WEB_APP_DATA_KEY,
)
from nptma.models.user import VerifiedIdentity

DEFAULT_TTL_SECONDS = 3600


class InitDataError(Exception):
    """initData failed verification.

    Attributes:
        error_code: INVALID_INITDATA or EXPIRED_INITDATA
        message: Client-safe description
    """

    def __init__(self, error_code: ErrorCode, message: str):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


def parse_init_data(raw: str) -> List[Tuple[str, str]]:
    """Split a URL-encoded payload into ordered (key, value) pairs."""
    return parse_qsl(raw or "", keep_blank_values=True)


def _first(pairs: Iterable[Tuple[str, str]], key: str) -> Optional[str]:
    for k, v in pairs:
        if k == key:
            return v
    return None


def build_data_check_string(pairs: Iterable[Tuple[str, str]]) -> str:
    """Canonical check-string: every pair but `hash`, sorted, newline-joined."""
    lines = sorted(f"{k}={v}" for k, v in pairs if k != "hash")
    return "\n".join(lines)


def derive_secret_key(bot_token: str) -> bytes:
    """HMAC-SHA256 of the bot token keyed with the WebAppData constant."""
    return hmac.new(WEB_APP_DATA_KEY.encode("utf-8"), bot_token.encode("utf-8"), hashlib.sha256).digest()


def compute_init_data_hash(pairs: Iterable[Tuple[str, str]], bot_token: str) -> str:
    """Hex signature Telegram would attach to these pairs."""
    check_string = build_data_check_string(pairs)
    mac = hmac.new(derive_secret_key(bot_token), check_string.encode("utf-8"), hashlib.sha256)
    return mac.hexdigest()


def _signature_matches(supplied_hash: str, expected_hex: str) -> bool:
    try:
        supplied = bytes.fromhex(supplied_hash)
    except ValueError:
        return False
    expected = bytes.fromhex(expected_hex)
    if len(supplied) != len(expected):
        return False
    return hmac.compare_digest(supplied, expected)


def _parse_user_id(value) -> Optional[int]:
    # bool is an int subclass but not a numeric id
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if not isinstance(value, int):
        return None
    if value < 0 or value > MAX_USER_ID:
        return None
    return value


def _text(value) -> str:
    if not value:
        return ""
    return str(value)


def verify_init_data(
    raw: str,
    bot_token: str,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    now: Optional[datetime] = None,
) -> VerifiedIdentity:
    """Verify a Telegram initData payload and extract the user claim.

    Args:
        raw: URL-encoded initData string from the client
        bot_token: Bot token the payload was signed for
        ttl_seconds: Maximum accepted age of `auth_date`
        now: Current time (UTC). Defaults to the system clock.

    Returns:
        VerifiedIdentity for the embedded user

    Raises:
        InitDataError: If the payload is malformed, forged or expired
    """
    pairs = parse_init_data(raw)
    supplied_hash = _first(pairs, "hash")
    auth_date_raw = _first(pairs, "auth_date")

    if not supplied_hash or not auth_date_raw:
        raise InitDataError(ErrorCode.INVALID_INITDATA, MSG_INVALID_INITDATA)

    expected_hash = compute_init_data_hash(pairs, bot_token)
    if not _signature_matches(supplied_hash, expected_hash):
        raise InitDataError(ErrorCode.INVALID_INITDATA, MSG_INVALID_SIGNATURE)

    try:
        auth_date = float(auth_date_raw)
    except ValueError:
        raise InitDataError(ErrorCode.INVALID_INITDATA, MSG_INVALID_AUTH_DATE)
    if not math.isfinite(auth_date) or auth_date <= 0:
        raise InitDataError(ErrorCode.INVALID_INITDATA, MSG_INVALID_AUTH_DATE)

    now = now or datetime.now(timezone.utc)
    now_sec = math.floor(now.timestamp())
    if now_sec - auth_date > ttl_seconds:
        raise InitDataError(ErrorCode.EXPIRED_INITDATA, MSG_EXPIRED_INITDATA)

    user = None
    user_raw = _first(pairs, "user")
    if user_raw:
        try:
            user = json.loads(user_raw)
        except (ValueError, RecursionError):
            raise InitDataError(ErrorCode.INVALID_INITDATA, MSG_INVALID_USER)

    if not isinstance(user, dict):
        raise InitDataError(ErrorCode.INVALID_INITDATA, MSG_USER_NOT_FOUND)
    user_id = _parse_user_id(user.get("id"))
    if user_id is None:
        raise InitDataError(ErrorCode.INVALID_INITDATA, MSG_USER_NOT_FOUND)

    return VerifiedIdentity(
        id=user_id,
        first_name=_text(user.get("first_name")),
        last_name=_text(user.get("last_name")),
        username=_text(user.get("username")),
        photo_url=_text(user.get("photo_url")),
    )
