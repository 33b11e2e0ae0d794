"""Constants for nptma.

Error codes and client-facing messages live here so the gateway, the
verifier and the tests agree on the exact wire values.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Error codes returned in the `error_code` field of error envelopes."""
    MISSING_INITDATA = "MISSING_INITDATA"
    INVALID_INITDATA = "INVALID_INITDATA"
    EXPIRED_INITDATA = "EXPIRED_INITDATA"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Client-facing messages
MSG_ORIGIN_NOT_ALLOWED = "Origin is not allowed"
MSG_METHOD_NOT_ALLOWED = "Method not allowed"
MSG_ROUTE_NOT_FOUND = "Route not found"
MSG_INITDATA_REQUIRED = "initData is required"
MSG_INTERNAL_ERROR = "Internal server error"
MSG_RATE_LIMITED = "Try again in {seconds} seconds"

# Verifier messages
MSG_INVALID_INITDATA = "Invalid Telegram initData"
MSG_INVALID_SIGNATURE = "Invalid Telegram initData signature"
MSG_INVALID_AUTH_DATE = "Invalid auth_date value"
MSG_EXPIRED_INITDATA = "Telegram initData expired"
MSG_INVALID_USER = "Invalid user payload"
MSG_USER_NOT_FOUND = "User data not found in initData"

# Telegram WebApp signing constant (HMAC key for deriving the secret key)
WEB_APP_DATA_KEY = "WebAppData"

# Placeholder for absent optional fields in operator notifications
MISSING_FIELD_PLACEHOLDER = "(нет)"

# Largest user id the BIGINT column can hold
MAX_USER_ID = 2**63 - 1
