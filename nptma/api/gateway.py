"""Request handling for the mini-app gateway.

One handler serves both routes:

    OPTIONS *        -> 204 preflight
    POST .../validate -> verify initData, upsert user, return identity + stats
    POST .../lead     -> verify initData, upsert user, rate-limit, notify operator

The handler is transport-neutral: the FastAPI app and the serverless
entrypoint both translate their requests into GatewayRequest.
"""

import base64
import binascii
import json
import logging
import math
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from nptma.api.runtime import Runtime
from nptma.auth.init_data import InitDataError, verify_init_data
from nptma.config import normalize_origin
from nptma.models.constants import (
    ErrorCode,
    MSG_INITDATA_REQUIRED,
    MSG_INTERNAL_ERROR,
    MSG_METHOD_NOT_ALLOWED,
    MSG_ORIGIN_NOT_ALLOWED,
    MSG_RATE_LIMITED,
    MSG_ROUTE_NOT_FOUND,
)
from nptma.models.outcome_event import OutcomeEvent, OutcomeEventType
from nptma.models.user import VerifiedIdentity

logger = logging.getLogger(__name__)
event_logger = logging.getLogger("nptma.events")


class Route(str, Enum):
    """Routes served by the gateway."""
    VALIDATE = "validate"
    LEAD = "lead"


_OUTCOMES = {
    (Route.VALIDATE, True): OutcomeEventType.VALIDATE_OK,
    (Route.VALIDATE, False): OutcomeEventType.VALIDATE_FAIL,
    (Route.LEAD, True): OutcomeEventType.LEAD_OK,
    (Route.LEAD, False): OutcomeEventType.LEAD_FAIL,
}


def resolve_route(path: Optional[str]) -> Optional[Route]:
    """Resolve a request path by suffix; None for anything unknown."""
    path = path or "/"
    for route in Route:
        if path.endswith(f"/{route.value}"):
            return route
    return None


class GatewayRequest(BaseModel):
    """Transport-neutral inbound request."""
    method: str = Field("GET", description="HTTP method")
    path: str = Field("/", description="Request path")
    headers: Dict[str, str] = Field(default_factory=dict, description="Request headers")
    body: Optional[str] = Field(None, description="Raw request body")
    is_base64_encoded: bool = Field(False, description="Body is base64-encoded by the transport")

    def header(self, name: str) -> str:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value or ""
        return ""


class GatewayResponse(BaseModel):
    """Transport-neutral outbound response."""
    status_code: int
    headers: Dict[str, str] = Field(default_factory=dict)
    body: str = ""

    def json_body(self) -> Any:
        return json.loads(self.body) if self.body else None


def parse_body(request: GatewayRequest) -> Dict[str, Any]:
    """Decode the JSON body; anything unparseable becomes an empty object."""
    if not request.body:
        return {}
    raw = request.body
    try:
        if request.is_base64_encoded:
            raw = base64.b64decode(raw).decode("utf-8")
        parsed = json.loads(raw)
    except (binascii.Error, UnicodeDecodeError, ValueError, RecursionError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def identity_payload(identity: VerifiedIdentity) -> Dict[str, Any]:
    """Identity echo for the validate response; empty optional fields are omitted."""
    payload: Dict[str, Any] = {"id": identity.id}
    for name in ("first_name", "last_name", "username", "photo_url"):
        value = getattr(identity, name)
        if value:
            payload[name] = value
    return payload


class LeadGateway:
    """Origin/method/route gating plus the validate and lead flows."""

    def __init__(self, runtime: Runtime):
        self.runtime = runtime
        self.settings = runtime.settings
        self.allowed_origin = normalize_origin(self.settings.allowed_origin)

    # Responses

    def _cors_headers(self, origin: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json; charset=utf-8",
            "Access-Control-Allow-Origin": origin if origin == self.allowed_origin else self.allowed_origin,
            "Access-Control-Allow-Methods": "POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
            "Vary": "Origin",
        }

    def _respond(self, status_code: int, payload: Optional[Dict[str, Any]], origin: str) -> GatewayResponse:
        body = json.dumps(payload, ensure_ascii=False) if payload is not None else ""
        return GatewayResponse(status_code=status_code, headers=self._cors_headers(origin), body=body)

    def _error(self, status_code: int, error_code: ErrorCode, message: str, origin: str) -> GatewayResponse:
        return self._respond(
            status_code,
            {"ok": False, "error_code": error_code.value, "message": message},
            origin,
        )

    def _log_outcome(self, route: Route, ok: bool, user_id: Optional[int] = None) -> None:
        event = OutcomeEvent(event_type=_OUTCOMES[(route, ok)], user_id=user_id, timestamp=self.runtime.clock())
        event_logger.info(event.to_log_line())

    # Entry point

    def handle(self, request: GatewayRequest) -> GatewayResponse:
        method = (request.method or "GET").upper()
        origin = request.header("Origin")

        if method == "OPTIONS":
            return self._respond(204, None, origin)

        if origin and origin != self.allowed_origin:
            return self._error(403, ErrorCode.INTERNAL_ERROR, MSG_ORIGIN_NOT_ALLOWED, origin)

        if method != "POST":
            return self._error(405, ErrorCode.INTERNAL_ERROR, MSG_METHOD_NOT_ALLOWED, origin)

        route = resolve_route(request.path)
        if route is None:
            return self._error(404, ErrorCode.INTERNAL_ERROR, MSG_ROUTE_NOT_FOUND, origin)

        init_data = parse_body(request).get("initData")
        if not isinstance(init_data, str) or not init_data:
            self._log_outcome(route, ok=False)
            return self._error(400, ErrorCode.MISSING_INITDATA, MSG_INITDATA_REQUIRED, origin)

        try:
            identity = verify_init_data(
                init_data,
                self.settings.bot_token,
                ttl_seconds=self.settings.auth_ttl_seconds,
                now=self.runtime.clock(),
            )
        except InitDataError as e:
            self._log_outcome(route, ok=False)
            return self._error(401, e.error_code, e.message, origin)

        try:
            repository = self.runtime.user_repository()
            repository.record_seen(identity, self.runtime.clock())
            if route is Route.VALIDATE:
                return self._validate(repository, identity, origin)
            return self._lead(repository, identity, origin)
        except Exception as e:
            self._log_outcome(route, ok=False, user_id=identity.id)
            logger.error(f"Internal error on route {route.value}: {type(e).__name__}: {str(e)}")
            return self._error(500, ErrorCode.INTERNAL_ERROR, MSG_INTERNAL_ERROR, origin)

    # Routes

    def _validate(self, repository, identity: VerifiedIdentity, origin: str) -> GatewayResponse:
        unique_users = repository.count_all()
        self._log_outcome(Route.VALIDATE, ok=True, user_id=identity.id)
        return self._respond(
            200,
            {
                "ok": True,
                "user": identity_payload(identity),
                "stats": {"unique_users": unique_users},
            },
            origin,
        )

    def _lead(self, repository, identity: VerifiedIdentity, origin: str) -> GatewayResponse:
        window = self.settings.lead_rate_limit_seconds
        last_lead_at = repository.get_last_lead_at(identity.id)
        if last_lead_at is not None:
            elapsed = math.floor((self.runtime.clock() - last_lead_at).total_seconds())
            if elapsed < window:
                self._log_outcome(Route.LEAD, ok=False, user_id=identity.id)
                return self._error(
                    429,
                    ErrorCode.RATE_LIMITED,
                    MSG_RATE_LIMITED.format(seconds=window - elapsed),
                    origin,
                )

        self.runtime.notifier.notify(identity)
        repository.set_last_lead_at(identity.id, self.runtime.clock())
        self._log_outcome(Route.LEAD, ok=True, user_id=identity.id)
        return self._respond(200, {"ok": True}, origin)
