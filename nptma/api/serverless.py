"""API-gateway / cloud-function entrypoint.

Accepts both event shapes the gateway may deliver (REST-style `httpMethod` /
`path`, and HTTP-API-style `requestContext.http.method` / `rawPath`) and
returns `{statusCode, headers, body}`.

Unlike the FastAPI app, this entrypoint never creates the schema: the users
table must already exist (run `alembic upgrade head` once per deployment).
"""

from typing import Any, Dict, Optional

from nptma.api.gateway import GatewayRequest, LeadGateway
from nptma.api.runtime import get_runtime


def event_to_request(event: Optional[Dict[str, Any]]) -> GatewayRequest:
    """Translate a gateway event into a GatewayRequest."""
    event = event or {}
    http_context = (event.get("requestContext") or {}).get("http") or {}
    method = event.get("httpMethod") or http_context.get("method") or "GET"
    path = event.get("path") or event.get("rawPath") or "/"
    headers = {str(k): str(v) for k, v in (event.get("headers") or {}).items() if v is not None}
    return GatewayRequest(
        method=method,
        path=path,
        headers=headers,
        body=event.get("body") or None,
        is_base64_encoded=bool(event.get("isBase64Encoded")),
    )


def handler(event, context=None) -> Dict[str, Any]:
    """Serverless handler; settings are loaded once per process."""
    result = LeadGateway(get_runtime()).handle(event_to_request(event))
    return {
        "statusCode": result.status_code,
        "headers": result.headers,
        "body": result.body,
    }
