"""
Outbound request construction.

A request is built fresh for every call, signed exactly once, and handed to
the transport. Re-signing a request that has already been signed is refused
by the signer.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union
from urllib.parse import urlsplit

from .exceptions import ConstructionError

HTTP_METHODS = frozenset(
    {"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "CONNECT", "TRACE"}
)

JSON_CONTENT_TYPE = "application/json"

Payload = Union[bytes, bytearray, str, None]


class ServiceIdentifier(str, Enum):
    """AWS service namespaces used as signing scope."""
    APPSYNC = "appsync"
    API_GATEWAY = "execute-api"


@dataclass
class OutboundRequest:
    """An HTTP request on its way to an AWS endpoint."""
    method: str
    url: str
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    signed: bool = False

    @property
    def host(self) -> str:
        """Host header value: hostname plus port unless it is the scheme default."""
        parts = urlsplit(self.url)
        hostname = parts.hostname or ""
        if ":" in hostname:
            hostname = f"[{hostname}]"
        port = parts.port
        if port is None or (parts.scheme, port) in (("http", 80), ("https", 443)):
            return hostname
        return f"{hostname}:{port}"

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    def set_header(self, name: str, value: str) -> None:
        """Set a header, replacing any existing one regardless of case."""
        lowered = name.lower()
        for key in [k for k in self.headers if k.lower() == lowered]:
            del self.headers[key]
        self.headers[name] = value


def _encode_payload(payload: Payload) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    raise ConstructionError(
        f"could not create request: payload must be bytes or str, not {type(payload).__name__}"
    )


def build_request(method: str, endpoint: str, payload: Payload) -> OutboundRequest:
    """
    Build a JSON request for an AWS endpoint.

    Args:
        method: HTTP verb (case-insensitive)
        endpoint: Absolute http(s) URL
        payload: Request body

    Returns:
        OutboundRequest with Content-Type set to application/json

    Raises:
        ConstructionError: If the method is not an HTTP verb or the endpoint
            is not an absolute http(s) URL
    """
    if not isinstance(method, str) or method.upper() not in HTTP_METHODS:
        raise ConstructionError(f"could not create request: invalid method {method!r}")

    try:
        parts = urlsplit(endpoint)
        # Accessing the port validates it
        parts.port
    except (TypeError, ValueError, AttributeError) as e:
        raise ConstructionError(f"could not create request: invalid endpoint {endpoint!r}") from e

    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ConstructionError(f"could not create request: invalid endpoint {endpoint!r}")

    return OutboundRequest(
        method=method.upper(),
        url=endpoint,
        body=_encode_payload(payload),
        headers={"Content-Type": JSON_CONTENT_TYPE},
    )
