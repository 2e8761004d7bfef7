"""
GraphQL response unwrapping for AppSync.

AppSync answers 200 even when resolvers fail; the failures travel inside the
``{"data": ..., "errors": [...]}`` envelope. This module parses that envelope
and turns a non-empty ``errors`` list into a GraphQLError that still carries
the (possibly partial) ``data``.

``data`` is handed back as the raw JSON bytes found in the response, never
decoded and re-encoded, so numbers and formatting reach the caller untouched.
"""

import json
import logging
import re
from typing import Any, BinaryIO, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import GraphQLError, ResponseParseError
from .transport import body_snippet

logger = logging.getLogger(__name__)

Body = Union[bytes, bytearray, str, BinaryIO]

_decoder = json.JSONDecoder()
_WHITESPACE = re.compile(r"[ \t\n\r]*")


class GraphQLErrorLocation(BaseModel):
    """Position of an error in the GraphQL document."""
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        return f"{self.line}:{self.column}"


class GraphQLErrorEntry(BaseModel):
    """One entry of the envelope's ``errors`` list."""
    model_config = ConfigDict(populate_by_name=True)

    message: str = ""
    locations: list[GraphQLErrorLocation] = Field(default_factory=list)
    path: Optional[list[Union[str, int]]] = None
    error_type: Optional[str] = Field(default=None, alias="errorType")

    @field_validator("locations", mode="before")
    @classmethod
    def _null_locations(cls, value: Any) -> Any:
        return [] if value is None else value

    def format_locations(self) -> str:
        return "[" + ", ".join(str(location) for location in self.locations) + "]"


class GraphQLEnvelope(BaseModel):
    """The ``{data, errors}`` response shape. Both keys are optional."""
    data: Any = None
    errors: list[GraphQLErrorEntry] = Field(default_factory=list)

    @field_validator("errors", mode="before")
    @classmethod
    def _null_errors(cls, value: Any) -> Any:
        return [] if value is None else value


class GraphQLResult(BaseModel):
    """
    A parsed envelope.

    Attributes:
        data: Raw JSON of the ``data`` member; b"" when the key is absent,
            b"null" when it is JSON null
        errors: GraphQL errors in response order
    """
    data: bytes = b""
    errors: list[GraphQLErrorEntry] = Field(default_factory=list)

    def decode_data(self) -> Any:
        """Decode ``data`` into Python objects (None when absent)."""
        return json.loads(self.data) if self.data else None


def _read_body(body: Body) -> bytes:
    if isinstance(body, (bytes, bytearray)):
        return bytes(body)
    if isinstance(body, str):
        return body.encode("utf-8")
    try:
        raw = body.read()
    except (OSError, ValueError) as e:
        raise ResponseParseError(f"could not read buffer: {e}") from e
    finally:
        close = getattr(body, "close", None)
        if close is not None:
            close()
    return raw.encode("utf-8") if isinstance(raw, str) else bytes(raw)


def _skip_whitespace(text: str, index: int) -> int:
    return _WHITESPACE.match(text, index).end()


def _raw_member(text: str, name: str) -> str:
    """
    Return the JSON text of a top-level member exactly as it appears.

    ``text`` must already be known to hold a JSON object with that member.
    With duplicate keys the last one wins, as in the envelope model.
    """
    found = ""
    index = _skip_whitespace(text, 0) + 1  # past "{"
    index = _skip_whitespace(text, index)
    while text[index] != "}":
        key, index = _decoder.raw_decode(text, index)
        index = _skip_whitespace(text, _skip_whitespace(text, index) + 1)  # past ":"
        _, end = _decoder.raw_decode(text, index)
        if key == name:
            found = text[index:end]
        index = _skip_whitespace(text, end)
        if text[index] == ",":
            index = _skip_whitespace(text, index + 1)
    return found


def unwrap_graphql_response(body: Body) -> GraphQLResult:
    """
    Parse a GraphQL envelope without raising on GraphQL errors.

    Args:
        body: Response body as bytes/str or a readable stream (read to the
            end and closed)

    Returns:
        GraphQLResult with raw ``data`` and structured ``errors``

    Raises:
        ResponseParseError: If the body is not JSON or not an envelope
    """
    raw = _read_body(body)

    # A bare JSON null decodes to an empty envelope
    if raw.strip() == b"null":
        return GraphQLResult()

    try:
        envelope = GraphQLEnvelope.model_validate_json(raw)
    except ValidationError as e:
        raise ResponseParseError(str(e), body_snippet(raw)) from e

    data = b""
    if "data" in envelope.model_fields_set:
        data = _raw_member(raw.decode("utf-8"), "data").encode("utf-8")

    return GraphQLResult(data=data, errors=envelope.errors)


def parse_graphql_response(body: Body) -> bytes:
    """
    Parse a GraphQL envelope and surface its errors.

    Args:
        body: Response body as bytes/str or a readable stream (read to the
            end and closed)

    Returns:
        Raw JSON bytes of the ``data`` member

    Raises:
        ResponseParseError: If the body is not JSON or not an envelope
        GraphQLError: If the envelope carries errors; ``error.data`` holds
            the partial data
    """
    result = unwrap_graphql_response(body)
    if result.errors:
        logger.warning("GraphQL returned %d error(s)", len(result.errors))
        raise GraphQLError(result.data, result.errors)
    return result.data
