"""
Error types raised by the signing and delivery pipeline.

Every failure is a single terminal outcome for the call that raised it:
nothing is retried, nothing is swallowed. The underlying cause, when there
is one, is chained with ``raise ... from``.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .graphql import GraphQLErrorEntry


class IAMSignedError(Exception):
    """Base class for every error raised by iam_signed."""


class ConstructionError(IAMSignedError):
    """The request could not be built from the given method and endpoint."""


class SigningError(IAMSignedError):
    """Credentials could not be resolved or the request could not be signed."""


class TransportError(IAMSignedError):
    """
    The network round trip failed.

    Attributes:
        cancelled: True when the call was aborted by its Context
            (explicit cancel or deadline exceeded)
    """

    def __init__(self, message: str, cancelled: bool = False):
        super().__init__(message)
        self.cancelled = cancelled


class UnexpectedStatusError(IAMSignedError):
    """The endpoint answered with a status code other than 200."""

    def __init__(self, status_code: int, body_snippet: str = ""):
        super().__init__(f"received status code {status_code}")
        self.status_code = status_code
        self.body_snippet = body_snippet


class ResponseParseError(IAMSignedError):
    """The response body is not a valid GraphQL envelope."""

    def __init__(self, message: str, body_snippet: str = ""):
        super().__init__(f"could not parse response '{body_snippet}': {message}")
        self.body_snippet = body_snippet


class GraphQLError(IAMSignedError):
    """
    A well-formed GraphQL envelope carrying application-level errors.

    Unlike the other errors this one comes with a payload: ``data`` holds the
    raw JSON of the (possibly partial) ``data`` member so callers can still
    inspect whatever the resolvers returned.

    Attributes:
        data: Raw JSON bytes of the envelope's ``data`` member
        errors: The envelope's errors, in response order
    """

    def __init__(self, data: bytes, errors: "list[GraphQLErrorEntry]"):
        self.data = data
        self.errors = list(errors)
        super().__init__(self.render())

    def render(self) -> str:
        """Render the errors the way they are shown to a human."""
        lines = [f"GraphQL returned {len(self.errors)} error(s)"]
        for entry in self.errors:
            lines.append(f" {entry.format_locations()}: {entry.message}")
        return "\n".join(lines)

    @property
    def messages(self) -> list[str]:
        return [entry.message for entry in self.errors]

    def first_message(self) -> Optional[str]:
        return self.errors[0].message if self.errors else None
