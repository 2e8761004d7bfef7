"""iam_signed - SigV4-signed requests to AWS AppSync and API Gateway."""

from .auth import AWSCredentials, SigV4Auth, create_sigv4_headers, get_aws_credentials
from .client import (
    IAMSignedClient,
    api_gateway,
    api_gateway_async,
    app_sync,
    app_sync_async,
    create_client,
    graphql_payload,
)
from .context import Context
from .exceptions import (
    ConstructionError,
    GraphQLError,
    IAMSignedError,
    ResponseParseError,
    SigningError,
    TransportError,
    UnexpectedStatusError,
)
from .graphql import (
    GraphQLErrorEntry,
    GraphQLErrorLocation,
    GraphQLResult,
    parse_graphql_response,
    unwrap_graphql_response,
)
from .request import OutboundRequest, ServiceIdentifier, build_request
from .transport import deliver, deliver_async

__all__ = [
    # Entry points
    "app_sync",
    "app_sync_async",
    "api_gateway",
    "api_gateway_async",
    "graphql_payload",
    "IAMSignedClient",
    "create_client",
    "Context",
    # Pipeline stages
    "build_request",
    "OutboundRequest",
    "ServiceIdentifier",
    "SigV4Auth",
    "AWSCredentials",
    "create_sigv4_headers",
    "get_aws_credentials",
    "deliver",
    "deliver_async",
    "parse_graphql_response",
    "unwrap_graphql_response",
    "GraphQLResult",
    "GraphQLErrorEntry",
    "GraphQLErrorLocation",
    # Errors
    "IAMSignedError",
    "ConstructionError",
    "SigningError",
    "TransportError",
    "UnexpectedStatusError",
    "ResponseParseError",
    "GraphQLError",
]
