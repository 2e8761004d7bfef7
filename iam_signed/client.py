"""
Signed AppSync and API Gateway calls.

Every call builds a fresh request, signs it with SigV4, delivers it once and
validates the response. AppSync responses are additionally unwrapped from
their GraphQL envelope.

Usage:
    from iam_signed import app_sync, api_gateway, AWSCredentials, Context

    # Default credential chain, no deadline
    data = app_sync(
        b'{"query": "query { listItems { items { id } } }"}',
        "https://abc123.appsync-api.us-west-2.amazonaws.com/graphql",
        "us-west-2",
    )

    # Explicit credentials and a 5 second deadline
    body = api_gateway(
        b'{"name": "item"}',
        "https://abc123.execute-api.us-west-2.amazonaws.com/prod/items",
        "us-west-2",
        "POST",
        AWSCredentials(access_key="AKIA...", secret_key="..."),
        context=Context.with_timeout(5),
    )

    # Bundled configuration
    client = IAMSignedClient(region="us-west-2", timeout_seconds=10)
    items = client.query(endpoint, "query { listItems { items { id } } }")
"""

import json
import logging
from typing import Any, Optional

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from .auth import SigV4Auth, resolve_credentials
from .auth.sigv4 import CredentialSource
from .config import config
from .context import Context
from .exceptions import ConstructionError, GraphQLError, SigningError
from .graphql import parse_graphql_response
from .metrics import get_metrics_emitter
from .request import OutboundRequest, Payload, ServiceIdentifier, build_request
from .transport import deliver, deliver_async

logger = logging.getLogger(__name__)


def _signed_request(
    payload: Payload,
    service: ServiceIdentifier,
    endpoint: str,
    region: Optional[str],
    method: str,
    credentials: CredentialSource,
    profile_name: Optional[str] = None,
) -> OutboundRequest:
    region = region or config.aws_region
    if not region:
        raise ConstructionError("could not create request: region is required")

    request = build_request(method, endpoint, payload)
    SigV4Auth(
        region=region,
        service=service.value,
        credentials=credentials,
        profile_name=profile_name,
    ).sign(request)
    return request


def _unwrap_app_sync(body: bytes) -> bytes:
    try:
        return parse_graphql_response(body)
    except GraphQLError as e:
        get_metrics_emitter().record_graphql_errors(len(e.errors))
        raise


def app_sync(
    payload: Payload,
    endpoint: str,
    region: Optional[str],
    credentials: CredentialSource = None,
    *,
    context: Optional[Context] = None,
    transport: Optional[httpx.BaseTransport] = None,
    profile_name: Optional[str] = None,
) -> bytes:
    """
    Sign and send a GraphQL request to AppSync, then unwrap the response.

    Args:
        payload: JSON-encoded GraphQL request ({"query": ..., "variables": ...})
        endpoint: AppSync GraphQL endpoint URL
        region: AWS region (config.aws_region when None)
        credentials: AWSCredentials, botocore credentials, or None for the
            default provider chain
        context: Cancellation token (defaults to Context.background())
        transport: Optional httpx transport
        profile_name: Profile used when credentials is None

    Returns:
        Raw JSON bytes of the GraphQL ``data`` member

    Raises:
        ConstructionError, SigningError, TransportError,
        UnexpectedStatusError, ResponseParseError, GraphQLError
    """
    request = _signed_request(
        payload, ServiceIdentifier.APPSYNC, endpoint, region, "POST", credentials, profile_name
    )
    body = deliver(request, context, service=ServiceIdentifier.APPSYNC.value, transport=transport)
    return _unwrap_app_sync(body)


async def app_sync_async(
    payload: Payload,
    endpoint: str,
    region: Optional[str],
    credentials: CredentialSource = None,
    *,
    context: Optional[Context] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    profile_name: Optional[str] = None,
) -> bytes:
    """Asyncio variant of app_sync(); cancelling the context aborts the request."""
    request = _signed_request(
        payload, ServiceIdentifier.APPSYNC, endpoint, region, "POST", credentials, profile_name
    )
    body = await deliver_async(
        request, context, service=ServiceIdentifier.APPSYNC.value, transport=transport
    )
    return _unwrap_app_sync(body)


def api_gateway(
    payload: Payload,
    endpoint: str,
    region: Optional[str],
    method: str,
    credentials: CredentialSource = None,
    *,
    context: Optional[Context] = None,
    transport: Optional[httpx.BaseTransport] = None,
    profile_name: Optional[str] = None,
) -> bytes:
    """
    Sign and send a request to an IAM-authorized API Gateway endpoint.

    Args:
        payload: Request body
        endpoint: API Gateway invoke URL including stage and resource path
        region: AWS region (config.aws_region when None)
        method: HTTP method
        credentials: AWSCredentials, botocore credentials, or None for the
            default provider chain
        context: Cancellation token (defaults to Context.background())
        transport: Optional httpx transport
        profile_name: Profile used when credentials is None

    Returns:
        The raw response body

    Raises:
        ConstructionError, SigningError, TransportError, UnexpectedStatusError
    """
    request = _signed_request(
        payload, ServiceIdentifier.API_GATEWAY, endpoint, region, method, credentials, profile_name
    )
    return deliver(request, context, service=ServiceIdentifier.API_GATEWAY.value, transport=transport)


async def api_gateway_async(
    payload: Payload,
    endpoint: str,
    region: Optional[str],
    method: str,
    credentials: CredentialSource = None,
    *,
    context: Optional[Context] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    profile_name: Optional[str] = None,
) -> bytes:
    """Asyncio variant of api_gateway(); cancelling the context aborts the request."""
    request = _signed_request(
        payload, ServiceIdentifier.API_GATEWAY, endpoint, region, method, credentials, profile_name
    )
    return await deliver_async(
        request, context, service=ServiceIdentifier.API_GATEWAY.value, transport=transport
    )


def graphql_payload(
    document: str,
    variables: Optional[dict[str, Any]] = None,
    operation_name: Optional[str] = None,
) -> bytes:
    """Encode a GraphQL request body."""
    payload: dict[str, Any] = {"query": document}
    if variables:
        payload["variables"] = variables
    if operation_name:
        payload["operationName"] = operation_name
    return json.dumps(payload).encode("utf-8")


def _decode(data: bytes) -> Any:
    return json.loads(data) if data else None


class IAMSignedClient:
    """
    Client bundling region, credentials and timeout for repeated calls.

    The client holds no connection state: each call still builds, signs and
    sends a fresh request, so one instance can be shared across threads and
    tasks.

    Attributes:
        region: AWS region used for signing
        credentials: Credential source, resolved on every call
        profile_name: Profile used when credentials is None
        timeout_seconds: Deadline applied when a call gets no context
    """

    def __init__(
        self,
        region: Optional[str] = None,
        credentials: CredentialSource = None,
        profile_name: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[Any] = None,
    ):
        """
        Initialize the client.

        Args:
            region: AWS region (config.aws_region when None)
            credentials: AWSCredentials, botocore credentials, or None for the
                default provider chain
            profile_name: Optional AWS profile name
            timeout_seconds: Per-call deadline (config.timeout_seconds when None)
            transport: Optional httpx transport, used for both sync and async calls
        """
        self.region = region or config.aws_region
        self.credentials = credentials
        self.profile_name = profile_name
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else config.timeout_seconds
        )
        self._transport = transport

    def _context(self, context: Optional[Context]) -> Context:
        return context if context is not None else Context.with_timeout(self.timeout_seconds)

    def app_sync(self, payload: Payload, endpoint: str, *, context: Optional[Context] = None) -> bytes:
        return app_sync(
            payload,
            endpoint,
            self.region,
            self.credentials,
            context=self._context(context),
            transport=self._transport,
            profile_name=self.profile_name,
        )

    async def app_sync_async(
        self, payload: Payload, endpoint: str, *, context: Optional[Context] = None
    ) -> bytes:
        return await app_sync_async(
            payload,
            endpoint,
            self.region,
            self.credentials,
            context=self._context(context),
            transport=self._transport,
            profile_name=self.profile_name,
        )

    def api_gateway(
        self, payload: Payload, endpoint: str, method: str, *, context: Optional[Context] = None
    ) -> bytes:
        return api_gateway(
            payload,
            endpoint,
            self.region,
            method,
            self.credentials,
            context=self._context(context),
            transport=self._transport,
            profile_name=self.profile_name,
        )

    async def api_gateway_async(
        self, payload: Payload, endpoint: str, method: str, *, context: Optional[Context] = None
    ) -> bytes:
        return await api_gateway_async(
            payload,
            endpoint,
            self.region,
            method,
            self.credentials,
            context=self._context(context),
            transport=self._transport,
            profile_name=self.profile_name,
        )

    def query(
        self,
        endpoint: str,
        document: str,
        variables: Optional[dict[str, Any]] = None,
        operation_name: Optional[str] = None,
        *,
        context: Optional[Context] = None,
    ) -> Any:
        """
        Run a GraphQL operation against AppSync.

        Args:
            endpoint: AppSync GraphQL endpoint URL
            document: GraphQL query or mutation
            variables: Optional operation variables
            operation_name: Optional operation name
            context: Cancellation token (client deadline when omitted)

        Returns:
            The decoded ``data`` member

        Raises:
            GraphQLError: If the response carries errors; ``error.data``
                holds the raw partial data
        """
        data = self.app_sync(
            graphql_payload(document, variables, operation_name), endpoint, context=context
        )
        return _decode(data)

    async def query_async(
        self,
        endpoint: str,
        document: str,
        variables: Optional[dict[str, Any]] = None,
        operation_name: Optional[str] = None,
        *,
        context: Optional[Context] = None,
    ) -> Any:
        """Asyncio variant of query()."""
        data = await self.app_sync_async(
            graphql_payload(document, variables, operation_name), endpoint, context=context
        )
        return _decode(data)

    def get_auth_headers(
        self,
        url: str,
        body: Payload = b"",
        method: str = "POST",
        service: ServiceIdentifier = ServiceIdentifier.API_GATEWAY,
    ) -> dict[str, str]:
        """
        Get SigV4-signed headers for a request sent by other means.

        Args:
            url: The request URL
            body: The request body
            method: HTTP method
            service: Service identifier to sign for

        Returns:
            Dictionary of signed headers
        """
        request = build_request(method, url, body)
        SigV4Auth(
            region=self.region,
            service=service.value,
            credentials=self.credentials,
            profile_name=self.profile_name,
        ).sign(request)
        return request.headers

    def verify_credentials(self) -> bool:
        """
        Verify that the credentials resolve and are accepted by STS.

        Returns:
            True if credentials are valid, False otherwise
        """
        try:
            credentials = resolve_credentials(self.credentials, self.profile_name)
        except SigningError as e:
            logger.debug("Credential resolution failed: %s", e)
            return False

        sts = boto3.client(
            "sts",
            region_name=self.region,
            aws_access_key_id=credentials.access_key,
            aws_secret_access_key=credentials.secret_key,
            aws_session_token=credentials.session_token,
        )
        try:
            sts.get_caller_identity()
            return True
        except (BotoCoreError, ClientError) as e:
            logger.debug("STS rejected credentials: %s", e)
            return False


def create_client(
    region: Optional[str] = None,
    credentials: CredentialSource = None,
    **kwargs,
) -> IAMSignedClient:
    """
    Factory function to create a client.

    Args:
        region: AWS region
        credentials: Credential source
        **kwargs: Additional configuration options

    Returns:
        Configured IAMSignedClient instance
    """
    return IAMSignedClient(region=region, credentials=credentials, **kwargs)
