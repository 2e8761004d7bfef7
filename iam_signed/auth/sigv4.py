"""
AWS SigV4 request signing for AppSync and API Gateway.

This module signs outbound requests with IAM Signature Version 4 (SigV4).
Credentials are resolved at signing time, so expiring credentials are
refreshed (or rejected) on every call rather than once per client.

Usage:
    from iam_signed.auth import SigV4Auth, AWSCredentials
    from iam_signed.request import build_request

    request = build_request("POST", "https://example.appsync-api.us-west-2.amazonaws.com/graphql", payload)

    auth = SigV4Auth(region="us-west-2", service="appsync")
    auth.sign(request)

    # Or just the headers, for a request sent by other means
    headers = auth.sign_request(
        method="POST",
        url="https://abc123.execute-api.us-west-2.amazonaws.com/prod/items",
        headers={"Content-Type": "application/json"},
        body=json.dumps({"name": "item"}),
    )
"""

import datetime
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union
from urllib.parse import parse_qsl, quote, urlsplit

import boto3

from ..exceptions import SigningError
from ..request import OutboundRequest

logger = logging.getLogger(__name__)

# Headers added by proxies or the HTTP client after signing must not be signed
UNSIGNED_HEADERS = frozenset({"authorization", "user-agent", "expect", "x-amzn-trace-id"})


@dataclass
class AWSCredentials:
    """
    AWS credentials for SigV4 signing.

    ``refresh`` is an optional zero-argument callable returning fresh
    credentials. It is called when the credentials are expired or carry no
    key material. The instance itself is never mutated.
    """
    access_key: str
    secret_key: str
    session_token: Optional[str] = None
    expiry: Optional[datetime.datetime] = None
    refresh: Optional[Callable[[], "AWSCredentials"]] = None

    def is_expired(self, now: Optional[datetime.datetime] = None) -> bool:
        if self.expiry is None:
            return False
        now = now or datetime.datetime.now(datetime.timezone.utc)
        expiry = self.expiry
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=datetime.timezone.utc)
        return expiry <= now


# Anything botocore hands out (Credentials, RefreshableCredentials, ...) works
CredentialSource = Union[AWSCredentials, Any, None]


def get_aws_credentials(profile_name: Optional[str] = None) -> AWSCredentials:
    """
    Get AWS credentials from the environment or profile.

    Args:
        profile_name: Optional AWS profile name to use

    Returns:
        AWSCredentials object with access key, secret key, and optional session token

    Raises:
        SigningError: If credentials cannot be obtained
    """
    try:
        if profile_name:
            session = boto3.Session(profile_name=profile_name)
        else:
            session = boto3.Session()

        credentials = session.get_credentials()
    except Exception as e:
        raise SigningError(f"Failed to get AWS credentials: {e}") from e

    if credentials is None:
        raise SigningError("No AWS credentials found")

    return _freeze_botocore_credentials(credentials)


def _freeze_botocore_credentials(credentials: Any) -> AWSCredentials:
    # get_frozen_credentials() triggers a refresh on RefreshableCredentials
    try:
        frozen = credentials.get_frozen_credentials()
    except Exception as e:
        raise SigningError(f"Failed to get AWS credentials: {e}") from e

    return AWSCredentials(
        access_key=frozen.access_key,
        secret_key=frozen.secret_key,
        session_token=frozen.token,
    )


def resolve_credentials(
    source: CredentialSource,
    profile_name: Optional[str] = None,
) -> AWSCredentials:
    """
    Turn a credential source into key material usable for one signature.

    Args:
        source: AWSCredentials, a botocore credentials object, or None for
            the boto3 default provider chain
        profile_name: Profile used when source is None

    Returns:
        AWSCredentials with non-empty access and secret keys

    Raises:
        SigningError: If the credentials are missing, expired without a way
            to refresh them, or the refresh fails
    """
    if source is None:
        resolved = get_aws_credentials(profile_name)
    elif isinstance(source, AWSCredentials):
        resolved = source
        if resolved.is_expired() or not (resolved.access_key and resolved.secret_key):
            if resolved.refresh is None:
                raise SigningError("AWS credentials are expired or incomplete and cannot be refreshed")
            logger.debug("Refreshing AWS credentials")
            try:
                resolved = resolved.refresh()
            except Exception as e:
                raise SigningError(f"Failed to refresh AWS credentials: {e}") from e
            if not isinstance(resolved, AWSCredentials):
                raise SigningError("Credential refresh did not return AWSCredentials")
            if resolved.is_expired():
                raise SigningError("Refreshed AWS credentials are already expired")
    elif hasattr(source, "get_frozen_credentials"):
        resolved = _freeze_botocore_credentials(source)
    else:
        raise SigningError(f"Unsupported credentials type: {type(source).__name__}")

    if not resolved.access_key or not resolved.secret_key:
        raise SigningError("AWS credentials are missing an access key or secret key")
    return resolved


class SigV4Auth:
    """
    AWS Signature Version 4 authentication handler.

    Attributes:
        region: AWS region (e.g., "us-west-2")
        service: AWS service name ("appsync" or "execute-api")
        credentials: Credential source, resolved on every signature
    """

    ALGORITHM = "AWS4-HMAC-SHA256"

    def __init__(
        self,
        region: str,
        service: str = "execute-api",
        credentials: CredentialSource = None,
        profile_name: Optional[str] = None,
    ):
        """
        Initialize SigV4Auth.

        Args:
            region: AWS region
            service: AWS service name
            credentials: Optional credentials (default provider chain if omitted)
            profile_name: Optional AWS profile name
        """
        self.region = region
        self.service = str(getattr(service, "value", service))
        self.credentials = credentials
        self.profile_name = profile_name

    def _sign(self, key: bytes, msg: str) -> bytes:
        """Create HMAC-SHA256 signature."""
        return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()

    def _get_signature_key(self, secret_key: str, date_stamp: str) -> bytes:
        """
        Derive the signing key for SigV4.

        Args:
            secret_key: AWS secret access key
            date_stamp: Date in YYYYMMDD format

        Returns:
            Derived signing key
        """
        k_date = self._sign(f"AWS4{secret_key}".encode("utf-8"), date_stamp)
        k_region = self._sign(k_date, self.region)
        k_service = self._sign(k_region, self.service)
        return self._sign(k_service, "aws4_request")

    def _hash_payload(self, payload: Union[bytes, str]) -> str:
        """Create SHA256 hash of the payload."""
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        return hashlib.sha256(payload).hexdigest()

    def _credential_scope(self, date_stamp: str) -> str:
        return f"{date_stamp}/{self.region}/{self.service}/aws4_request"

    @staticmethod
    def _canonical_uri(path: str) -> str:
        return quote(path or "/", safe="/~")

    @staticmethod
    def _canonical_query(query: str) -> str:
        # Parsed then re-encoded so "a=b c", "a=b+c" and "a=b%20c" sign alike
        params = [
            (quote(key, safe="-_.~"), quote(value, safe="-_.~"))
            for key, value in parse_qsl(query, keep_blank_values=True)
        ]
        return "&".join(f"{key}={value}" for key, value in sorted(params))

    @staticmethod
    def _canonical_header_value(value: str) -> str:
        return " ".join(str(value).split())

    def _create_canonical_request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        signed_headers: str,
        payload_hash: str,
    ) -> str:
        """
        Create the canonical request string for SigV4.

        Args:
            method: HTTP method
            url: Request URL
            headers: Request headers keyed by lower-case name
            signed_headers: Semicolon-separated list of signed header names
            payload_hash: SHA256 hash of the request payload

        Returns:
            Canonical request string
        """
        parsed = urlsplit(url)

        canonical_headers = "".join(
            f"{name}:{self._canonical_header_value(headers[name])}\n"
            for name in signed_headers.split(";")
        )

        return "\n".join([
            method.upper(),
            self._canonical_uri(parsed.path),
            self._canonical_query(parsed.query),
            canonical_headers,
            signed_headers,
            payload_hash,
        ])

    def _create_string_to_sign(
        self,
        amz_date: str,
        date_stamp: str,
        canonical_request: str,
    ) -> str:
        """
        Create the string to sign for SigV4.

        Args:
            amz_date: Timestamp in ISO 8601 basic format
            date_stamp: Date in YYYYMMDD format
            canonical_request: The canonical request string

        Returns:
            String to sign
        """
        return "\n".join([
            self.ALGORITHM,
            amz_date,
            self._credential_scope(date_stamp),
            hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
        ])

    def resolve_credentials(self) -> AWSCredentials:
        return resolve_credentials(self.credentials, self.profile_name)

    def sign(self, request: OutboundRequest) -> OutboundRequest:
        """
        Sign a request in place.

        Adds Host, X-Amz-Date, X-Amz-Content-Sha256, X-Amz-Security-Token
        (temporary credentials only) and Authorization headers. Every header
        already on the request is signed.

        Args:
            request: A request that has not been signed yet

        Returns:
            The same request, for chaining

        Raises:
            SigningError: If the request was already signed or credentials
                cannot be resolved
        """
        if request.signed:
            raise SigningError("failed to sign the request: request is already signed")

        credentials = self.resolve_credentials()

        t = datetime.datetime.now(datetime.timezone.utc)
        amz_date = t.strftime("%Y%m%dT%H%M%SZ")
        date_stamp = t.strftime("%Y%m%d")

        logger.debug(
            "Signing %s %s for %s in %s", request.method, request.url, self.service, self.region
        )

        request.set_header("Host", request.host)
        request.set_header("X-Amz-Date", amz_date)
        if credentials.session_token:
            request.set_header("X-Amz-Security-Token", credentials.session_token)

        payload_hash = self._hash_payload(request.body)
        request.set_header("X-Amz-Content-Sha256", payload_hash)

        headers = {
            name.lower(): value
            for name, value in request.headers.items()
            if name.lower() not in UNSIGNED_HEADERS
        }
        signed_headers = ";".join(sorted(headers))

        canonical_request = self._create_canonical_request(
            method=request.method,
            url=request.url,
            headers=headers,
            signed_headers=signed_headers,
            payload_hash=payload_hash,
        )

        string_to_sign = self._create_string_to_sign(
            amz_date=amz_date,
            date_stamp=date_stamp,
            canonical_request=canonical_request,
        )

        signing_key = self._get_signature_key(credentials.secret_key, date_stamp)
        signature = hmac.new(
            signing_key,
            string_to_sign.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

        request.set_header(
            "Authorization",
            f"{self.ALGORITHM} "
            f"Credential={credentials.access_key}/{self._credential_scope(date_stamp)}, "
            f"SignedHeaders={signed_headers}, "
            f"Signature={signature}",
        )
        request.signed = True
        return request

    def sign_request(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        body: Union[bytes, str] = "",
    ) -> dict[str, str]:
        """
        Sign an HTTP request using AWS SigV4.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Full request URL
            headers: Optional existing headers to include
            body: Request body (empty for GET requests)

        Returns:
            Dictionary of headers including the Authorization header
        """
        request = OutboundRequest(
            method=method.upper(),
            url=url,
            body=body.encode("utf-8") if isinstance(body, str) else bytes(body),
            headers=dict(headers) if headers else {},
        )
        return self.sign(request).headers


def create_sigv4_headers(
    method: str,
    url: str,
    region: str,
    body: Union[bytes, str] = "",
    service: str = "execute-api",
    headers: Optional[dict[str, str]] = None,
    credentials: CredentialSource = None,
    profile_name: Optional[str] = None,
) -> dict[str, str]:
    """
    Convenience function to create SigV4-signed headers.

    Args:
        method: HTTP method
        url: Request URL
        region: AWS region
        body: Request body
        service: AWS service name
        headers: Optional existing headers
        credentials: Optional credentials (default provider chain if omitted)
        profile_name: Optional AWS profile name

    Returns:
        Dictionary of signed headers
    """
    auth = SigV4Auth(
        region=region,
        service=service,
        credentials=credentials,
        profile_name=profile_name,
    )
    return auth.sign_request(
        method=method,
        url=url,
        headers=headers,
        body=body,
    )
