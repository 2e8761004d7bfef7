"""
Test mocks for the iam_signed test suite.

Available Mocks:
- AWSEndpointMock: AppSync / API Gateway endpoint served by httpx.MockTransport
- AWSEndpointMockConfig: URLs and region used by the mock
"""

from .endpoint_mock import AWSEndpointMock, AWSEndpointMockConfig, MockResponse

__all__ = [
    "AWSEndpointMock",
    "AWSEndpointMockConfig",
    "MockResponse",
]
