"""
Authentication utilities for iam_signed.

This module provides IAM SigV4 signing and credential resolution.
"""

from .sigv4 import (
    AWSCredentials,
    SigV4Auth,
    create_sigv4_headers,
    get_aws_credentials,
    resolve_credentials,
)

__all__ = [
    "AWSCredentials",
    "SigV4Auth",
    "create_sigv4_headers",
    "get_aws_credentials",
    "resolve_credentials",
]
