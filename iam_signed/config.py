"""Configuration for the iam_signed client."""

import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str) -> bool:
    return os.getenv(name, "").lower() == "true"


@dataclass
class ClientConfig:
    """Configuration for signed AppSync / API Gateway calls."""

    # Default AWS region when a call does not name one
    aws_region: str = "us-west-2"

    # HTTP timeouts applied to every delivery
    timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0

    # How much of a response body is kept on errors for diagnosis
    body_snippet_length: int = 1024

    # CloudWatch EMF metrics are printed to stdout, so they are opt-in
    metrics_enabled: bool = False

    # OpenTelemetry configuration
    otel_endpoint: str = ""
    otel_console_export: bool = False

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Load configuration from environment variables."""
        return cls(
            aws_region=os.getenv("AWS_REGION", cls.aws_region),
            timeout_seconds=float(
                os.getenv("IAM_SIGNED_TIMEOUT_SECONDS", cls.timeout_seconds)
            ),
            connect_timeout_seconds=float(
                os.getenv("IAM_SIGNED_CONNECT_TIMEOUT_SECONDS", cls.connect_timeout_seconds)
            ),
            body_snippet_length=int(
                os.getenv("IAM_SIGNED_BODY_SNIPPET_LENGTH", cls.body_snippet_length)
            ),
            metrics_enabled=_env_bool("IAM_SIGNED_METRICS_ENABLED"),
            otel_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", ""),
            otel_console_export=_env_bool("OTEL_CONSOLE_EXPORT"),
        )


# Global config instance
config = ClientConfig.from_env()
