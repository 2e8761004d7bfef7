"""
CloudWatch metrics for signed deliveries.

Metrics are published with the Embedded Metric Format (EMF): a JSON line on
stdout that CloudWatch Logs turns into metrics, so no PutMetricData calls are
made. Since this writes to stdout, emission is off unless
IAM_SIGNED_METRICS_ENABLED=true or the emitter is built with enabled=True.
"""

import json
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .config import config


class MetricUnit(str, Enum):
    """CloudWatch metric units."""
    COUNT = "Count"
    MILLISECONDS = "Milliseconds"
    BYTES = "Bytes"
    NONE = "None"


class DeliveryMetricName(str, Enum):
    """Metric names for signed deliveries."""
    REQUEST_COUNT = "SignedRequestCount"
    REQUEST_SUCCESS = "SignedRequestSuccess"
    REQUEST_FAILURE = "SignedRequestFailure"
    REQUEST_LATENCY = "SignedRequestLatency"
    RESPONSE_BYTES = "SignedResponseBytes"
    GRAPHQL_ERROR_COUNT = "GraphQLErrorCount"


@dataclass
class MetricDimensions:
    """Dimensions for CloudWatch metrics."""
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))
    service: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary, excluding None values."""
        result = {"Environment": self.environment}
        if self.service:
            result["Service"] = self.service
        if self.error_type:
            result["ErrorType"] = self.error_type
        return result


class MetricsEmitter:
    """
    CloudWatch metrics emitter using Embedded Metric Format (EMF).

    EMF allows publishing metrics by simply logging JSON in a specific format.
    CloudWatch automatically extracts metrics from these logs.
    """

    NAMESPACE = "IAMSigned"

    def __init__(self, service_name: str = "iam-signed", enabled: Optional[bool] = None):
        """
        Initialize the metrics emitter.

        Args:
            service_name: Service name for metric attribution
            enabled: Whether to emit at all (defaults to config.metrics_enabled)
        """
        self.service_name = service_name
        self.enabled = config.metrics_enabled if enabled is None else enabled

    def _create_emf_log(
        self,
        metrics: dict[str, tuple[float, MetricUnit]],
        dimensions: Optional[MetricDimensions] = None,
        properties: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        dim_dict = (dimensions or MetricDimensions()).to_dict()

        emf_log: dict[str, Any] = {
            "_aws": {
                "Timestamp": int(time.time() * 1000),
                "CloudWatchMetrics": [
                    {
                        "Namespace": self.NAMESPACE,
                        "Dimensions": [list(dim_dict.keys())],
                        "Metrics": [
                            {"Name": name, "Unit": unit.value}
                            for name, (_, unit) in metrics.items()
                        ],
                    }
                ],
            },
            "service": self.service_name,
            **dim_dict,
        }

        for name, (value, _) in metrics.items():
            emf_log[name] = value

        if properties:
            emf_log.update(properties)

        return emf_log

    def emit_multiple(
        self,
        metrics: dict[DeliveryMetricName, tuple[float, MetricUnit]],
        dimensions: Optional[MetricDimensions] = None,
        properties: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Emit multiple metrics in a single log entry.

        Args:
            metrics: Dictionary of metric name to (value, unit) tuples
            dimensions: Optional custom dimensions
            properties: Additional properties to log
        """
        if not self.enabled:
            return
        metrics_dict = {name.value: value_unit for name, value_unit in metrics.items()}
        emf_log = self._create_emf_log(metrics_dict, dimensions, properties)
        # Print to stdout for CloudWatch to pick up
        print(json.dumps(emf_log))

    def record_delivery(
        self,
        service: Optional[str],
        latency_ms: float,
        status_code: Optional[int] = None,
        response_bytes: Optional[int] = None,
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record one signed delivery.

        Args:
            service: AWS service identifier used for signing
            latency_ms: Round-trip latency in milliseconds
            status_code: HTTP status code, if a response was received
            response_bytes: Size of the response body
            error_type: Name of the error raised, if the delivery failed
        """
        dims = MetricDimensions(service=service, error_type=error_type)

        metrics: dict[DeliveryMetricName, tuple[float, MetricUnit]] = {
            DeliveryMetricName.REQUEST_COUNT: (1, MetricUnit.COUNT),
            DeliveryMetricName.REQUEST_LATENCY: (latency_ms, MetricUnit.MILLISECONDS),
        }
        if error_type is None:
            metrics[DeliveryMetricName.REQUEST_SUCCESS] = (1, MetricUnit.COUNT)
        else:
            metrics[DeliveryMetricName.REQUEST_FAILURE] = (1, MetricUnit.COUNT)
        if response_bytes is not None:
            metrics[DeliveryMetricName.RESPONSE_BYTES] = (response_bytes, MetricUnit.BYTES)

        properties: dict[str, Any] = {}
        if status_code is not None:
            properties["statusCode"] = status_code

        self.emit_multiple(metrics, dims, properties)

    def record_graphql_errors(self, error_count: int) -> None:
        """Record GraphQL errors returned inside a 200 response."""
        self.emit_multiple(
            {DeliveryMetricName.GRAPHQL_ERROR_COUNT: (error_count, MetricUnit.COUNT)},
            MetricDimensions(service="appsync"),
        )


# Global metrics emitter instance
_metrics_emitter: Optional[MetricsEmitter] = None


def get_metrics_emitter() -> MetricsEmitter:
    """Get the global metrics emitter instance."""
    global _metrics_emitter
    if _metrics_emitter is None:
        _metrics_emitter = MetricsEmitter()
    return _metrics_emitter


def init_metrics(service_name: str = "iam-signed", enabled: Optional[bool] = None) -> MetricsEmitter:
    """
    Initialize the global metrics emitter.

    Args:
        service_name: Service name for metric attribution
        enabled: Whether to emit at all (defaults to config.metrics_enabled)

    Returns:
        Configured MetricsEmitter instance
    """
    global _metrics_emitter
    _metrics_emitter = MetricsEmitter(service_name, enabled)
    return _metrics_emitter
