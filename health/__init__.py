"""
Health checks for the telemetry endpoint.

Reports liveness of the process and readiness of the relational store
and the device cache, with response times per dependency.
"""

from health.service import (
    HealthCheckService,
    HealthStatus,
    DependencyHealth,
)

__all__ = [
    "HealthCheckService",
    "HealthStatus",
    "DependencyHealth",
]
