"""
MQTT ingress for telemetry reports.
"""

from subscriber.client import MqttSubscriber, parse_broker_url
from subscriber.handler import TelemetryMessageHandler

__all__ = ["MqttSubscriber", "parse_broker_url", "TelemetryMessageHandler"]
