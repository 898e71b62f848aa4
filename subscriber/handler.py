"""
Bridge from MQTT messages to the ingestion pipeline.

paho delivers messages on its network thread; each one is handed to the
application event loop and the thread waits, up to a deadline, for the
pipeline to finish. There is no reply channel, so every outcome is only
logged.
"""

import asyncio
import concurrent.futures
import logging
import uuid
from typing import Optional

from errors.exceptions import AppException
from ingestion.models import IngestionResult
from ingestion.service import TelemetryIngestionService
from middleware.rate_limiter import MQTT_CLIENT_IDENTITY, mqtt_admission_identity
from telemetry.service import set_request_id

logger = logging.getLogger(__name__)


class TelemetryMessageHandler:
    """
    Runs MQTT payloads through admission, validation and the pipeline.

    Admission is keyed by topic; the audit trail records every broker
    report under MQTT_CLIENT_IDENTITY.
    """

    def __init__(
        self,
        service: TelemetryIngestionService,
        loop: asyncio.AbstractEventLoop,
        timeout: float = 30.0
    ):
        self.service = service
        self.loop = loop
        self.timeout = timeout

    async def handle(self, payload: bytes, topic: str = "") -> Optional[IngestionResult]:
        """
        Process one MQTT payload on the event loop.

        Returns:
            The IngestionResult, or None if the report was not stored
        """
        set_request_id(f"mqtt-{uuid.uuid4()}")

        try:
            await self.service.admit(mqtt_admission_identity(topic))
            result = await self.service.ingest(payload, MQTT_CLIENT_IDENTITY)
        except AppException as e:
            log = logger.error if e.status_code >= 500 else logger.warning
            log(
                f"MQTT report rejected ({e.error_code.value}): {e.message}",
                extra={"extra_data": {"topic": topic, "details": e.details}}
            )
            return None
        except Exception as e:
            logger.error(
                f"Unexpected error processing MQTT report: {e}",
                exc_info=True,
                extra={"extra_data": {"topic": topic}}
            )
            return None

        logger.info(
            f"MQTT telemetry processed for device {result.identificador}",
            extra={"extra_data": {"topic": topic, "id_medicion": result.id_medicion}}
        )
        return result

    def on_payload(self, payload: bytes, topic: str) -> None:
        """Callback for MqttSubscriber; runs on the paho network thread."""
        future = asyncio.run_coroutine_threadsafe(self.handle(payload, topic), self.loop)
        try:
            future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.error(
                f"MQTT report processing exceeded {self.timeout} seconds",
                extra={"extra_data": {"topic": topic}}
            )
