import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cache.redis_cache import RedisDeviceCache
from cache.store import DeviceCache
from config.settings import Settings, get_settings, validate_startup
from errors.handlers import register_exception_handlers
from health.service import HealthCheckService, utc_timestamp
from ingestion.service import TelemetryIngestionService
from middleware.access_log import AccessLogMiddleware
from middleware.rate_limiter import AdmissionController, create_admission_controller, get_client_ip
from middleware.request_id import RequestIDMiddleware
from storage.repository import DeviceRepository
from storage.sql_repository import SqlDeviceRepository
from subscriber.client import MqttSubscriber
from subscriber.handler import TelemetryMessageHandler
from telemetry.audit import AuditLogger
from telemetry.service import initialize_telemetry

logger = logging.getLogger(__name__)

SERVICE_NAME = "Telemetry Endpoint"
SERVICE_VERSION = "1.0.0"


def _start_subscriber(settings: Settings, service: TelemetryIngestionService) -> MqttSubscriber:
    handler = TelemetryMessageHandler(
        service,
        loop=asyncio.get_running_loop(),
        timeout=settings.mqtt_message_timeout_seconds
    )
    return MqttSubscriber(
        broker_url=settings.mqtt_broker_url,
        client_id=settings.mqtt_client_id,
        topic=settings.mqtt_topic,
        on_payload=handler.on_payload,
        qos=settings.mqtt_qos,
        username=settings.mqtt_username,
        password=settings.mqtt_password,
        clean_session=settings.mqtt_clean_session,
    )


def create_app(
    settings: Optional[Settings] = None,
    repository: Optional[DeviceRepository] = None,
    cache: Optional[DeviceCache] = None,
    admission: Optional[AdmissionController] = None,
    audit: Optional[AuditLogger] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Collaborators that are not passed in are built from settings. Nothing
    connects until the lifespan starts.
    """
    settings = settings or get_settings()
    repository = repository or SqlDeviceRepository(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_recycle=settings.database_pool_recycle_seconds,
    )
    cache = cache or RedisDeviceCache(
        settings.redis_url,
        default_ttl=settings.cache_ttl,
        max_connections=settings.redis_pool_size,
    )
    admission = admission or create_admission_controller(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Connect the stores, start the idle sweep and the MQTT subscriber."""
        telemetry = initialize_telemetry(settings)
        audit_logger = audit or AuditLogger(
            settings.log_dir,
            settings.invalid_log_file,
            settings.device_log_dir,
        )

        logger.info("Starting telemetry endpoint...")
        await repository.connect()
        await cache.connect()

        # An unreachable store is reported by /health/ready rather than failing startup
        if not await repository.ping():
            logger.error("Database is not reachable at startup")
        if not await cache.ping():
            logger.warning("Cache is not reachable at startup; running on database lookups")

        service = TelemetryIngestionService(
            repository=repository,
            cache=cache,
            admission=admission,
            audit=audit_logger,
            telemetry=telemetry,
            storage_timeout=settings.storage_timeout_seconds,
        )
        app.state.ingestion_service = service
        app.state.health_check_service = HealthCheckService(
            repository=repository,
            cache=cache,
            check_timeout=settings.storage_timeout_seconds,
        )
        admission.start()

        subscriber = None
        if settings.mqtt_enabled:
            subscriber = _start_subscriber(settings, service)
            await asyncio.to_thread(subscriber.connect)
        else:
            logger.info("MQTT is disabled")

        yield

        logger.info("Shutting down telemetry endpoint...")
        if subscriber is not None:
            # loop_stop joins the paho thread, which may be waiting on this loop
            await asyncio.to_thread(subscriber.disconnect)
        await admission.stop()
        await cache.close()
        await repository.close()
        audit_logger.close()
        logger.info("Shutdown complete")

    app = FastAPI(title=SERVICE_NAME, version=SERVICE_VERSION, lifespan=lifespan)

    register_exception_handlers(app)

    # Added last so it wraps the access log and every log line gets the ID
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.post("/telemetry")
    async def receive_telemetry(request: Request):
        """
        Receive a telemetry report from a device.

        The client is admitted before the body is read, so throttled
        clients never have their payload parsed.

        Returns:
            dict: Success response with the stored measurement

        Raises:
            AppException: 429 rate limited, 400 validation error, 404 unknown
                device, 500 device lookup or measurement insert failed
        """
        service: TelemetryIngestionService = request.app.state.ingestion_service
        client = get_client_ip(request)

        await service.admit(client)
        body = await request.body()
        result = await service.ingest(body, client)

        return {
            "status": "success",
            "message": "Telemetry data processed successfully",
            "data": result.model_dump(),
        }

    @app.get("/health")
    async def health_basic():
        """Returns 200 OK when the service is accepting requests."""
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "timestamp": utc_timestamp(),
        }

    @app.get("/health/live")
    async def health_live(request: Request):
        result = await request.app.state.health_check_service.check_liveness()
        return {
            "status": result["status"],
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "timestamp": result["timestamp"]
        }

    @app.get("/health/ready")
    async def health_ready(request: Request):
        """
        Readiness check with dependency verification.

        Returns:
            JSONResponse: 200 when healthy or degraded (cache down),
            503 when the database is unavailable
        """
        health_status = await request.app.state.health_check_service.check_readiness()
        response_data = {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            **health_status.to_dict(),
        }

        if health_status.status == "unhealthy":
            response_data["failure_reasons"] = [
                {"dependency": dep.name, "error": dep.error}
                for dep in health_status.dependencies if not dep.healthy
            ]
            return JSONResponse(status_code=503, content=response_data)

        return response_data

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    validate_startup()
    settings = get_settings()
    uvicorn.run(app, host=settings.server_host, port=settings.server_port, log_level="info")
