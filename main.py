import asyncio
import logging

from infirmary_core.api_gateway.dependencies import register_engine
from infirmary_core.api_gateway.service import APIGatewayService
from infirmary_core.config import settings
from infirmary_core.database.redis import redis_client
from infirmary_core.database.session import async_session_maker, engine as db_engine
from infirmary_core.escalation.service import EscalationService
from infirmary_core.incidents.cache import RedisCacheInvalidator
from infirmary_core.incidents.codes import IncidentCodeGenerator
from infirmary_core.incidents.directory import SqlConditionRegistry, SqlStaffDirectory
from infirmary_core.incidents.engine import IncidentEngine
from infirmary_core.incidents.repository import SqlIncidentRepository
from infirmary_core.logger import setup_logging
from infirmary_core.messaging.nats_client import nats_client
from infirmary_core.notifier.channels import NatsNotificationChannel
from infirmary_core.notifier.dispatcher import NotificationDispatcher
from infirmary_core.notifier.reporter import NatsFailureReporter
from infirmary_core.service_manager.service_manager import ServiceManager

setup_logging()
logger = logging.getLogger("infirmary")


async def main():
    """
    Main entry point for Infirmary Core.
    Wires the incident engine and starts the API and escalation services.
    """
    logger.info(f"Starting Infirmary Core ({settings.ENVIRONMENT})...")

    try:
        await nats_client.connect()
    except Exception as e:
        # Transitions still commit; notifications fail and get reported until NATS is back
        logger.error(f"Failed to connect to NATS during startup: {e}")

    # ----------------------------------------------------------------
    # Build collaborators (dependencies before dependents)
    # ----------------------------------------------------------------
    repository = SqlIncidentRepository(async_session_maker)
    directory = SqlStaffDirectory(async_session_maker)
    dispatcher = NotificationDispatcher(
        channel=NatsNotificationChannel(nats_client, settings.NOTIFICATION_SUBJECT_PREFIX),
        directory=directory,
        reporter=NatsFailureReporter(nats_client, settings.OBSERVABILITY_SUBJECT),
    )
    incident_engine = IncidentEngine(
        repository=repository,
        conditions=SqlConditionRegistry(async_session_maker),
        directory=directory,
        dispatcher=dispatcher,
        codes=IncidentCodeGenerator(repository, settings.INCIDENT_CODE_PREFIX),
        cache=RedisCacheInvalidator(redis_client, settings.CACHE_PREFIXES),
    )
    register_engine(incident_engine)

    service_manager = ServiceManager()
    service_manager.register(APIGatewayService())
    service_manager.register(EscalationService(repository, dispatcher))

    await service_manager.start_all()

    try:
        # Keep the main loop running
        while True:
            await asyncio.sleep(1)
    except asyncio.CancelledError:
        logger.info("Infirmary Core shutting down...")
        await service_manager.stop_all()
        await nats_client.close()
        await redis_client.aclose()
        await db_engine.dispose()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Infirmary Core stopped by user.")
