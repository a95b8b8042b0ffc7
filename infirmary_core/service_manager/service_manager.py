import logging
from typing import List, Protocol

logger = logging.getLogger("infirmary.service-manager")


class Service(Protocol):
    async def start(self):
        ...

    async def stop(self):
        ...

    @property
    def name(self) -> str:
        ...


class ServiceManager:
    """
    Starts registered services in order and stops them in reverse.
    A service that fails to start aborts startup; a failing stop is logged
    and the remaining services are still stopped.
    """
    def __init__(self):
        self.services: List[Service] = []
        self.started: List[Service] = []

    def register(self, service: Service):
        self.services.append(service)
        logger.info(f"Registered service: {service.name}")

    async def start_all(self):
        logger.info("Starting all services...")
        for service in self.services:
            try:
                logger.info(f"Starting {service.name}...")
                await service.start()
                self.started.append(service)
                logger.info(f"Started {service.name}")
            except Exception as e:
                logger.error(f"Failed to start {service.name}: {e}")
                raise

    async def stop_all(self):
        logger.info("Stopping all services...")
        for service in reversed(self.started):
            try:
                logger.info(f"Stopping {service.name}...")
                await service.stop()
                logger.info(f"Stopped {service.name}")
            except Exception as e:
                logger.error(f"Failed to stop {service.name}: {e}")
        self.started.clear()
