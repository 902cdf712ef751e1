"""
Service Container

Builds every long-lived collaborator once (engines, hub, publisher,
notification service, dispatcher, inventory services, handlers) and tears
them down in reverse order. The API process and the worker CLI each own one
container; nothing is a module-level singleton.
"""

import logging
from typing import Dict, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.core.clock import Clock, utcnow
from app.core.config import RealtimeBackend, Settings
from app.database import create_engine, create_session_factory, init_db
from app.jobs.dispatcher import JobDispatcher
from app.jobs.handlers import JobHandler, build_handlers
from app.jobs.payloads import JobCategory
from app.jobs.pool import WorkerSupervisor, build_pools
from app.realtime.events import EventPublisher, LocalEventPublisher, RealtimeNotifier
from app.realtime.hub import BroadcastHub
from app.realtime.redis_bridge import RedisEventPublisher, RedisEventRelay
from app.services.inventory import InventoryDeductionEngine, InventoryScanner
from app.services.maintenance import MaintenanceService
from app.services.notifications import (
    BaseNotificationService,
    EmailRenderer,
    create_notification_service,
)
from app.services.reports import ReportWriter

logger = logging.getLogger(__name__)


class ServiceContainer:
    def __init__(
        self,
        settings: Settings,
        engine: AsyncEngine,
        queue_engine: AsyncEngine,
        notifications: BaseNotificationService,
        publisher: EventPublisher,
        hub: BroadcastHub,
        relay: Optional[RedisEventRelay] = None,
        clock: Clock = utcnow,
    ):
        self.settings = settings
        self.engine = engine
        self.queue_engine = queue_engine
        self.session_factory: async_sessionmaker[AsyncSession] = create_session_factory(engine)
        self.queue_session_factory: async_sessionmaker[AsyncSession] = (
            self.session_factory if queue_engine is engine else create_session_factory(queue_engine)
        )
        self.clock = clock

        self.hub = hub
        self.publisher = publisher
        self.relay = relay
        self.notifier = RealtimeNotifier(publisher)
        self.notifications = notifications

        self.dispatcher = JobDispatcher(self.queue_session_factory, settings, clock=clock)
        self.scanner = InventoryScanner(
            self.session_factory,
            self.notifier,
            expiry_threshold_days=settings.expiry_threshold_days,
            clock=clock,
        )
        self.deduction = InventoryDeductionEngine(
            self.session_factory,
            self.notifier,
            self.scanner,
            backorder_policy=settings.inventory_backorder_policy,
            clock=clock,
        )
        self.reports = ReportWriter(
            self.session_factory,
            settings.report_directory,
            lock_timeout=settings.report_lock_timeout,
            clock=clock,
        )
        self.maintenance = MaintenanceService(
            self.session_factory,
            self.dispatcher,
            restaurant_name=settings.restaurant_name,
            reminder_window_hours=settings.reminder_window_hours,
            clock=clock,
        )
        self.handlers: Dict[JobCategory, JobHandler] = build_handlers(
            notifications=notifications,
            renderer=EmailRenderer(settings.restaurant_name, settings.app_base_url),
            default_country_code=settings.default_country_code,
            engine=self.deduction,
            scanner=self.scanner,
            writer=self.reports,
            maintenance=self.maintenance,
            dispatcher=self.dispatcher,
        )
        self.supervisor: Optional[WorkerSupervisor] = None

    @classmethod
    async def build(
        cls,
        settings: Settings,
        notifications: Optional[BaseNotificationService] = None,
        publisher: Optional[EventPublisher] = None,
        serve_hub: bool = True,
        create_tables: bool = True,
        clock: Clock = utcnow,
    ) -> "ServiceContainer":
        """
        Args:
            settings: Application settings
            notifications: Override the ENV_MODE-selected notification service
            publisher: Override the realtime publisher
            serve_hub: This process serves WebSockets (relay Redis events into the hub)
            create_tables: Run ``create_all`` on both stores
        """
        engine = create_engine(settings.database_url, echo=settings.database_echo)
        if settings.effective_queue_database_url == settings.database_url:
            queue_engine = engine
        else:
            queue_engine = create_engine(settings.effective_queue_database_url, echo=settings.database_echo)

        if create_tables:
            await init_db(engine)
            if queue_engine is not engine:
                await init_db(queue_engine)

        hub = BroadcastHub(outbox_size=settings.hub_outbox_size)
        relay = None
        if publisher is None:
            if settings.realtime_backend == RealtimeBackend.REDIS:
                publisher = RedisEventPublisher.from_url(settings.redis_url, settings.realtime_channel)
                if serve_hub:
                    relay = RedisEventRelay(settings.redis_url, settings.realtime_channel, hub)
                    relay.start()
            else:
                publisher = LocalEventPublisher(hub)

        container = cls(
            settings,
            engine,
            queue_engine,
            notifications or create_notification_service(settings),
            publisher,
            hub,
            relay=relay,
            clock=clock,
        )
        logger.info(
            f"✅ Services ready (notifications={container.notifications.provider_name}, "
            f"realtime={settings.realtime_backend.value})"
        )
        return container

    def start_workers(self, categories: Optional[Iterable[str]] = None) -> WorkerSupervisor:
        pools = build_pools(self.settings, self.dispatcher, self.handlers, categories)
        self.supervisor = WorkerSupervisor(
            pools,
            self.dispatcher,
            stall_check_seconds=self.settings.queue_stall_check_seconds,
        )
        self.supervisor.start()
        return self.supervisor

    async def shutdown(self, drain_timeout: Optional[float] = None) -> None:
        if self.supervisor is not None:
            await self.supervisor.drain(drain_timeout)
            self.supervisor = None
        if self.relay is not None:
            await self.relay.stop()
        await self.hub.close()
        await self.publisher.close()
        if self.queue_engine is not self.engine:
            await self.queue_engine.dispose()
        await self.engine.dispose()
        logger.info("✅ Cleanup complete")
