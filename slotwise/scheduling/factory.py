import datetime as dt
from typing import Callable

from loguru import logger

from slotwise.config import AppConfig, BackendAdapter
from slotwise.scheduling.adapters.memory import (
    InMemoryBookingStore,
    InMemoryScheduleStore,
    InMemoryWaitlistStore,
    RecordingNotifier,
)
from slotwise.scheduling.adapters.postgrest import (
    PostgRESTBookingStore,
    PostgRESTClient,
    PostgRESTNotifier,
    PostgRESTScheduleStore,
    PostgRESTWaitlistStore,
)
from slotwise.scheduling.service import SchedulingService
from slotwise.scheduling.time_helpers import Clock, resolve_timezone


def clinic_clock(timezone: str) -> Clock:
    """Return a clock yielding aware datetimes in the clinic's timezone."""
    tz = resolve_timezone(timezone)

    def now() -> dt.datetime:
        return dt.datetime.now(tz)

    return now


def _build_memory(config: AppConfig) -> SchedulingService:
    clock = clinic_clock(config.clinic_timezone)
    return SchedulingService(
        InMemoryScheduleStore(),
        InMemoryBookingStore(clock=clock),
        InMemoryWaitlistStore(),
        RecordingNotifier(clock=clock),
        config=config.scheduling,
        clock=clock,
    )


def _build_postgrest(config: AppConfig) -> SchedulingService:
    if not config.backend.url:
        raise ValueError("BACKEND_URL must be set for the postgrest adapter")
    clock = clinic_clock(config.clinic_timezone)
    client = PostgRESTClient(
        config.backend.url,
        api_key=config.backend.api_key,
        timeout=config.backend.timeout_seconds,
    )
    return SchedulingService(
        PostgRESTScheduleStore(client),
        PostgRESTBookingStore(client),
        PostgRESTWaitlistStore(client),
        PostgRESTNotifier(client, clock=clock),
        config=config.scheduling,
        clock=clock,
        lifecycle=client,
    )


_BUILDERS: dict[BackendAdapter, Callable[[AppConfig], SchedulingService]] = {
    BackendAdapter.MEMORY: _build_memory,
    BackendAdapter.POSTGREST: _build_postgrest,
}


def build_scheduling_service(config: AppConfig) -> SchedulingService:
    """Build the scheduling service for the configured backend adapter."""
    adapter = config.backend.adapter
    logger.info("Building scheduling service with adapter: {}", adapter.value)
    return _BUILDERS[adapter](config)
