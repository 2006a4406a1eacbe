"""
Processing Context for SpendFlow.

Everything a processor run needs: the store, notification writer, settings,
the quota circuit breaker, and the clock. One context is built per
application (or per test) and shared by every run, so breaker state
persists across runs and users.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date

from spendflow.config import Settings, get_settings
from spendflow.infra.monitoring import update_circuit_state
from spendflow.lib.circuit_breaker import CircuitBreaker, quota_breaker
from spendflow.services.document_store import DocumentStore
from spendflow.services.notification_service import NotificationService


@dataclass
class ProcessingContext:
    """Shared dependencies for obligation processing.

    Attributes:
        store: Document store holding all user records
        settings: Application settings
        notifications: Notification writer
        quota_breaker: Guards non-essential writes against store quota errors
        clock: Source of "today" (injectable for tests)
    """

    store: DocumentStore
    settings: Settings
    notifications: NotificationService
    quota_breaker: CircuitBreaker
    clock: Callable[[], date] = field(default=date.today)

    @classmethod
    def create(
        cls,
        store: DocumentStore,
        settings: Settings | None = None,
        clock: Callable[[], date] = date.today,
    ) -> ProcessingContext:
        settings = settings or get_settings()
        recovery = settings.quota_recovery_seconds or None
        breaker = quota_breaker(recovery_timeout=recovery)
        breaker.add_listener(lambda state: update_circuit_state(breaker.name, state))
        return cls(
            store=store,
            settings=settings,
            notifications=NotificationService(store, currency=settings.default_currency),
            quota_breaker=breaker,
            clock=clock,
        )

    def today(self) -> date:
        return self.clock()
