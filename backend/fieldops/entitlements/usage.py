"""
Usage counter registry.

Limit guards need the caller's current usage of a resource (number of
clients, jobs, collaborators, ...). The modules that own those resources
register a counter here; the entitlement engine only ever reads counts.

Usage:
    from fieldops.entitlements.usage import register_usage_counter

    def count_clients(db: Session, user_id: str) -> int:
        return db.query(Client).filter(Client.user_id == user_id).count()

    register_usage_counter("clients", count_clients)
"""

import logging
from threading import Lock
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from fieldops.entitlements.errors import UsageCounterNotRegisteredError

logger = logging.getLogger(__name__)

UsageCounter = Callable[[Session, str], int]


class UsageCounterRegistry:
    """Thread-safe mapping of resource name -> usage counter."""

    def __init__(self):
        self._counters: Dict[str, UsageCounter] = {}
        self._lock = Lock()

    def register(self, resource: str, counter: UsageCounter) -> None:
        """
        Register (or replace) the counter for a resource.

        Args:
            resource: Resource name without the "max_" prefix (e.g. "clients")
            counter: Callable returning the user's current count
        """
        with self._lock:
            replaced = resource in self._counters
            self._counters[resource] = counter
        logger.info("Usage counter registered", extra={
            "resource": resource, "replaced": replaced
        })

    def unregister(self, resource: str) -> None:
        with self._lock:
            self._counters.pop(resource, None)

    def get(self, resource: str) -> Optional[UsageCounter]:
        with self._lock:
            return self._counters.get(resource)

    def count(self, resource: str, db_session: Session, user_id: str) -> int:
        """
        Count a user's current usage of a resource.

        Raises:
            UsageCounterNotRegisteredError: If nobody counts this resource
        """
        counter = self.get(resource)
        if counter is None:
            raise UsageCounterNotRegisteredError(resource)
        return int(counter(db_session, user_id))


_registry = UsageCounterRegistry()


def get_usage_registry() -> UsageCounterRegistry:
    """Get the process-wide usage counter registry."""
    return _registry


def register_usage_counter(resource: str, counter: UsageCounter) -> None:
    """Register a counter on the process-wide registry."""
    _registry.register(resource, counter)
