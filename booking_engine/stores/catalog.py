"""
Service catalog and user directory collaborators.

The engine only reads from these. In production they would be backed by
the marketplace's service and user databases; the in-memory versions here
serve the demo and the test suite.
"""

import logging
import threading
from typing import Optional, Protocol

from booking_engine.schemas.service_schema import Service, UserRecord

logger = logging.getLogger(__name__)


class ServiceCatalog(Protocol):
    def get_service(self, service_id: str) -> Optional[Service]: ...


class UserDirectory(Protocol):
    def get_user(self, user_id: str) -> Optional[UserRecord]: ...


class InMemoryServiceCatalog:
    """Service lookup keyed by service ID."""

    def __init__(self, services: Optional[list[Service]] = None) -> None:
        self._lock = threading.Lock()
        self._services: dict[str, Service] = {s.service_id: s for s in services or []}

    def add_service(self, service: Service) -> None:
        with self._lock:
            self._services[service.service_id] = service
        logger.debug("Service registered: %s (%s)", service.service_id, service.name)

    def get_service(self, service_id: str) -> Optional[Service]:
        return self._services.get(service_id)

    def reset(self) -> None:
        """Clear all services. Used by test fixtures for isolation."""
        with self._lock:
            self._services.clear()


class InMemoryUserDirectory:
    """User lookup keyed by user ID."""

    def __init__(self, users: Optional[list[UserRecord]] = None) -> None:
        self._lock = threading.Lock()
        self._users: dict[str, UserRecord] = {u.user_id: u for u in users or []}

    def add_user(self, user: UserRecord) -> None:
        with self._lock:
            self._users[user.user_id] = user
        logger.debug("User registered: %s (%s)", user.user_id, user.role.value)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self._users.get(user_id)

    def reset(self) -> None:
        """Clear all users. Used by test fixtures for isolation."""
        with self._lock:
            self._users.clear()
