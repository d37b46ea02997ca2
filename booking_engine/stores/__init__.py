from booking_engine.stores.availability_store import AvailabilityStore
from booking_engine.stores.booking_store import BookingStore
from booking_engine.stores.catalog import (
    InMemoryServiceCatalog,
    InMemoryUserDirectory,
    ServiceCatalog,
    UserDirectory,
)

__all__ = [
    "AvailabilityStore",
    "BookingStore",
    "ServiceCatalog",
    "UserDirectory",
    "InMemoryServiceCatalog",
    "InMemoryUserDirectory",
]
