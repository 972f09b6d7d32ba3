"""
Storage module: farm records and their persistence backends.

Public API:
- User, Field, Sensor, SensorReading, NPK: record models
- InMemoryFarmStore / JsonFileFarmStore: interchangeable backends
- get_farm_store(): backend selected by STORAGE_BACKEND
- StorageError, NotFoundError, DuplicateError, AuthenticationError
"""

from agricare.storage.models import NPK, Field, Sensor, SensorReading, User
from agricare.storage.store import (
    AuthenticationError,
    DuplicateError,
    FarmStore,
    InMemoryFarmStore,
    JsonFileFarmStore,
    NotFoundError,
    StorageError,
    get_farm_store,
    reset_farm_store,
)

__all__ = [
    "User",
    "Field",
    "Sensor",
    "SensorReading",
    "NPK",
    "FarmStore",
    "InMemoryFarmStore",
    "JsonFileFarmStore",
    "get_farm_store",
    "reset_farm_store",
    "StorageError",
    "NotFoundError",
    "DuplicateError",
    "AuthenticationError",
]
