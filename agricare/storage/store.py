"""
Farm record persistence.

Two backends share one call surface:
- InMemoryFarmStore: process-local dictionaries
- JsonFileFarmStore: the same dictionaries serialized to a single JSON
  file after every mutation and reloaded at start

Both are thread-safe using threading.Lock. Passwords are kept as salted
PBKDF2-SHA256 hashes next to the user record and never returned.
"""

import hashlib
import hmac
import json
import logging
import secrets
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from agricare.config import get_settings
from agricare.storage.models import Field, Sensor, SensorReading, User

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 120_000


class StorageError(Exception):
    """Base class for persistence failures."""


class NotFoundError(StorageError):
    """Requested record does not exist."""


class DuplicateError(StorageError):
    """Record conflicts with an existing one."""


class AuthenticationError(StorageError):
    """Email/password pair did not match."""


def hash_password(password: str, salt: str | None = None) -> tuple[str, str]:
    """
    Hash a password with PBKDF2-SHA256.

    Returns:
        (hex digest, hex salt)
    """
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt), PBKDF2_ITERATIONS
    )
    return digest.hex(), salt


@dataclass
class _UserRecord:
    """Internal user entry with credentials."""

    user: User
    password_hash: str
    salt: str


class InMemoryFarmStore:
    """
    In-memory store for users, fields and sensors.

    Example:
        store = InMemoryFarmStore()
        user = store.register_user(User(id="u1", name="Rahim", email="r@farm.bd"), "pw")
        field = store.add_field(Field(user_id="u1", field_name="North", location="Bogura", size=2.5))
        store.upsert_sensor(Sensor(field_id=field.field_id, sensor_type="Moisture"))
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users: dict[str, _UserRecord] = {}
        self._fields: dict[int, Field] = {}
        self._sensors: dict[int, Sensor] = {}
        self._next_id = 1

    # ----------------------------------------------------------------------
    # hooks
    # ----------------------------------------------------------------------

    def _persist(self) -> None:
        """Called with the lock held after every mutation."""

    @contextmanager
    def _mutation(self):
        """
        Hold the lock for a mutation and persist it on exit.

        When persisting fails the previous state is restored, so memory
        never holds records the backing file does not.
        """
        with self._lock:
            saved = (dict(self._users), dict(self._fields), dict(self._sensors), self._next_id)
            yield
            try:
                self._persist()
            except StorageError:
                self._users, self._fields, self._sensors, self._next_id = saved
                raise

    def _allocate_id(self) -> int:
        next_id = self._next_id
        self._next_id += 1
        return next_id

    # ----------------------------------------------------------------------
    # users
    # ----------------------------------------------------------------------

    def register_user(self, user: User, password: str) -> User:
        """
        Register a new user.

        Raises:
            DuplicateError: If the id or (case-insensitive) email is taken.
        """
        if not password:
            raise ValueError("Password cannot be empty")

        with self._mutation():
            email = user.email.lower()
            if user.id in self._users or any(
                record.user.email.lower() == email for record in self._users.values()
            ):
                raise DuplicateError(f"User already registered: {user.email}")

            password_hash, salt = hash_password(password)
            self._users[user.id] = _UserRecord(user=user, password_hash=password_hash, salt=salt)

        logger.info(f"Registered user {user.id}")
        return user

    def login_user(self, email: str, password: str) -> User:
        """
        Authenticate a user by email and password.

        Raises:
            AuthenticationError: If no user matches or the password is wrong.
        """
        email = email.lower()
        with self._lock:
            record = next(
                (r for r in self._users.values() if r.user.email.lower() == email),
                None,
            )

        if record is None:
            raise AuthenticationError("Invalid email or password")

        candidate, _ = hash_password(password, record.salt)
        if not hmac.compare_digest(candidate, record.password_hash):
            raise AuthenticationError("Invalid email or password")
        return record.user

    def get_user(self, user_id: str) -> User:
        with self._lock:
            record = self._users.get(user_id)
        if record is None:
            raise NotFoundError(f"User not found: {user_id}")
        return record.user

    # ----------------------------------------------------------------------
    # fields
    # ----------------------------------------------------------------------

    def add_field(self, field: Field) -> Field:
        """
        Store a field, assigning field_id when it is empty.

        Raises:
            DuplicateError: If a field with the same id exists.
        """
        with self._mutation():
            if field.field_id is None:
                field = field.model_copy(update={"field_id": self._allocate_id()})
            elif field.field_id in self._fields:
                raise DuplicateError(f"Field already exists: {field.field_id}")
            else:
                self._next_id = max(self._next_id, field.field_id + 1)

            self._fields[field.field_id] = field
        return field

    def get_field(self, field_id: int) -> Field:
        with self._lock:
            field = self._fields.get(field_id)
        if field is None:
            raise NotFoundError(f"Field not found: {field_id}")
        return field

    def list_fields(self, user_id: str) -> list[Field]:
        """Fields owned by a user, in creation order."""
        with self._lock:
            return [f for f in self._fields.values() if f.user_id == user_id]

    def update_field(self, field: Field) -> Field:
        with self._mutation():
            if field.field_id not in self._fields:
                raise NotFoundError(f"Field not found: {field.field_id}")
            self._fields[field.field_id] = field
        return field

    def delete_field(self, field_id: int) -> None:
        """Delete a field and every sensor attached to it."""
        with self._mutation():
            if self._fields.pop(field_id, None) is None:
                raise NotFoundError(f"Field not found: {field_id}")
            self._sensors = {
                sid: s for sid, s in self._sensors.items() if s.field_id != field_id
            }

    # ----------------------------------------------------------------------
    # sensors
    # ----------------------------------------------------------------------

    def list_sensors(self, field_ids: list[int]) -> list[Sensor]:
        """Sensors attached to any of the given fields."""
        if not field_ids:
            return []
        wanted = set(field_ids)
        with self._lock:
            return [s for s in self._sensors.values() if s.field_id in wanted]

    def get_sensor(self, sensor_id: int) -> Sensor:
        with self._lock:
            sensor = self._sensors.get(sensor_id)
        if sensor is None:
            raise NotFoundError(f"Sensor not found: {sensor_id}")
        return sensor

    def upsert_sensor(self, sensor: Sensor) -> Sensor:
        """
        Add a sensor, or replace the one with the same sensor_id.

        Raises:
            NotFoundError: If the sensor's field does not exist.
        """
        with self._mutation():
            if sensor.field_id not in self._fields:
                raise NotFoundError(f"Field not found: {sensor.field_id}")

            if sensor.sensor_id is None:
                sensor = sensor.model_copy(update={"sensor_id": self._allocate_id()})
            else:
                self._next_id = max(self._next_id, sensor.sensor_id + 1)

            self._sensors[sensor.sensor_id] = sensor
        return sensor

    def record_reading(self, sensor_id: int, reading: SensorReading) -> Sensor:
        """Replace a sensor's last reading."""
        with self._mutation():
            sensor = self._sensors.get(sensor_id)
            if sensor is None:
                raise NotFoundError(f"Sensor not found: {sensor_id}")
            sensor = sensor.model_copy(update={"last_reading": reading})
            self._sensors[sensor_id] = sensor
        return sensor

    def delete_sensor(self, sensor_id: int) -> None:
        with self._mutation():
            if self._sensors.pop(sensor_id, None) is None:
                raise NotFoundError(f"Sensor not found: {sensor_id}")

    def reset(self) -> None:
        """Remove every record. Primarily used for testing."""
        with self._mutation():
            self._users.clear()
            self._fields.clear()
            self._sensors.clear()
            self._next_id = 1


class JsonFileFarmStore(InMemoryFarmStore):
    """
    Farm store backed by a single JSON file.

    The whole state is rewritten after each mutation (write to a temporary
    file, then replace) and loaded once at construction.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path)
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            logger.info(f"No store file at {self._path}, starting empty")
            return

        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise TypeError(f"expected an object, got {type(data).__name__}")

            users = {}
            for entry in data.get("users", []):
                user = User.model_validate(entry["user"])
                users[user.id] = _UserRecord(
                    user=user, password_hash=entry["password_hash"], salt=entry["salt"]
                )
            fields = {f.field_id: f for f in map(Field.model_validate, data.get("fields", []))}
            sensors = {s.sensor_id: s for s in map(Sensor.model_validate, data.get("sensors", []))}
            next_id = int(data.get("next_id", 1))
        except (OSError, UnicodeDecodeError, ValidationError, ValueError, KeyError, TypeError) as e:
            raise StorageError(f"Corrupt store file {self._path}: {e}") from e

        self._users, self._fields, self._sensors, self._next_id = users, fields, sensors, next_id
        logger.info(
            f"Loaded {len(self._users)} users, {len(self._fields)} fields, "
            f"{len(self._sensors)} sensors from {self._path}"
        )

    def _persist(self) -> None:
        data = {
            "users": [
                {
                    "user": record.user.model_dump(mode="json"),
                    "password_hash": record.password_hash,
                    "salt": record.salt,
                }
                for record in self._users.values()
            ],
            "fields": [f.model_dump(mode="json") for f in self._fields.values()],
            "sensors": [s.model_dump(mode="json") for s in self._sensors.values()],
            "next_id": self._next_id,
        }

        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            tmp_path.replace(self._path)
        except OSError as e:
            logger.error(f"Failed to write store file {self._path}: {e}")
            raise StorageError(f"Cannot write store file {self._path}: {e}") from e


FarmStore = InMemoryFarmStore

_store: InMemoryFarmStore | None = None


def get_farm_store() -> InMemoryFarmStore:
    """
    Get the global farm store, choosing the backend from settings.

    Returns:
        Singleton store instance
    """
    global _store
    if _store is None:
        settings = get_settings()
        if settings.storage_backend == "json":
            _store = JsonFileFarmStore(settings.storage_path)
        else:
            _store = InMemoryFarmStore()
        logger.debug(f"Using {settings.storage_backend} farm store")
    return _store


def reset_farm_store() -> None:
    """Drop the global store so the next call rebuilds it."""
    global _store
    _store = None
