"""In-process advisory locks keyed by tenant-scoped resource."""

from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from threading import Lock

from clinic_backend.core import config
from clinic_backend.scheduling.errors import TransientStoreError


def dentist_key(tenant_id: str, dentist_id: str) -> tuple[str, str, str]:
    return ('dentist', tenant_id, dentist_id)


def appointment_key(tenant_id: str, appointment_id: str) -> tuple[str, str, str]:
    return ('appointment', tenant_id, appointment_id)


class _KeyLock:
    __slots__ = ('lock', 'users')

    def __init__(self) -> None:
        self.lock = Lock()
        # Holders plus waiters; the entry is dropped when this reaches zero.
        self.users = 0


class LockRegistry:
    def __init__(self, timeout_seconds: float = config.STORE_TIMEOUT_SECONDS) -> None:
        self.timeout_seconds = timeout_seconds
        self._locks: dict[Hashable, _KeyLock] = {}
        self._registry_lock = Lock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)

    def _checkout(self, key: Hashable) -> _KeyLock:
        with self._registry_lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyLock()
            entry.users += 1
            return entry

    def _checkin(self, key: Hashable, entry: _KeyLock) -> None:
        with self._registry_lock:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        entry = self._checkout(key)
        try:
            if not entry.lock.acquire(timeout=self.timeout_seconds):
                raise TransientStoreError('Timed out waiting for the schedule to become available.')
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)


schedule_locks = LockRegistry()
