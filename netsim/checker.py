"""Consistency checker for a key-value store under concurrent load.

Every write records the value it stored, even if the write failed, since a
failed write may still have partially succeeded. A write that succeeded with
no other write to the same key in flight replaces all earlier values. A
failed or concurrent write only adds its value to the set that a read may
legitimately return.

Reads are checked only when nothing could have raced with them. Each key has
a version that every write increments, and a count of writes in progress. A
read is skipped if the version changed while it ran, or if any write to the
key was pending. This avoids false positives.

Times are seconds since the epoch, as returned by :func:`time.time`.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from dataclasses import dataclass

__all__ = ["ConsistencyChecker", "DuplicateValueError", "InconsistencyError"]


class InconsistencyError(AssertionError):
    """A read returned a result that no recorded write can explain."""


class DuplicateValueError(ValueError):
    """The same value was written twice to one key, which cannot be checked."""


def _ms(seconds: float) -> int:
    return int(seconds * 1000)


@dataclass
class _StateValue:
    value: str
    written_at: float
    maybe_expired_by: float
    definitely_expired_by: float
    err: BaseException | None
    overwritten_at: float = 0.0

    def __str__(self) -> str:
        now = time.time()
        was_error = "true" if self.err is not None else "false"
        return (
            f"{{val={self.value}, ttlRemaining={_ms(self.maybe_expired_by - now)}ms, "
            f"writtenAtAgo={_ms(now - self.written_at)}ms, wasError={was_error}}}, "
        )


class ConsistencyChecker:
    """Records writes and checks that reads return a value they could see."""

    def __init__(
        self,
        check_correctness: bool = True,
        check_ttl: bool = True,
        ttl_check_buffer: float = 0.010,
    ) -> None:
        self.check_correctness = check_correctness
        self.check_ttl = check_ttl
        self.ttl_check_buffer = ttl_check_buffer
        self._lock = threading.Lock()
        self._checks_run = 0
        self._values: dict[str, dict[str, _StateValue]] = defaultdict(dict)
        self._overwritten: dict[str, dict[str, _StateValue]] = defaultdict(dict)
        self._version: dict[str, int] = defaultdict(int)
        self._pending: dict[str, int] = defaultdict(int)

    @property
    def checks_run(self) -> int:
        """Number of reads that were actually checked."""
        with self._lock:
            return self._checks_run

    def begin_write(self, key: str) -> int:
        """Mark a write to ``key`` as started; return the key's current version."""
        if not self.check_correctness:
            return 0
        with self._lock:
            self._pending[key] += 1
            return self._version[key]

    def complete_write(
        self,
        key: str,
        value: str,
        err: BaseException | None,
        initial_version: int,
        maybe_expired_by: float,
        definitely_expired_by: float,
    ) -> None:
        """Record the outcome of a write started with :meth:`begin_write`."""
        if not self.check_correctness:
            return
        with self._lock:
            now = time.time()
            new_value = _StateValue(
                value=value,
                written_at=now,
                maybe_expired_by=maybe_expired_by,
                definitely_expired_by=definitely_expired_by + self.ttl_check_buffer,
                err=err,
            )
            if value in self._values[key] or value in self._overwritten[key]:
                raise DuplicateValueError(f"value {value!r} was already written to key {key!r}")

            if err is None and initial_version == self._version[key] and self._pending[key] == 1:
                for old in self._values[key].values():
                    old.overwritten_at = now
                    self._overwritten[key][old.value] = old
                self._values[key] = {value: new_value}
            else:
                self._values[key][value] = new_value

            self._pending[key] -= 1
            self._version[key] += 1

    def begin_read(self, key: str) -> tuple[int, bool]:
        """Return the key's version and whether writes to it are pending."""
        if not self.check_correctness:
            return 0, False
        with self._lock:
            return self._version[key], self._pending[key] != 0

    def check_read_correct(
        self,
        key: str,
        value: str,
        was_found: bool,
        start_time: float,
        initial_version: int,
        writes_pending: bool,
    ) -> None:
        """Check a read's result; raise :class:`InconsistencyError` if it is wrong."""
        if not self.check_correctness:
            return
        with self._lock:
            if (
                self._version[key] != initial_version
                or writes_pending
                or self._pending[key] != 0
            ):
                return
            self._checks_run += 1

            now = time.time()
            values = self._values[key]
            if not was_found:
                unexpired = [v for v in values.values() if not v.maybe_expired_by < now]
                if values and len(unexpired) == len(values):
                    listing = "".join(str(v) for v in unexpired)
                    raise InconsistencyError(
                        f"no value found, but there are unexpired potential values: {listing}"
                    )
                return

            recorded = values.get(value)
            if recorded is None:
                old = self._overwritten[key].get(value)
                if old is not None:
                    raise InconsistencyError(
                        f"incorrect value {value}; was overwritten "
                        f"{_ms(now - old.overwritten_at)}ms ago"
                    )
                raise InconsistencyError(f"incorrect value {value}; never written to key")
            if (
                self.check_ttl
                and recorded.err is None
                and recorded.definitely_expired_by < start_time
            ):
                raise InconsistencyError(
                    f"value {value} was written, but expired at least "
                    f"{_ms(start_time - recorded.maybe_expired_by)}ms ago"
                )