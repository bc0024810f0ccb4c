"""
auth/lockout.py -- Account lockout policy (Active / Locked state machine).

States:
  Active -- locked_until is NULL, or lies in the past (a stale lock).
  Locked -- locked_until lies in the future.

Transitions:
  Active -> Locked   when the failed-attempt counter reaches max_attempts.
                     The write itself is UserStore.register_failed_login(): one
                     conditional UPDATE, never read-modify-write in Python.
  Locked -> Active   evaluated lazily: is_locked() compares against "now" on
                     each attempt. No background timer. A successful login
                     (UserStore.record_successful_login) also clears the lock.

This module holds only the pure arithmetic. It never touches the DB, so the
route layer and the store can share one definition of "locked".

Disclosure policy: attempts_remaining() feeds the "N attempt(s) remaining"
message on a failed login. Revealing the count is a deliberate usability
trade-off; the status code and error code stay identical to an unknown-email
failure.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from auth.models import User
    from core.config import Settings

MAX_FAILED_ATTEMPTS = 5
LOCKOUT_MINUTES = 30


@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = MAX_FAILED_ATTEMPTS
    lockout_minutes: int = LOCKOUT_MINUTES

    @classmethod
    def from_settings(cls, settings: Settings) -> LockoutPolicy:
        return cls(max_attempts=settings.max_failed_attempts, lockout_minutes=settings.lockout_minutes)

    def deadline(self, now: datetime) -> datetime:
        """Lock-until timestamp written when the threshold is crossed at `now`."""
        return now + timedelta(minutes=self.lockout_minutes)

    def is_locked(self, user: User, now: datetime) -> bool:
        return user.locked_until is not None and user.locked_until > now

    def attempts_remaining(self, attempts: int) -> int:
        return max(self.max_attempts - attempts, 0)

    @staticmethod
    def minutes_remaining(locked_until: datetime, now: datetime) -> int:
        """Whole minutes until unlock, ceiling-rounded, never below 1."""
        seconds = (locked_until - now).total_seconds()
        return max(math.ceil(seconds / 60), 1)
