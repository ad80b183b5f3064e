"""Browser identity rotation with a persisted identity health ledger.

The :class:`RotationManager` holds the identity currently presented to
target sites and decides when to replace it.

Ledger
------
Two collections are persisted through the key-value store after every
rotation and loaded once at start-up (a failed load yields an empty
ledger):

- ``successful_identities`` — ``{fingerprint_hash: {"count": n, "fingerprint": {...}}}``
  The profile is stored alongside the count so the identity can be reused.
- ``blocked_identities`` — ``[fingerprint_hash, ...]``

Several worker processes share the store, so a write merges with what is
stored (blocks unioned, unsaved success counts added) instead of
replacing it.

Schedule
--------
:meth:`RotationManager.should_rotate` counts requests and fires once
``rotation_interval`` requests have been made or ``time_window_ms`` has
elapsed since the last rotation.  Both thresholds are re-drawn on every
rotation so the cadence is not fixed.

Selection
---------
:meth:`RotationManager.rotate` records the outgoing identity's outcome and
then, with probability 0.7, reuses a previously successful identity that
is not blocked; otherwise it generates fresh identities until one is not
blocked.  The user-agent is always regenerated.
"""

from __future__ import annotations

import json
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable

from snapscrape.api.metrics import identity_rotations_total
from snapscrape.core.exceptions import IdentityExhaustedError
from snapscrape.core.storage import KeyValueStore
from snapscrape.scraper.config import (
    BLOCKED_IDENTITIES_KEY,
    INITIAL_ROTATION_INTERVAL,
    INITIAL_ROTATION_WINDOW_MS,
    MAX_IDENTITY_GENERATION_ATTEMPTS,
    REUSE_PROBABILITY,
    ROTATION_INTERVAL_RANGE,
    ROTATION_WINDOW_MS_RANGE,
    SUCCESSFUL_IDENTITIES_KEY,
)
from snapscrape.scraper.identity import FingerprintProfile, Identity, IdentityPool

logger = logging.getLogger(__name__)


def _now_ms() -> float:
    return time.time() * 1000


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@dataclass
class IdentityHealthLedger:
    """Success counts and blocks recorded per fingerprint hash.

    Attributes:
        successful: Success count per fingerprint hash.
        blocked: Fingerprint hashes that must never be presented again.
        profiles: Fingerprint profile per successful hash.
    """

    successful: dict[str, int] = field(default_factory=dict)
    blocked: set[str] = field(default_factory=set)
    profiles: dict[str, FingerprintProfile] = field(default_factory=dict)

    def record_success(self, fingerprint: FingerprintProfile) -> None:
        key = fingerprint.fingerprint_hash()
        self.successful[key] = self.successful.get(key, 0) + 1
        self.profiles[key] = fingerprint

    def record_block(self, fingerprint: FingerprintProfile) -> None:
        self.blocked.add(fingerprint.fingerprint_hash())

    def reusable(self) -> list[str]:
        """Successful hashes that are not blocked, in a stable order."""
        return sorted(
            key for key in self.successful
            if key not in self.blocked and key in self.profiles
        )

    def merged_with(
        self, stored: IdentityHealthLedger, unsaved: dict[str, int]
    ) -> IdentityHealthLedger:
        """Combine this in-memory ledger with the one currently stored.

        Other processes write the same keys, so the stored ledger may hold
        blocks and successes this process has not seen.  Blocks are unioned.
        For hashes already stored, only ``unsaved`` successes are added to
        the stored count; hashes the store lacks keep the local count.
        """
        merged = IdentityHealthLedger(
            successful=dict(stored.successful),
            blocked=stored.blocked | self.blocked,
            profiles={**self.profiles, **stored.profiles},
        )
        for key, count in self.successful.items():
            if key in stored.successful:
                merged.successful[key] = stored.successful[key] + unsaved.get(key, 0)
            else:
                merged.successful[key] = count
        return merged

    # -- serialization at the storage boundary ---------------------------

    def dump_successful(self) -> str:
        return json.dumps(
            {
                key: {"count": count, "fingerprint": self.profiles[key].to_dict()}
                for key, count in self.successful.items()
                if key in self.profiles
            },
            sort_keys=True,
        )

    def dump_blocked(self) -> str:
        return json.dumps(sorted(self.blocked))

    @classmethod
    def parse(cls, successful_raw: str | None, blocked_raw: str | None) -> IdentityHealthLedger:
        ledger = cls()
        for key, entry in (json.loads(successful_raw) if successful_raw else {}).items():
            ledger.successful[key] = int(entry["count"])
            ledger.profiles[key] = FingerprintProfile.from_dict(entry["fingerprint"])
        ledger.blocked = set(json.loads(blocked_raw) if blocked_raw else [])
        return ledger


# ---------------------------------------------------------------------------
# RotationManager
# ---------------------------------------------------------------------------


class RotationManager:
    """Tracks the current identity and rotates it on a randomized schedule.

    Construct with :meth:`create` to load the persisted ledger, or call
    :meth:`load` after ``__init__``.

    Args:
        store: Key-value store holding the ledger (already scoped by the caller).
        pool: Identity generator.
        rng: Randomness for selection and schedule; defaults to a fresh
            ``random.Random``.
        clock: Millisecond clock; defaults to wall-clock time.
    """

    def __init__(
        self,
        store: KeyValueStore,
        pool: IdentityPool | None = None,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._store = store
        self._rng = rng or random.Random()
        self._pool = pool or IdentityPool(self._rng)
        self._clock = clock or _now_ms

        self.ledger = IdentityHealthLedger()
        self._unsaved_successes: dict[str, int] = {}
        self.request_counter = 0
        self.last_rotation_ms = self._clock()
        self.rotation_interval = INITIAL_ROTATION_INTERVAL
        self.time_window_ms: float = INITIAL_ROTATION_WINDOW_MS
        self._current = self._pool.generate_identity()

    @classmethod
    async def create(
        cls,
        store: KeyValueStore,
        pool: IdentityPool | None = None,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], float] | None = None,
    ) -> RotationManager:
        """Construct a manager and load its ledger."""
        manager = cls(store, pool, rng=rng, clock=clock)
        await manager.load()
        return manager

    async def load(self) -> None:
        """Load the persisted ledger; on any failure keep an empty one."""
        try:
            self.ledger = await self._read_ledger()
        except Exception:
            logger.warning("Could not load identity ledger, starting empty", exc_info=True)
            self.ledger = IdentityHealthLedger()
            return

        logger.info(
            "Identity ledger loaded",
            extra={
                "successful": len(self.ledger.successful),
                "blocked": len(self.ledger.blocked),
            },
        )
        if self._current.key in self.ledger.blocked:
            self._current = Identity(
                user_agent=self._pool.generate_user_agent(),
                fingerprint=self._generate_unblocked(),
            )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def current_identity(self) -> Identity:
        return self._current

    def get_user_agent(self) -> str:
        return self._current.user_agent

    def get_fingerprint(self) -> FingerprintProfile:
        return self._current.fingerprint

    # ------------------------------------------------------------------
    # Schedule
    # ------------------------------------------------------------------

    def should_rotate(self) -> bool:
        """Count one request and report whether a rotation is due.

        When due, the request counter and the rotation timestamp are reset.
        """
        self.request_counter += 1
        now = self._clock()
        if (
            self.request_counter >= self.rotation_interval
            or now - self.last_rotation_ms >= self.time_window_ms
        ):
            self.request_counter = 0
            self.last_rotation_ms = now
            return True
        return False

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    async def rotate(self, was_successful: bool) -> None:
        """Record the current identity's outcome and switch to the next one.

        Args:
            was_successful: Outcome attributed to the outgoing identity.  A
                failure blocks its fingerprint permanently.

        Raises:
            IdentityExhaustedError: If no unblocked fingerprint could be
                generated.
        """
        outgoing = self._current
        if was_successful:
            self.ledger.record_success(outgoing.fingerprint)
            self._unsaved_successes[outgoing.key] = (
                self._unsaved_successes.get(outgoing.key, 0) + 1
            )
        else:
            self.ledger.record_block(outgoing.fingerprint)
        await self._persist()

        reusable = self.ledger.reusable()
        if reusable and self._rng.random() < REUSE_PROBABILITY:
            fingerprint = self.ledger.profiles[self._rng.choice(reusable)]
            selection = "reuse"
        else:
            fingerprint = self._generate_unblocked()
            selection = "generated"

        self._current = Identity(
            user_agent=self._pool.generate_user_agent(),
            fingerprint=fingerprint,
        )
        self.rotation_interval = self._rng.randint(*ROTATION_INTERVAL_RANGE)
        self.time_window_ms = self._rng.uniform(*ROTATION_WINDOW_MS_RANGE)

        identity_rotations_total.labels(
            outcome="success" if was_successful else "blocked",
            selection=selection,
        ).inc()
        logger.info(
            "Identity rotated",
            extra={
                "previous": outgoing.key[:12],
                "current": self._current.key[:12],
                "selection": selection,
                "was_successful": was_successful,
                "rotation_interval": self.rotation_interval,
            },
        )

    def _generate_unblocked(self) -> FingerprintProfile:
        for _ in range(MAX_IDENTITY_GENERATION_ATTEMPTS):
            candidate = self._pool.generate_fingerprint()
            if candidate.fingerprint_hash() not in self.ledger.blocked:
                return candidate
        raise IdentityExhaustedError(MAX_IDENTITY_GENERATION_ATTEMPTS)

    async def _read_ledger(self) -> IdentityHealthLedger:
        successful_raw = await self._store.get(SUCCESSFUL_IDENTITIES_KEY)
        blocked_raw = await self._store.get(BLOCKED_IDENTITIES_KEY)
        return IdentityHealthLedger.parse(successful_raw, blocked_raw)

    async def _persist(self) -> None:
        """Merge the ledger into the stored one and write it back.

        On success the in-memory ledger adopts the merged state, so blocks
        recorded by other processes are honoured from then on.  On failure
        the in-memory state is kept and unsaved successes are retried on the
        next rotation.
        """
        try:
            try:
                stored = await self._read_ledger()
            except (ValueError, KeyError, TypeError):
                logger.warning("Stored identity ledger is malformed, replacing it", exc_info=True)
                stored = IdentityHealthLedger()
            merged = self.ledger.merged_with(stored, self._unsaved_successes)
            await self._store.put(SUCCESSFUL_IDENTITIES_KEY, merged.dump_successful())
            await self._store.put(BLOCKED_IDENTITIES_KEY, merged.dump_blocked())
        except Exception:
            logger.warning("Could not persist identity ledger", exc_info=True)
            return
        self.ledger = merged
        self._unsaved_successes.clear()
