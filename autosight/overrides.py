"""Manual visibility overrides.

An override is a GM (or action-workflow) decision about one directed pair
that takes precedence over whatever the calculator would say. The store
holds at most one record per ``(observer_id, target_id)``; records are
frozen and a write replaces the whole record, so there is no partial update
to race against.

Overrides are only ever removed by an explicit call: ``remove``,
``clear_all_for_token`` or ``clear_all``. The one exception is a record whose
observer or target no longer exists, which ``get`` drops on sight when the
store was given a ``token_exists`` predicate. Nothing sweeps them eagerly,
and deleting a token does not clear its overrides.

Each record also notes the cover the pair had when it was written
(``expected_cover``, and ``has_cover`` for standard or better) so a caller can
later ask which overrides rest on cover that has since changed.

``OverrideReconciler`` is the single place where an automatic verdict meets
the store:

    effective(observer, target) = override.state if override else calculate()
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from .types import CoverLevel, VisibilityState

logger = logging.getLogger(__name__)

PairKey = tuple[str, str]
Listener = Callable[[str, str], None]
CoverLookup = Callable[[str, str], CoverLevel | None]


def grants_cover(cover: CoverLevel | None) -> bool:
    """Standard or greater; lesser cover does not count as being in cover."""
    return cover is not None and cover.rank >= CoverLevel.STANDARD.rank


@dataclass(frozen=True)
class OverrideRecord:
    observer_id: str
    target_id: str
    state: VisibilityState
    source: str = "manual"
    created_at: float = 0.0
    has_cover: bool = False
    expected_cover: CoverLevel | None = None

    @property
    def key(self) -> PairKey:
        return (self.observer_id, self.target_id)

    def to_dict(self) -> dict:
        d: dict = {
            "observer_id": self.observer_id,
            "target_id": self.target_id,
            "state": self.state.value,
            "source": self.source,
            "created_at": self.created_at,
        }
        if self.has_cover:
            d["has_cover"] = True
        if self.expected_cover is not None:
            d["expected_cover"] = self.expected_cover.value
        return d

    @staticmethod
    def from_dict(d: dict) -> OverrideRecord:
        cover = d.get("expected_cover")
        return OverrideRecord(
            observer_id=d["observer_id"],
            target_id=d["target_id"],
            state=VisibilityState.parse(d["state"]),
            source=d.get("source", "manual"),
            created_at=float(d.get("created_at", 0.0)),
            has_cover=bool(d.get("has_cover", False)),
            expected_cover=CoverLevel.parse(cover) if cover else None,
        )


@dataclass(frozen=True)
class OverrideRequest:
    """One entry of a bulk override write."""

    observer_id: str
    target_id: str
    state: VisibilityState | str
    source: str = "manual"


class OverrideStore:
    def __init__(
        self,
        *,
        token_exists: Callable[[str], bool] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._records: dict[PairKey, OverrideRecord] = {}
        self._token_exists = token_exists
        self._clock = clock
        self._listeners: list[Listener] = []

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: PairKey) -> bool:
        return key in self._records

    def subscribe(self, listener: Listener) -> None:
        """Call ``listener(observer_id, target_id)`` after every change."""
        self._listeners.append(listener)

    def _notify(self, keys: Iterable[PairKey]) -> None:
        for observer_id, target_id in keys:
            for listener in self._listeners:
                listener(observer_id, target_id)

    def _is_stale(self, record: OverrideRecord) -> bool:
        if self._token_exists is None:
            return False
        return not (
            self._token_exists(record.observer_id)
            and self._token_exists(record.target_id)
        )

    def get(self, observer_id: str, target_id: str) -> OverrideRecord | None:
        key = (observer_id, target_id)
        record = self._records.get(key)
        if record is None:
            return None
        if self._is_stale(record):
            logger.info(
                "dropping stale override %s -> %s", observer_id, target_id
            )
            del self._records[key]
            return None
        return record

    def set(
        self,
        observer_id: str,
        target_id: str,
        state: VisibilityState | str,
        source: str = "manual",
        *,
        has_cover: bool = False,
        expected_cover: CoverLevel | str | None = None,
    ) -> OverrideRecord:
        """Create or replace the override for one pair.

        Raises ``InvalidStateError`` for a state or cover outside the enums,
        leaving the store unchanged.
        """
        record = OverrideRecord(
            observer_id=observer_id,
            target_id=target_id,
            state=VisibilityState.parse(state),
            source=source,
            created_at=self._clock(),
            has_cover=has_cover,
            expected_cover=(
                CoverLevel.parse(expected_cover) if expected_cover else None
            ),
        )
        self.put(record)
        return record

    def put(self, record: OverrideRecord) -> None:
        self._records[record.key] = record
        self._notify([record.key])

    def set_many(
        self,
        requests: Iterable[OverrideRequest],
        *,
        cover_for: CoverLookup | None = None,
    ) -> list[OverrideRecord]:
        """Apply a batch of overrides, all or nothing.

        Every state is validated before the first record is written.
        ``cover_for(observer_id, target_id)`` supplies the cover recorded
        with each entry.
        """
        requests = list(requests)
        states = [VisibilityState.parse(r.state) for r in requests]
        now = self._clock()
        records = []
        for r, state in zip(requests, states):
            cover = cover_for(r.observer_id, r.target_id) if cover_for else None
            records.append(
                OverrideRecord(
                    observer_id=r.observer_id,
                    target_id=r.target_id,
                    state=state,
                    source=r.source,
                    created_at=now,
                    has_cover=grants_cover(cover),
                    expected_cover=cover,
                )
            )
        for record in records:
            self._records[record.key] = record
        self._notify(r.key for r in records)
        return records

    def remove(self, observer_id: str, target_id: str) -> bool:
        key = (observer_id, target_id)
        if self._records.pop(key, None) is None:
            return False
        self._notify([key])
        return True

    def clear_all_for_token(self, token_id: str) -> int:
        keys = [k for k in self._records if token_id in k]
        for key in keys:
            del self._records[key]
        self._notify(keys)
        return len(keys)

    def clear_all(self) -> int:
        keys = list(self._records)
        self._records.clear()
        self._notify(keys)
        return len(keys)

    def records(self) -> list[OverrideRecord]:
        return list(self._records.values())

    def for_target(self, target_id: str) -> dict[str, OverrideRecord]:
        """Overrides onto one target, keyed by observer id."""
        return {
            r.observer_id: r for r in self._records.values() if r.target_id == target_id
        }

    def load(self, records: Iterable[OverrideRecord]) -> None:
        """Replace the whole store, e.g. after loading a scene."""
        self._records = {r.key: r for r in records}


class OverrideReconciler:
    """Picks the override's state when one exists, else the computed one."""

    def __init__(self, store: OverrideStore) -> None:
        self.store = store

    def effective(
        self,
        observer_id: str,
        target_id: str,
        compute: Callable[[], VisibilityState],
    ) -> VisibilityState:
        record = self.store.get(observer_id, target_id)
        if record is not None:
            return record.state
        return compute()

    def has_override(self, observer_id: str, target_id: str) -> bool:
        return self.store.get(observer_id, target_id) is not None
