"""The engine facade.

``AutoVisibilityEngine`` wires the components together and is the only
object collaborators (action workflows, UI, scripts) talk to:

    world = SceneWorld(scene)
    engine = AutoVisibilityEngine(world, config)
    engine.get_visibility("goblin", "rogue")      # -> VisibilityState
    engine.set_override("goblin", "rogue", "hidden", source="sneak")
    await engine.recalculate_all(force=True)

Lookups fail soft: an unknown token id returns None (or False) and logs a
warning. State values outside the enums raise ``InvalidStateError`` before
anything changes. Host events (movement, conditions, lighting, walls) come
in through the ``on_*`` hooks, which narrow invalidation to what changed.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .calculator import VisibilityCalculator, VisibilityVerdict
from .config import EngineConfig
from .cover import CoverDetector
from .overrides import (
    OverrideReconciler,
    OverrideRecord,
    OverrideRequest,
    OverrideStore,
    grants_cover,
)
from .scheduler import PairResult, RecalculationScheduler
from .senses import SensingResolver
from .types import CoverLevel, VisibilityState
from .world import WorldState

logger = logging.getLogger(__name__)


class AutoVisibilityEngine:
    def __init__(
        self,
        world: WorldState,
        config: EngineConfig | None = None,
        store: OverrideStore | None = None,
    ) -> None:
        self.world = world
        self.config = config or EngineConfig()
        self.store = store or OverrideStore(
            token_exists=lambda tid: world.get_token(tid) is not None
        )
        self.reconciler = OverrideReconciler(self.store)
        self.resolver = SensingResolver(
            world.granted_senses, ttl=self.config.sense_cache_ttl
        )
        self.calculator = VisibilityCalculator(world, self.resolver, self.config)
        self.cover = CoverDetector(self.config)
        self.scheduler = RecalculationScheduler(
            world, self.calculator, self.cover, self.store, self.config
        )

    def _pair(self, observer_id: str, target_id: str) -> PairResult | None:
        if observer_id == target_id:
            return None
        return self.scheduler.get_or_compute(observer_id, target_id)

    # -- queries -----------------------------------------------------------

    def get_visibility(
        self, observer_id: str, target_id: str
    ) -> VisibilityState | None:
        """Effective visibility: the override if one exists, else computed."""

        def compute():
            result = self._pair(observer_id, target_id)
            return result.verdict.state if result is not None else None

        return self.reconciler.effective(observer_id, target_id, compute)

    def get_verdict(
        self, observer_id: str, target_id: str
    ) -> VisibilityVerdict | None:
        """The automatic verdict, ignoring any override."""
        result = self._pair(observer_id, target_id)
        return result.verdict if result is not None else None

    def get_cover(self, observer_id: str, target_id: str) -> CoverLevel | None:
        result = self._pair(observer_id, target_id)
        return result.cover if result is not None else None

    def calculate(
        self, observer_id: str, target_id: str
    ) -> VisibilityVerdict | None:
        """Run the calculator now, bypassing cache and overrides."""
        observer = self.world.get_token(observer_id)
        target = self.world.get_token(target_id)
        if observer is None or target is None:
            logger.warning(
                "calculate %s -> %s: token not found", observer_id, target_id
            )
            return None
        return self.calculator.calculate(observer, target)

    def has_line_of_sight(self, observer_id: str, target_id: str) -> bool:
        observer = self.world.get_token(observer_id)
        target = self.world.get_token(target_id)
        if observer is None or target is None:
            logger.warning(
                "line of sight %s -> %s: token not found", observer_id, target_id
            )
            return False
        return self.cover.token_line_of_sight(observer, target, self.world.walls())

    def visibility_matrix(self) -> dict[str, dict[str, VisibilityState]]:
        """Effective state for every ordered pair, observer id first."""
        ids = [t.id for t in self.world.tokens()]
        matrix: dict[str, dict[str, VisibilityState]] = {}
        for observer_id in ids:
            row: dict[str, VisibilityState] = {}
            for target_id in ids:
                if observer_id == target_id:
                    continue
                state = self.get_visibility(observer_id, target_id)
                if state is not None:
                    row[target_id] = state
            matrix[observer_id] = row
        return matrix

    # -- overrides ---------------------------------------------------------

    def get_override(self, observer_id: str, target_id: str) -> OverrideRecord | None:
        return self.store.get(observer_id, target_id)

    def set_override(
        self,
        observer_id: str,
        target_id: str,
        state: VisibilityState | str,
        source: str = "manual",
        *,
        symmetric: bool = False,
    ) -> bool:
        """Record a manual decision for the pair (and its reverse if asked).

        Each record carries the cover the pair has right now, computed fresh.
        Returns False without writing anything when a token is unknown or
        both ids name the same token.
        """
        state = VisibilityState.parse(state)
        if not self._writable_pair(observer_id, target_id):
            return False
        pairs = [(observer_id, target_id)]
        if symmetric:
            pairs.append((target_id, observer_id))
        for o, t in pairs:
            cover = self._current_cover(o, t)
            self.store.set(
                o,
                t,
                state,
                source,
                has_cover=grants_cover(cover),
                expected_cover=cover,
            )
        return True

    def apply_overrides(self, requests: Iterable[OverrideRequest]) -> int:
        """Bulk override write. Returns the number of records written.

        A state outside the enum rejects the whole batch before anything is
        written. Entries naming an unknown token, or the same token twice,
        are skipped with a warning like ``set_override`` does.
        """
        requests = list(requests)
        for request in requests:
            VisibilityState.parse(request.state)
        accepted = [
            r for r in requests if self._writable_pair(r.observer_id, r.target_id)
        ]
        records = self.store.set_many(accepted, cover_for=self._current_cover)
        return len(records)

    def validate_overrides(self, token_id: str | None = None) -> list[OverrideRecord]:
        """Overrides whose recorded cover no longer matches the scene.

        Limited to overrides involving ``token_id`` when given. Nothing is
        removed; the caller decides whether to keep or clear them.
        """
        outdated = []
        for record in self.store.records():
            if token_id is not None and token_id not in record.key:
                continue
            if self.store.get(*record.key) is None:
                continue
            cover = self._current_cover(*record.key)
            if record.expected_cover is not None:
                changed = cover != record.expected_cover
            else:
                changed = grants_cover(cover) != record.has_cover
            if changed:
                outdated.append(record)
        return outdated

    def _writable_pair(self, observer_id: str, target_id: str) -> bool:
        if observer_id == target_id:
            logger.warning("override ignored: %s -> itself", observer_id)
            return False
        for tid in (observer_id, target_id):
            if self.world.get_token(tid) is None:
                logger.warning("override ignored: token %s not found", tid)
                return False
        return True

    def _current_cover(self, observer_id: str, target_id: str) -> CoverLevel | None:
        observer = self.world.get_token(observer_id)
        target = self.world.get_token(target_id)
        if observer is None or target is None:
            return None
        return self.cover.detect_cover(
            observer, target, self.world.walls(), self.world.tokens()
        )

    def remove_override(self, observer_id: str, target_id: str) -> bool:
        return self.store.remove(observer_id, target_id)

    def clear_overrides_for_token(self, token_id: str) -> int:
        return self.store.clear_all_for_token(token_id)

    def clear_all_overrides(self) -> int:
        count = self.store.clear_all()
        logger.info("cleared %d overrides", count)
        return count

    # -- recalculation -----------------------------------------------------

    async def recalculate_all(self, force: bool = False) -> int:
        if force:
            self.resolver.invalidate()
        return await self.scheduler.recalculate_all(force)

    def invalidate(self, token_id: str) -> None:
        self.scheduler.invalidate(token_id)

    def invalidate_all(self) -> None:
        self.resolver.invalidate()
        self.scheduler.invalidate_all()

    async def wait_idle(self) -> None:
        await self.scheduler.wait_idle()

    # -- host events -------------------------------------------------------

    def on_token_updated(self, token_id: str) -> None:
        """Movement or condition change on one token."""
        token = self.world.get_token(token_id)
        if token is not None and token.actor_id:
            self.resolver.invalidate(token.actor_id)
        self.scheduler.invalidate(token_id)

    def on_senses_changed(self, actor_id: str) -> None:
        self.resolver.invalidate(actor_id)
        for token in self.world.tokens():
            if token.actor_id == actor_id:
                self.scheduler.invalidate(token.id)

    def on_token_deleted(self, token_id: str) -> None:
        # Overrides stay; they go stale and are dropped on next lookup.
        self.scheduler.forget_token(token_id)

    def on_lighting_changed(self) -> None:
        self.scheduler.invalidate_all()

    def on_walls_changed(self) -> None:
        self.scheduler.invalidate_all()
