"""Per-pair result cache and debounced recalculation.

Every ordered (observer, target) pair has at most one cached ``PairResult``:
the automatic verdict, the cover tier, and the effective state after the
override store has had its say.

Invalidation is narrow. ``invalidate(token_id)`` drops the pairs that involve
that token and marks it dirty. Because tokens also block each other, it
further drops every cached pair whose corridor (the hull of observer and
target footprints) the token reaches into, at its last computed position or
its current one. The next batch recomputes exactly those pairs (plus any
pair that was never computed). Bursts of events, such
as the steps of one drag-move, each re-arm a single ``call_later`` timer, so
the whole burst collapses into one batch.

A batch computes in chunks, yielding to the event loop between chunks, and
publishes at the end. Two rules keep an in-flight batch from clobbering
newer state:

  * each token carries an epoch bumped by every invalidation; a computed
    pair is discarded when either of its tokens changed epoch since the
    batch started, or when a token that did lay in its corridor (the newer
    invalidation has already queued it again);
  * the override store is consulted at publish time, not at compute time,
    so an override written while the batch was computing still wins.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterator

from .calculator import VisibilityCalculator, VisibilityVerdict
from .config import EngineConfig
from .cover import CoverDetector
from .geometry import Corners, footprint_in_corridor, token_footprint
from .lighting import LightingPass
from .overrides import OverrideStore, PairKey
from .types import CoverLevel, Token, VisibilityState
from .world import WorldState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PairResult:
    observer_id: str
    target_id: str
    verdict: VisibilityVerdict
    cover: CoverLevel
    state: VisibilityState
    overridden: bool = False


class VisibilityCache:
    def __init__(self) -> None:
        self._pairs: dict[PairKey, PairResult] = {}

    def __len__(self) -> int:
        return len(self._pairs)

    def __contains__(self, key: PairKey) -> bool:
        return key in self._pairs

    def get(self, observer_id: str, target_id: str) -> PairResult | None:
        return self._pairs.get((observer_id, target_id))

    def put(self, result: PairResult) -> None:
        self._pairs[(result.observer_id, result.target_id)] = result

    def drop(self, observer_id: str, target_id: str) -> bool:
        return self._pairs.pop((observer_id, target_id), None) is not None

    def drop_token(self, token_id: str) -> int:
        keys = [k for k in self._pairs if token_id in k]
        for key in keys:
            del self._pairs[key]
        return len(keys)

    def clear(self) -> None:
        self._pairs.clear()

    def results(self) -> list[PairResult]:
        return list(self._pairs.values())


def ordered_pairs(tokens: list[Token]) -> Iterator[tuple[Token, Token]]:
    for observer in tokens:
        for target in tokens:
            if observer.id != target.id:
                yield observer, target


class RecalculationScheduler:
    def __init__(
        self,
        world: WorldState,
        calculator: VisibilityCalculator,
        cover: CoverDetector,
        store: OverrideStore,
        config: EngineConfig | None = None,
    ) -> None:
        self.world = world
        self.calculator = calculator
        self.cover = cover
        self.store = store
        self.config = config or EngineConfig()
        self.cache = VisibilityCache()

        self._dirty: set[str] = set()
        self._epochs: dict[str, int] = {}
        # Token snapshots as of the last computation, for blocker moves.
        self._seen: dict[str, Token] = {}
        self._global_epoch = 0
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None

        self.batches_run = 0
        self.pairs_computed = 0

        store.subscribe(self._on_override_changed)

    # -- computing ---------------------------------------------------------

    def compute_pair(
        self, observer: Token, target: Token, lighting: LightingPass
    ) -> tuple[VisibilityVerdict, CoverLevel]:
        verdict = self.calculator.calculate(observer, target, lighting)
        cover = self.cover.detect_cover(
            observer, target, self.world.walls(), self.world.tokens()
        )
        self.pairs_computed += 1
        return verdict, cover

    def _publish(
        self,
        observer_id: str,
        target_id: str,
        verdict: VisibilityVerdict,
        cover: CoverLevel,
    ) -> PairResult:
        record = self.store.get(observer_id, target_id)
        result = PairResult(
            observer_id=observer_id,
            target_id=target_id,
            verdict=verdict,
            cover=cover,
            state=record.state if record is not None else verdict.state,
            overridden=record is not None,
        )
        self.cache.put(result)
        return result

    def get_or_compute(self, observer_id: str, target_id: str) -> PairResult | None:
        cached = self.cache.get(observer_id, target_id)
        if cached is not None:
            return cached
        observer = self.world.get_token(observer_id)
        target = self.world.get_token(target_id)
        if observer is None or target is None:
            logger.warning(
                "cannot compute %s -> %s: token not found", observer_id, target_id
            )
            return None
        self._remember(self.world.tokens())
        verdict, cover = self.compute_pair(
            observer, target, self.calculator.lighting_pass()
        )
        return self._publish(observer_id, target_id, verdict, cover)

    # -- invalidation ------------------------------------------------------

    def invalidate(self, token_id: str) -> None:
        dropped = self.cache.drop_token(token_id)
        dropped += self._drop_blocked_pairs(token_id)
        self._epochs[token_id] = self._epochs.get(token_id, 0) + 1
        self._dirty.add(token_id)
        logger.debug("invalidated %s (%d pairs)", token_id, dropped)
        self._schedule()

    def invalidate_all(self) -> None:
        self.cache.clear()
        self._global_epoch += 1
        self._dirty.clear()
        logger.debug("invalidated all pairs")
        self._schedule()

    def forget_token(self, token_id: str) -> None:
        """Drop cached pairs for a deleted token without queueing work."""
        self.cache.drop_token(token_id)
        self._drop_blocked_pairs(token_id)
        self._seen.pop(token_id, None)
        self._epochs[token_id] = self._epochs.get(token_id, 0) + 1
        self._dirty.discard(token_id)

    def _remember(self, tokens: list[Token]) -> None:
        for token in tokens:
            self._seen[token.id] = token

    def _drop_blocked_pairs(self, token_id: str) -> int:
        """Drop cached pairs the token could block, before or after its change."""
        gd = self.config.grid_distance
        current = self.world.get_token(token_id)
        shapes = [
            token_footprint(snapshot, gd)
            for snapshot in (self._seen.get(token_id), current)
            if snapshot is not None
        ]
        if current is not None:
            self._seen[token_id] = current
        if not shapes:
            return 0

        dropped = 0
        for result in self.cache.results():
            if token_id in (result.observer_id, result.target_id):
                continue
            observer = self.world.get_token(result.observer_id)
            target = self.world.get_token(result.target_id)
            if observer is None or target is None:
                continue
            if self._in_corridor(observer, target, shapes):
                self.cache.drop(result.observer_id, result.target_id)
                dropped += 1
        return dropped

    def _in_corridor(
        self, observer: Token, target: Token, shapes: list[Corners]
    ) -> bool:
        gd = self.config.grid_distance
        a = token_footprint(observer, gd)
        b = token_footprint(target, gd)
        return any(footprint_in_corridor(a, b, shape) for shape in shapes)

    def _on_override_changed(self, observer_id: str, target_id: str) -> None:
        cached = self.cache.get(observer_id, target_id)
        if cached is None:
            return
        self._publish(observer_id, target_id, cached.verdict, cached.cover)

    # -- batching ----------------------------------------------------------

    @property
    def pending(self) -> bool:
        return self._timer is not None or bool(self._dirty)

    def _schedule(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the next flush or get_or_compute picks the work up.
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.config.debounce_seconds, self._fire)

    def _fire(self) -> None:
        self._timer = None
        self._task = asyncio.ensure_future(self.flush())

    def _stale_pairs(self, tokens: list[Token]) -> list[tuple[Token, Token]]:
        return [
            (o, t)
            for o, t in ordered_pairs(tokens)
            if o.id in self._dirty
            or t.id in self._dirty
            or (o.id, t.id) not in self.cache
        ]

    async def flush(self) -> int:
        """Recompute every dirty or missing pair. Returns pairs published."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        tokens = self.world.tokens()
        pairs = self._stale_pairs(tokens)
        self._dirty.clear()
        if not pairs:
            return 0
        self._remember(tokens)

        start_epochs = {t.id: self._epochs.get(t.id, 0) for t in tokens}
        start_global = self._global_epoch
        lighting = self.calculator.lighting_pass()
        chunk = self.config.batch_chunk_size

        computed: list[tuple[Token, Token, VisibilityVerdict, CoverLevel]] = []
        for i, (observer, target) in enumerate(pairs):
            try:
                verdict, cover = self.compute_pair(observer, target, lighting)
            except Exception:
                logger.exception(
                    "visibility for %s -> %s failed; skipped",
                    observer.id,
                    target.id,
                )
                continue
            computed.append((observer, target, verdict, cover))
            if (i + 1) % chunk == 0:
                await asyncio.sleep(0)

        changed = {
            tid
            for tid, epoch in start_epochs.items()
            if self._epochs.get(tid, 0) != epoch
        }
        moved_shapes = self._moved_shapes(tokens, changed)

        published = 0
        for observer, target, verdict, cover in computed:
            if self._global_epoch != start_global:
                break
            if observer.id in changed or target.id in changed:
                continue
            if moved_shapes and self._in_corridor(observer, target, moved_shapes):
                continue
            self._publish(observer.id, target.id, verdict, cover)
            published += 1

        self.batches_run += 1
        logger.debug(
            "batch %d: %d pairs computed, %d published",
            self.batches_run,
            len(computed),
            published,
        )
        return published

    def _moved_shapes(self, tokens: list[Token], changed: set[str]) -> list[Corners]:
        """Footprints, then and now, of tokens invalidated during a batch."""
        gd = self.config.grid_distance
        shapes: list[Corners] = []
        for token in tokens:
            if token.id not in changed:
                continue
            shapes.append(token_footprint(token, gd))
            current = self.world.get_token(token.id)
            if current is not None:
                shapes.append(token_footprint(current, gd))
        return shapes

    async def recalculate_all(self, force: bool = False) -> int:
        """Bring every pair up to date.

        ``force`` throws the cache away first; otherwise only dirty and
        never-computed pairs are recomputed.
        """
        if force:
            self.cache.clear()
            self._global_epoch += 1
        return await self.flush()

    async def wait_idle(self) -> None:
        """Run any pending debounced batch now and wait for it."""
        while self._timer is not None or (
            self._task is not None and not self._task.done()
        ):
            if self._timer is not None:
                await self.flush()
            elif self._task is not None:
                await self._task

