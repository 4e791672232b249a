"""Tests for the pair cache and the debounced recalculation scheduler."""

import asyncio

from autosight.calculator import VisibilityCalculator
from autosight.config import EngineConfig
from autosight.cover import CoverDetector
from autosight.overrides import OverrideStore
from autosight.scheduler import RecalculationScheduler, ordered_pairs
from autosight.types import CoverLevel, SceneState, Token, VisibilityState, Wall
from autosight.world import SceneWorld


# Corners of a square, so no token stands between two others.
CORNERS = [(0.0, 0.0), (40.0, 0.0), (40.0, 40.0), (0.0, 40.0)]


def _make(n_tokens=3, config=None, walls=(), tokens=None):
    config = config or EngineConfig(debounce_seconds=0.01)
    if tokens is None:
        tokens = [Token(f"t{i}", *CORNERS[i]) for i in range(n_tokens)]
    world = SceneWorld(SceneState(tokens=tokens, walls=list(walls)))
    store = OverrideStore(token_exists=lambda tid: world.get_token(tid) is not None)
    scheduler = RecalculationScheduler(
        world,
        VisibilityCalculator(world, config=config),
        CoverDetector(config),
        store,
        config,
    )
    return world, store, scheduler


class TestOrderedPairs:
    def test_excludes_self_pairs(self):
        tokens = [Token("a", 0, 0), Token("b", 1, 0), Token("c", 2, 0)]
        pairs = [(o.id, t.id) for o, t in ordered_pairs(tokens)]
        assert len(pairs) == 6
        assert ("a", "a") not in pairs


class TestGetOrCompute:
    def test_computes_and_caches(self):
        _, _, scheduler = _make()
        first = scheduler.get_or_compute("t0", "t1")
        assert first.state == VisibilityState.OBSERVED
        assert first.cover == CoverLevel.NONE
        assert scheduler.get_or_compute("t0", "t1") is first
        assert scheduler.pairs_computed == 1

    def test_missing_token(self):
        _, _, scheduler = _make()
        assert scheduler.get_or_compute("t0", "ghost") is None

    def test_override_applied_on_publish(self):
        _, store, scheduler = _make()
        store.set("t0", "t1", "hidden")
        result = scheduler.get_or_compute("t0", "t1")
        assert result.state == VisibilityState.HIDDEN
        assert result.verdict.state == VisibilityState.OBSERVED
        assert result.overridden

    def test_override_change_updates_cached_pair(self):
        _, store, scheduler = _make()
        scheduler.get_or_compute("t0", "t1")
        store.set("t0", "t1", "undetected")
        assert scheduler.cache.get("t0", "t1").state == VisibilityState.UNDETECTED
        store.remove("t0", "t1")
        assert scheduler.cache.get("t0", "t1").state == VisibilityState.OBSERVED


class TestInvalidation:
    def test_only_pairs_with_token_dropped(self):
        _, _, scheduler = _make(4)
        asyncio.run(scheduler.recalculate_all())
        assert len(scheduler.cache) == 12
        scheduler.invalidate("t1")
        # t1 appears in 3 outgoing and 3 incoming pairs
        assert len(scheduler.cache) == 6
        assert scheduler.pending

    def test_flush_recomputes_only_dirty_pairs(self):
        _, _, scheduler = _make(4)
        asyncio.run(scheduler.recalculate_all())
        computed = scheduler.pairs_computed
        scheduler.invalidate("t2")
        published = asyncio.run(scheduler.flush())
        assert published == 6
        assert scheduler.pairs_computed - computed == 6
        assert len(scheduler.cache) == 12

    def test_moving_behind_wall_changes_result(self):
        wall = Wall("w", 50, -20, 50, 20)
        world, _, scheduler = _make(2, walls=[wall])
        assert scheduler.get_or_compute("t0", "t1").state == VisibilityState.OBSERVED
        world.move_token("t1", 60, 0)
        scheduler.invalidate("t1")
        asyncio.run(scheduler.flush())
        result = scheduler.cache.get("t0", "t1")
        assert result.state == VisibilityState.UNDETECTED
        assert result.cover == CoverLevel.GREATER



def _blocker_scene(config=None):
    return _make(
        config=config,
        tokens=[
            Token("a", 0, 0),
            Token("b", 20, 0),
            Token("c", 10, 30),
            Token("d", 10, -60),
        ],
    )


class TestBlockerMoves:
    def test_blocker_stepping_in_drops_pair(self):
        world, _, scheduler = _blocker_scene()
        assert scheduler.get_or_compute("a", "b").cover == CoverLevel.NONE
        scheduler.get_or_compute("a", "d")
        world.move_token("c", 10, 0)
        scheduler.invalidate("c")
        assert scheduler.cache.get("a", "b") is None
        assert scheduler.cache.get("a", "d") is not None
        assert scheduler.get_or_compute("a", "b").cover == CoverLevel.GREATER

    def test_blocker_stepping_out_drops_pair(self):
        world, _, scheduler = _blocker_scene()
        world.move_token("c", 10, 0)
        assert scheduler.get_or_compute("a", "b").cover == CoverLevel.GREATER
        world.move_token("c", 10, 30)
        scheduler.invalidate("c")
        assert scheduler.get_or_compute("a", "b").cover == CoverLevel.NONE

    def test_deleted_blocker_drops_pair(self):
        world, _, scheduler = _blocker_scene()
        world.move_token("c", 10, 0)
        scheduler.get_or_compute("a", "b")
        world.remove_token("c")
        scheduler.forget_token("c")
        assert scheduler.get_or_compute("a", "b").cover == CoverLevel.NONE

    def test_blocker_moving_mid_batch(self):
        config = EngineConfig(debounce_seconds=10.0, batch_chunk_size=1)
        world, _, scheduler = _blocker_scene(config)

        async def scenario():
            batch = asyncio.ensure_future(scheduler.recalculate_all(force=True))
            await asyncio.sleep(0)
            world.move_token("c", 10, 0)
            scheduler.invalidate("c")
            return await batch

        # Only the pairs between a or b and d survive.
        assert asyncio.run(scenario()) == 4
        assert scheduler.cache.get("a", "b") is None
        assert scheduler.get_or_compute("a", "b").cover == CoverLevel.GREATER

class TestDebounce:
    def test_burst_collapses_into_one_batch(self):
        _, _, scheduler = _make(3)

        async def scenario():
            await scheduler.recalculate_all()
            batches = scheduler.batches_run
            for _ in range(5):
                scheduler.invalidate("t0")
                await asyncio.sleep(0)
            await asyncio.sleep(0.05)
            await scheduler.wait_idle()
            return scheduler.batches_run - batches

        assert asyncio.run(scenario()) == 1
        assert len(scheduler.cache) == 6

    def test_wait_idle_runs_pending_batch(self):
        config = EngineConfig(debounce_seconds=10.0)
        _, _, scheduler = _make(3, config=config)

        async def scenario():
            scheduler.invalidate("t1")
            await scheduler.wait_idle()

        asyncio.run(scenario())
        assert not scheduler.pending
        assert len(scheduler.cache) == 6


class TestBatchSafety:
    def test_override_written_mid_batch_wins(self):
        config = EngineConfig(debounce_seconds=0.01, batch_chunk_size=1)
        _, store, scheduler = _make(3, config=config)

        async def scenario():
            batch = asyncio.ensure_future(scheduler.recalculate_all(force=True))
            await asyncio.sleep(0)
            store.set("t0", "t1", "hidden")
            await batch

        asyncio.run(scenario())
        assert scheduler.cache.get("t0", "t1").state == VisibilityState.HIDDEN

    def test_invalidation_mid_batch_discards_stale_pairs(self):
        config = EngineConfig(debounce_seconds=10.0, batch_chunk_size=1)
        world, _, scheduler = _make(3, config=config)

        async def scenario():
            batch = asyncio.ensure_future(scheduler.recalculate_all(force=True))
            await asyncio.sleep(0)
            scheduler.invalidate("t2")
            published = await batch
            return published

        published = asyncio.run(scenario())
        assert published == 2
        assert scheduler.cache.get("t0", "t2") is None
        assert scheduler.cache.get("t0", "t1") is not None

    def test_failing_pair_is_skipped(self):
        _, _, scheduler = _make(3)
        original = scheduler.compute_pair

        def flaky(observer, target, lighting):
            if observer.id == "t0" and target.id == "t1":
                raise RuntimeError("boom")
            return original(observer, target, lighting)

        scheduler.compute_pair = flaky
        published = asyncio.run(scheduler.recalculate_all(force=True))
        assert published == 5
        assert scheduler.cache.get("t0", "t1") is None

    def test_recalculate_twice_is_idempotent(self):
        _, store, scheduler = _make(3)
        store.set("t1", "t2", "concealed")
        asyncio.run(scheduler.recalculate_all(force=True))
        first = {
            (r.observer_id, r.target_id): r.state for r in scheduler.cache.results()
        }
        asyncio.run(scheduler.recalculate_all(force=True))
        second = {
            (r.observer_id, r.target_id): r.state for r in scheduler.cache.results()
        }
        assert first == second
