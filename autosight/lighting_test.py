"""Tests for light level sampling."""

from autosight.lighting import (
    LightingPass,
    darkness_along,
    sample_light,
    sample_token_light,
)
from autosight.types import LightEmitter, LightLevel, Token


def _torch(x, y, bright=20, dim=40, em_id="torch"):
    return LightEmitter(em_id, x, y, bright_radius=bright, dim_radius=dim)


def _darkness(x, y, radius, rank, em_id="dark"):
    return LightEmitter(em_id, x, y, dim_radius=radius, darkness_rank=rank)


class TestSampleLight:
    def test_ambient_bright_without_emitters(self):
        assert sample_light((0, 0), []).level == LightLevel.BRIGHT

    def test_global_darkness_without_emitters(self):
        sample = sample_light((0, 0), [], global_darkness=True)
        assert sample.level == LightLevel.DARKNESS
        assert sample.darkness_rank == 0

    def test_bright_and_dim_radii(self):
        lights = [_torch(0, 0)]
        assert sample_light((10, 0), lights, global_darkness=True).level == (
            LightLevel.BRIGHT
        )
        assert sample_light((30, 0), lights, global_darkness=True).level == (
            LightLevel.DIM
        )
        assert sample_light((50, 0), lights, global_darkness=True).level == (
            LightLevel.DARKNESS
        )

    def test_radii_are_inclusive(self):
        lights = [_torch(0, 0)]
        assert sample_light((20, 0), lights, global_darkness=True).level == (
            LightLevel.BRIGHT
        )
        assert sample_light((40, 0), lights, global_darkness=True).level == (
            LightLevel.DIM
        )

    def test_brightest_light_wins(self):
        lights = [_torch(0, 0, bright=0, dim=30, em_id="a"), _torch(20, 0, em_id="b")]
        assert sample_light((10, 0), lights, global_darkness=True).level == (
            LightLevel.BRIGHT
        )

    def test_darkness_overrides_light(self):
        lights = [_torch(0, 0), _darkness(0, 0, 10, 2)]
        sample = sample_light((0, 0), lights)
        assert sample.level == LightLevel.DARKNESS
        assert sample.darkness_rank == 2
        assert sample.is_magical_darkness()

    def test_highest_rank_wins(self):
        lights = [_darkness(0, 0, 10, 1, "d1"), _darkness(2, 0, 10, 4, "d4")]
        assert sample_light((0, 0), lights).darkness_rank == 4

    def test_inactive_emitters_ignored(self):
        dark = _darkness(0, 0, 10, 3)
        dark.active = False
        assert sample_light((0, 0), [dark]).level == LightLevel.BRIGHT

    def test_rank_zero_is_not_magical(self):
        sample = sample_light((0, 0), [_darkness(0, 0, 10, 0)])
        assert sample.level == LightLevel.DARKNESS
        assert not sample.is_magical_darkness()


class TestSampleTokenLight:
    def test_darkness_must_contain_footprint(self):
        token = Token("t", 8, 0)
        # Disc reaches the center but not the far edge of the square.
        partial = _darkness(0, 0, 9, 4)
        assert sample_token_light(token, [partial]).level == LightLevel.BRIGHT
        full = _darkness(0, 0, 20, 4)
        assert sample_token_light(token, [full]).darkness_rank == 4

    def test_light_only_needs_to_touch(self):
        token = Token("t", 22, 0)
        light = _torch(0, 0, bright=10, dim=20)
        sample = sample_token_light(token, [light], global_darkness=True)
        assert sample.level == LightLevel.DIM

    def test_bright_when_center_inside_bright_radius(self):
        token = Token("t", 5, 0)
        sample = sample_token_light(token, [_torch(0, 0)], global_darkness=True)
        assert sample.level == LightLevel.BRIGHT

    def test_bright_when_edge_inside_bright_radius(self):
        # Square spans x 9.5..14.5; only its near edge is within 10.
        token = Token("t", 12, 0)
        light = _torch(0, 0, bright=10, dim=20)
        sample = sample_token_light(token, [light], global_darkness=True)
        assert sample.level == LightLevel.BRIGHT

    def test_beyond_dim_radius_is_dark(self):
        token = Token("t", 27, 0)
        light = _torch(0, 0, bright=10, dim=20)
        sample = sample_token_light(token, [light], global_darkness=True)
        assert sample.level == LightLevel.DARKNESS

    def test_agrees_with_point_sampler(self):
        light = _torch(0, 0, bright=10, dim=20)
        for x in (0, 15, 40):
            token = Token("t", x, 0)
            assert (
                sample_token_light(token, [light], global_darkness=True).level
                == sample_light(
                    (x - 2.5, 0), [light], global_darkness=True
                ).level
            )


class TestDarknessAlong:
    def test_crossing_darkness(self):
        emitters = [_darkness(10, 0, 3, 2)]
        assert darkness_along((0, 0), (20, 0), emitters) == 2

    def test_clear_path(self):
        emitters = [_darkness(10, 20, 3, 2)]
        assert darkness_along((0, 0), (20, 0), emitters) is None

    def test_lights_are_ignored(self):
        assert darkness_along((0, 0), (20, 0), [_torch(10, 0)]) is None


class TestLightingPass:
    def test_memoizes_per_token(self):
        token = Token("t", 0, 0)
        lighting = LightingPass([_torch(0, 0)], global_darkness=True)
        first = lighting.for_token(token)
        assert lighting.for_token(token) is first

    def test_drops_inactive_emitters(self):
        dark = _darkness(0, 0, 10, 1)
        dark.active = False
        lighting = LightingPass([dark, _torch(0, 0)])
        assert [em.id for em in lighting.emitters] == ["torch"]
