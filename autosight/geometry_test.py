"""Tests for shared geometry helpers."""

import numpy as np
import pytest

from autosight.geometry import (
    disc_contains_footprint,
    disc_touches_footprint,
    footprint_edges,
    footprint_in_corridor,
    footprints_overlap,
    obb_corners,
    ray_segment_hits,
    segment_crosses_disc,
    segment_intersection,
    side_of_line,
    sightline_overlap_length,
    token_footprint,
)
from autosight.types import Token


def _square(cx, cy, half):
    return obb_corners(cx, cy, half, half)


class TestSegmentIntersection:
    def test_crossing(self):
        hit = segment_intersection(0, 0, 10, 0, 5, -5, 5, 5)
        assert hit is not None
        t, x, y = hit
        assert t == pytest.approx(0.5)
        assert (x, y) == pytest.approx((5.0, 0.0))

    def test_miss(self):
        assert segment_intersection(0, 0, 10, 0, 5, 1, 5, 5) is None

    def test_parallel(self):
        assert segment_intersection(0, 0, 10, 0, 0, 5, 10, 5) is None

    def test_touching_endpoint(self):
        """Endpoints count as intersecting."""
        assert segment_intersection(0, 0, 10, 0, 5, 0, 5, 5) is not None

    def test_degenerate_segment_never_hits(self):
        assert segment_intersection(0, 0, 10, 0, 5, 0, 5, 0) is None


class TestSideOfLine:
    def test_sign_flips_across_line(self):
        left = side_of_line(0, 0, 10, 0, 5, -1)
        right = side_of_line(0, 0, 10, 0, 5, 1)
        assert left < 0 < right

    def test_on_line(self):
        assert side_of_line(0, 0, 10, 0, 3, 0) == 0


class TestFootprints:
    def test_medium_token_is_one_square(self):
        corners = token_footprint(Token("a", 10, 10), 5.0)
        xs = [c[0] for c in corners]
        ys = [c[1] for c in corners]
        assert min(xs) == pytest.approx(7.5)
        assert max(xs) == pytest.approx(12.5)
        assert max(ys) - min(ys) == pytest.approx(5.0)

    def test_large_token_is_two_squares(self):
        corners = token_footprint(Token("a", 0, 0, size="large"), 5.0)
        xs = [c[0] for c in corners]
        assert max(xs) - min(xs) == pytest.approx(10.0)

    def test_edges_close_the_polygon(self):
        edges = footprint_edges(_square(0, 0, 1))
        assert len(edges) == 4
        assert edges[-1][2:] == edges[0][:2]

    def test_overlap(self):
        assert footprints_overlap(_square(0, 0, 2), _square(1, 1, 2))

    def test_touching_is_not_overlap(self):
        assert not footprints_overlap(_square(0, 0, 1), _square(2, 0, 1))

    def test_separate(self):
        assert not footprints_overlap(_square(0, 0, 1), _square(10, 0, 1))


class TestShapelyHelpers:
    def test_sightline_through_square(self):
        length = sightline_overlap_length((-10, 0), (10, 0), _square(0, 0, 2))
        assert length == pytest.approx(4.0)

    def test_sightline_missing_square(self):
        assert sightline_overlap_length((-10, 5), (10, 5), _square(0, 0, 2)) == 0.0

    def test_zero_length_sightline(self):
        assert sightline_overlap_length((0, 0), (0, 0), _square(0, 0, 2)) == 0.0

    def test_disc_contains(self):
        assert disc_contains_footprint(0, 0, 10, _square(0, 0, 2.5))
        assert not disc_contains_footprint(0, 0, 3, _square(0, 0, 2.5))

    def test_disc_touches(self):
        assert disc_touches_footprint(0, 0, 3, _square(5, 0, 2.5))
        assert not disc_touches_footprint(0, 0, 1, _square(5, 0, 2.5))

    def test_zero_radius_disc(self):
        assert not disc_touches_footprint(0, 0, 0, _square(0, 0, 2.5))

    def test_segment_crosses_disc(self):
        assert segment_crosses_disc((-10, 0), (10, 0), 0, 3, 5)
        assert not segment_crosses_disc((-10, 0), (10, 0), 0, 10, 5)

    def test_footprint_in_corridor(self):
        a = _square(0, 0, 2.5)
        b = _square(20, 0, 2.5)
        assert footprint_in_corridor(a, b, _square(10, 0, 2.5))
        # Off the centre line but inside the band between the squares.
        assert footprint_in_corridor(a, b, _square(10, 4, 2.5))
        assert not footprint_in_corridor(a, b, _square(10, 30, 2.5))


class TestRaySegmentHits:
    def test_matrix_shape(self):
        origins = np.array([[0.0, 0.0], [0.0, 10.0]])
        targets = np.array([[20.0, 0.0], [20.0, 10.0]])
        segs = np.array([[10.0, -5.0, 10.0, 5.0]])
        hit, t = ray_segment_hits(origins, targets, segs)
        assert hit.shape == (2, 1)
        assert hit[0, 0]
        assert not hit[1, 0]
        assert t[0, 0] == pytest.approx(0.5)
        assert np.isinf(t[1, 0])

    def test_hit_at_target_point_does_not_count(self):
        origins = np.array([[0.0, 0.0]])
        targets = np.array([[10.0, 0.0]])
        segs = np.array([[10.0, -5.0, 10.0, 5.0]])
        hit, _ = ray_segment_hits(origins, targets, segs)
        assert not hit[0, 0]

    def test_empty_inputs(self):
        hit, t = ray_segment_hits(
            np.zeros((0, 2)), np.zeros((0, 2)), np.array([[0.0, 0.0, 1.0, 1.0]])
        )
        assert hit.shape == (0, 1)
        assert t.shape == (0, 1)

    def test_matches_scalar_intersection(self):
        rng = np.random.default_rng(7)
        origins = rng.uniform(-20, 20, size=(30, 2))
        targets = rng.uniform(-20, 20, size=(30, 2))
        segs = rng.uniform(-20, 20, size=(12, 4))
        hit, _ = ray_segment_hits(origins, targets, segs)
        for r in range(len(origins)):
            for s in range(len(segs)):
                scalar = segment_intersection(*origins[r], *targets[r], *segs[s])
                expected = scalar is not None and scalar[0] < 1.0 - 1e-6
                assert hit[r, s] == expected
