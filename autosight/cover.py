"""Line of sight and cover between tokens.

Two questions, answered from the same wall set:

``has_line_of_sight(p1, p2, walls)``
    Is there a sight-blocking wall between the two points? A wall blocks
    when it has ``blocks_sight``, is not an open door, its segment crosses
    the sightline, and (for one-directional walls) the observer stands on
    its blocking side. ``token_line_of_sight`` wraps this with a
    corner-sampling fallback for creatures larger than one square.

``detect_cover(observer, target, walls, tokens, config)``
    Which cover tier does the target get? Rather than a binary block, the
    target's silhouette (its footprint width projected perpendicular to the
    sightline, times its height) is sampled on a grid, a ray is cast from
    the observer's eye to each sample, and the fraction of rays stopped by
    walls or other creatures is banded into a tier:

        pct >= wall_greater_threshold (and greater allowed) -> greater
        pct >= wall_standard_threshold                       -> standard
        0 < pct                                              -> lesser
        pct == 0                                             -> none

    In ``"size"`` mode creatures do not occlude samples; instead any
    creature on the center sightline gives lesser cover, or standard when
    it is two or more sizes larger than both parties.

Manual per-wall cover overrides are applied around the geometry:

  * a cover-granting override (lesser/standard/greater) fires whenever its
    wall crosses the center sightline, whatever the wall's direction or
    sight flag says; the highest firing tier is the result;
  * a ``none`` override removes that wall from the occlusion test. It only
    matters when the wall would have blocked naturally, so it can take
    cover away but never invent any, and it has no effect while a
    cover-granting override fires on another wall.

Tokens carry the same ``cover_override`` field and behave like walls when
they are eligible blockers on the sightline.

Degenerate inputs fall back to the least restrictive answer: zero-length
walls never intersect, and a zero-distance pair has LOS and no cover.
"""

from __future__ import annotations

import logging
from typing import Iterable

import numpy as np

from .config import EngineConfig
from .geometry import (
    Point,
    footprint_edges,
    footprints_overlap,
    ray_segment_hits,
    segment_intersection,
    side_of_line,
    sightline_overlap_length,
    token_footprint,
)
from .types import SIZES, CoverLevel, Token, Wall, WallDirection, best_cover

logger = logging.getLogger(__name__)

_INSET = 0.95


def token_height(token: Token, grid_distance: float) -> float:
    return SIZES[token.size][1] * grid_distance


def elevation_span(token: Token, grid_distance: float) -> tuple[float, float]:
    return (token.elevation, token.elevation + token_height(token, grid_distance))


def eye_height(token: Token, grid_distance: float) -> float:
    return token.elevation + token_height(token, grid_distance) / 2


def wall_in_elevation_range(
    wall: Wall, span: tuple[float, float] | None
) -> bool:
    if span is None:
        return True
    bottom, top = span
    if wall.height_bottom is not None and wall.height_bottom > top:
        return False
    if wall.height_top is not None and wall.height_top < bottom:
        return False
    return True


def wall_blocks_naturally(wall: Wall, origin: Point) -> bool:
    """Would this wall block sight from ``origin``, ignoring overrides?"""
    if not wall.blocks_sight:
        return False
    if wall.door and wall.door_open:
        return False
    if wall.direction == WallDirection.BOTH:
        return True
    cross = side_of_line(wall.x1, wall.y1, wall.x2, wall.y2, origin[0], origin[1])
    if wall.direction == WallDirection.LEFT:
        return cross < 0
    return cross > 0


def _crosses(p1: Point, p2: Point, wall: Wall) -> bool:
    if wall.is_degenerate:
        return False
    hit = segment_intersection(
        p1[0], p1[1], p2[0], p2[1], wall.x1, wall.y1, wall.x2, wall.y2
    )
    # Touching the wall exactly at the far end point does not put it between.
    return hit is not None and hit[0] < 1.0 - 1e-6


def has_line_of_sight(
    p1: Point,
    p2: Point,
    walls: Iterable[Wall],
    *,
    span: tuple[float, float] | None = None,
) -> bool:
    if p1 == p2:
        return True
    for wall in walls:
        if not wall_blocks_naturally(wall, p1):
            continue
        if not wall_in_elevation_range(wall, span):
            continue
        if _crosses(p1, p2, wall):
            return False
    return True


def sound_blocked(
    p1: Point,
    p2: Point,
    walls: Iterable[Wall],
    *,
    span: tuple[float, float] | None = None,
) -> bool:
    """True when a sound-blocking wall stands between the two points."""
    if p1 == p2:
        return False
    for wall in walls:
        if not wall.blocks_sound or (wall.door and wall.door_open):
            continue
        if not wall_in_elevation_range(wall, span):
            continue
        if _crosses(p1, p2, wall):
            return True
    return False


def pair_span(
    observer: Token, target: Token, grid_distance: float
) -> tuple[float, float]:
    ob, ot = elevation_span(observer, grid_distance)
    tb, tt = elevation_span(target, grid_distance)
    return (min(ob, tb), max(ot, tt))


def _sample_points(token: Token, grid_distance: float) -> list[Point]:
    """Center, plus inset corners for anything bigger than one square."""
    points: list[Point] = [token.center]
    if token.width > 1 or token.length > 1:
        half_w = token.width * grid_distance / 2 * _INSET
        half_l = token.length * grid_distance / 2 * _INSET
        for sx, sy in ((-1, -1), (1, -1), (1, 1), (-1, 1)):
            points.append((token.x + sx * half_w, token.y + sy * half_l))
    return points


def token_line_of_sight(
    observer: Token,
    target: Token,
    walls: list[Wall],
    grid_distance: float = 5.0,
) -> bool:
    if observer.center == target.center:
        return True
    span = pair_span(observer, target, grid_distance)
    if has_line_of_sight(observer.center, target.center, walls, span=span):
        return True

    origins = _sample_points(observer, grid_distance)
    targets = _sample_points(target, grid_distance)
    if len(origins) == 1 and len(targets) == 1:
        return False

    for origin in origins:
        blocking = [
            w
            for w in walls
            if not w.is_degenerate
            and wall_blocks_naturally(w, origin)
            and wall_in_elevation_range(w, span)
        ]
        if not blocking:
            return True
        segs = np.array([(w.x1, w.y1, w.x2, w.y2) for w in blocking])
        hit, _ = ray_segment_hits(
            np.array([origin] * len(targets), dtype=np.float64),
            np.array(targets, dtype=np.float64),
            segs,
        )
        if not np.all(hit.any(axis=1)):
            return True
    return False


def eligible_blockers(
    observer: Token,
    target: Token,
    tokens: Iterable[Token],
    config: EngineConfig,
) -> list[Token]:
    """Creatures that can stand between the pair and grant cover."""
    gd = config.grid_distance
    obs_fp = token_footprint(observer, gd)
    tgt_fp = token_footprint(target, gd)
    out: list[Token] = []
    for blocker in tokens:
        if blocker.id in (observer.id, target.id):
            continue
        if blocker.hidden:
            continue
        if blocker.traits & {"loot", "hazard"}:
            continue
        if blocker.has_condition("prone") and not config.allow_prone_blockers:
            continue
        if blocker.has_condition("dead") and config.ignore_dead_blockers:
            continue
        if blocker.size == "tiny" and target.size != "tiny":
            continue
        fp = token_footprint(blocker, gd)
        if footprints_overlap(fp, obs_fp) or footprints_overlap(fp, tgt_fp):
            continue
        out.append(blocker)
    return out


def resolve_cover_overrides(
    p1: Point,
    p2: Point,
    walls: Iterable[Wall],
    blockers: Iterable[Token],
    *,
    span: tuple[float, float] | None = None,
    grid_distance: float = 5.0,
) -> tuple[CoverLevel | None, set[str]]:
    """Scan overrides on the center sightline.

    Returns ``(granted, suppressed_wall_ids)``: the highest cover-granting
    override that fires (or None), and the ids of walls whose ``none``
    override takes them out of the occlusion test.
    """
    granted: list[CoverLevel] = []
    suppressed: set[str] = set()
    for wall in walls:
        override = wall.cover_override
        if override is None:
            continue
        if override == CoverLevel.NONE:
            if wall_blocks_naturally(wall, p1):
                suppressed.add(wall.id)
            continue
        if not wall_in_elevation_range(wall, span):
            continue
        if _crosses(p1, p2, wall):
            granted.append(override)

    for blocker in blockers:
        override = blocker.cover_override
        if override is None or override == CoverLevel.NONE:
            continue
        fp = token_footprint(blocker, grid_distance)
        if sightline_overlap_length(p1, p2, fp) > 0:
            granted.append(override)

    if granted:
        return best_cover(*granted), suppressed
    return None, suppressed


def silhouette_coverage(
    observer: Token,
    target: Token,
    walls: list[Wall],
    blockers: list[Token],
    config: EngineConfig,
) -> float:
    """Percentage (0-100) of the target's silhouette hidden from the observer."""
    gd = config.grid_distance
    ox, oy = observer.center
    tx, ty = target.center
    dx = tx - ox
    dy = ty - oy
    length = float(np.hypot(dx, dy))
    if length < 1e-9:
        return 0.0

    # Lateral axis perpendicular to the sightline
    nx, ny = -dy / length, dx / length
    half_extent = max(
        abs((cx - tx) * nx + (cy - ty) * ny)
        for cx, cy in token_footprint(target, gd)
    )
    offsets = np.linspace(-half_extent, half_extent, config.silhouette_samples)
    offsets *= _INSET

    t_bottom, t_top = elevation_span(target, gd)
    levels = config.silhouette_levels
    heights = t_bottom + (np.arange(levels) + 0.5) / levels * (t_top - t_bottom)
    eye_z = eye_height(observer, gd)

    lat_x = tx + offsets * nx
    lat_y = ty + offsets * ny
    # (samples * levels) rays, lateral-major
    targets = np.repeat(np.stack([lat_x, lat_y], axis=1), levels, axis=0)
    target_z = np.tile(heights, len(offsets))
    origins = np.tile(np.array([[ox, oy]], dtype=np.float64), (len(targets), 1))

    segs: list[tuple[float, float, float, float]] = []
    bottoms: list[float] = []
    tops: list[float] = []
    for w in walls:
        if w.is_degenerate:
            continue
        segs.append((w.x1, w.y1, w.x2, w.y2))
        bottoms.append(-np.inf if w.height_bottom is None else w.height_bottom)
        tops.append(np.inf if w.height_top is None else w.height_top)
    for b in blockers:
        b_bottom, b_top = elevation_span(b, gd)
        for edge in footprint_edges(token_footprint(b, gd)):
            segs.append(edge)
            bottoms.append(b_bottom)
            tops.append(b_top)
    if not segs:
        return 0.0

    hit, t = ray_segment_hits(origins, targets, np.array(segs, dtype=np.float64))
    # Height of each ray where it crosses each segment
    z_at = eye_z + np.where(np.isfinite(t), t, 0.0) * (target_z - eye_z)[:, None]
    bottom_arr = np.array(bottoms)[None, :]
    top_arr = np.array(tops)[None, :]
    hit &= (z_at >= bottom_arr) & (z_at <= top_arr)
    blocked = hit.any(axis=1)
    return float(blocked.sum()) / len(blocked) * 100.0


def cover_from_percentage(pct: float, config: EngineConfig) -> CoverLevel:
    if pct <= 0:
        return CoverLevel.NONE
    if config.wall_allow_greater and pct >= config.wall_greater_threshold:
        return CoverLevel.GREATER
    if pct >= config.wall_standard_threshold:
        return CoverLevel.STANDARD
    return CoverLevel.LESSER


def creature_size_cover(
    observer: Token,
    target: Token,
    blockers: list[Token],
    grid_distance: float = 5.0,
) -> CoverLevel:
    """Cover from creatures on the center sightline, by relative size."""
    result = CoverLevel.NONE
    for blocker in blockers:
        fp = token_footprint(blocker, grid_distance)
        if sightline_overlap_length(observer.center, target.center, fp) <= 0:
            continue
        if (
            blocker.size_rank - observer.size_rank >= 2
            and blocker.size_rank - target.size_rank >= 2
        ):
            return CoverLevel.STANDARD
        result = CoverLevel.LESSER
    return result


def detect_cover(
    observer: Token,
    target: Token,
    walls: list[Wall],
    tokens: Iterable[Token] = (),
    config: EngineConfig | None = None,
) -> CoverLevel:
    config = config or EngineConfig()
    if observer.id == target.id or observer.center == target.center:
        return CoverLevel.NONE

    gd = config.grid_distance
    p1 = observer.center
    p2 = target.center
    span = pair_span(observer, target, gd)
    blockers = eligible_blockers(observer, target, tokens, config)

    granted, suppressed = resolve_cover_overrides(
        p1, p2, walls, blockers, span=span, grid_distance=gd
    )
    if granted is not None:
        return granted

    occluders = [
        w
        for w in walls
        if w.id not in suppressed
        and wall_blocks_naturally(w, p1)
        and wall_in_elevation_range(w, span)
    ]

    if config.token_cover_mode == "coverage":
        pct = silhouette_coverage(observer, target, occluders, blockers, config)
        return cover_from_percentage(pct, config)

    pct = silhouette_coverage(observer, target, occluders, [], config)
    return best_cover(
        cover_from_percentage(pct, config),
        creature_size_cover(observer, target, blockers, gd),
    )


class CoverDetector:
    """Binds the geometry functions to a config for repeated queries."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()

    def has_line_of_sight(
        self, observer_point: Point, target_point: Point, walls: list[Wall]
    ) -> bool:
        return has_line_of_sight(observer_point, target_point, walls)

    def token_line_of_sight(
        self, observer: Token, target: Token, walls: list[Wall]
    ) -> bool:
        return token_line_of_sight(
            observer, target, walls, self.config.grid_distance
        )

    def sound_blocked(
        self, observer: Token, target: Token, walls: list[Wall]
    ) -> bool:
        span = pair_span(observer, target, self.config.grid_distance)
        return sound_blocked(observer.center, target.center, walls, span=span)

    def detect_cover(
        self,
        observer: Token,
        target: Token,
        walls: list[Wall],
        tokens: Iterable[Token] = (),
    ) -> CoverLevel:
        level = detect_cover(observer, target, walls, tokens, self.config)
        logger.debug("cover %s -> %s: %s", observer.id, target.id, level.value)
        return level
