"""Light level sampling.

Answers "how lit is this spot?" for the visibility calculator. Emitters come
in two kinds (see ``LightEmitter``): light sources with bright and dim radii,
and darkness sources carrying a ``darkness_rank``. Rank 0 is mundane
darkness; rank >= 1 is magical darkness, and at or above the configured
blocking rank it defeats ordinary darkvision.

Resolution rules:

  * darkness covering the point wins over any light, and among overlapping
    darkness sources the highest rank wins;
  * otherwise, without scene-wide darkness the point is in ambient bright
    light;
  * under scene-wide darkness the brightest covering light decides (inside
    a bright radius -> bright, inside a dim radius -> dim, else darkness).

``sample_token_light`` applies the same rules to a whole footprint: a
darkness source must contain the footprint entirely, while each light radius
only has to reach some part of it. A token whose edge lies inside a bright
radius is in bright light even if its center is not; one that only reaches
into a dim radius is in dim light. Radii are inclusive in both samplers, so
a point sample is the footprint rule for a footprint of zero size. Samples are never cached across passes; ``LightingPass``
memoizes per token for the duration of one recalculation batch only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .geometry import (
    Point,
    disc_contains_footprint,
    disc_touches_footprint,
    distance,
    segment_crosses_disc,
    token_footprint,
)
from .types import LightEmitter, LightLevel, Token


@dataclass(frozen=True)
class LightSample:
    level: LightLevel
    darkness_rank: int = 0

    def is_magical_darkness(self, min_rank: int = 1) -> bool:
        return self.level == LightLevel.DARKNESS and self.darkness_rank >= min_rank


BRIGHT = LightSample(LightLevel.BRIGHT)
DIM = LightSample(LightLevel.DIM)
DARKNESS = LightSample(LightLevel.DARKNESS)


def _resolve(
    darkness_rank: int | None,
    illumination: LightLevel | None,
    global_darkness: bool,
) -> LightSample:
    if darkness_rank is not None:
        return LightSample(LightLevel.DARKNESS, darkness_rank)
    if not global_darkness:
        return BRIGHT
    if illumination == LightLevel.BRIGHT:
        return BRIGHT
    if illumination == LightLevel.DIM:
        return DIM
    return DARKNESS


def sample_light(
    point: Point,
    emitters: Iterable[LightEmitter],
    *,
    global_darkness: bool = False,
) -> LightSample:
    """Light level and darkness rank at a single point."""
    darkest: int | None = None
    brightest: LightLevel | None = None
    for em in emitters:
        if not em.active:
            continue
        d = distance(point, (em.x, em.y))
        if em.is_darkness:
            if d <= em.radius and (darkest is None or em.darkness_rank > darkest):
                darkest = em.darkness_rank
        elif d <= em.bright_radius:
            brightest = LightLevel.BRIGHT
        elif d <= em.dim_radius and brightest is None:
            brightest = LightLevel.DIM
    return _resolve(darkest, brightest, global_darkness)


def sample_token_light(
    token: Token,
    emitters: Iterable[LightEmitter],
    *,
    global_darkness: bool = False,
    grid_distance: float = 5.0,
) -> LightSample:
    """Light level over a token's footprint rather than a single point."""
    corners = token_footprint(token, grid_distance)
    darkest: int | None = None
    brightest: LightLevel | None = None
    for em in emitters:
        if not em.active:
            continue
        if em.is_darkness:
            if disc_contains_footprint(em.x, em.y, em.radius, corners) and (
                darkest is None or em.darkness_rank > darkest
            ):
                darkest = em.darkness_rank
            continue
        if disc_touches_footprint(em.x, em.y, em.bright_radius, corners):
            brightest = LightLevel.BRIGHT
        elif brightest is None and disc_touches_footprint(
            em.x, em.y, em.dim_radius, corners
        ):
            brightest = LightLevel.DIM
    return _resolve(darkest, brightest, global_darkness)


def darkness_along(
    p1: Point, p2: Point, emitters: Iterable[LightEmitter]
) -> int | None:
    """Highest darkness rank among darkness sources the sightline crosses.

    None when the sightline stays clear of every darkness source.
    """
    worst: int | None = None
    for em in emitters:
        if not em.active or not em.is_darkness:
            continue
        if segment_crosses_disc(p1, p2, em.x, em.y, em.radius):
            if worst is None or em.darkness_rank > worst:
                worst = em.darkness_rank
    return worst


class LightingPass:
    """Per-batch memo of token light samples.

    Scene light sources change independently of token queries, so a pass
    is thrown away after each recalculation batch.
    """

    def __init__(
        self,
        emitters: list[LightEmitter],
        *,
        global_darkness: bool = False,
        grid_distance: float = 5.0,
    ) -> None:
        self._emitters = [em for em in emitters if em.active]
        self._global_darkness = global_darkness
        self._grid_distance = grid_distance
        self._by_token: dict[str, LightSample] = {}

    @property
    def emitters(self) -> list[LightEmitter]:
        return self._emitters

    def for_token(self, token: Token) -> LightSample:
        sample = self._by_token.get(token.id)
        if sample is None:
            sample = sample_token_light(
                token,
                self._emitters,
                global_darkness=self._global_darkness,
                grid_distance=self._grid_distance,
            )
            self._by_token[token.id] = sample
        return sample

    def along(self, p1: Point, p2: Point) -> int | None:
        return darkness_along(p1, p2, self._emitters)
