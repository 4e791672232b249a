"""Planar geometry shared by the lighting sampler and the cover detector.

Coordinates are scene units (feet by default) on the map plane; ``x`` grows
right and ``y`` grows down, as on the host's canvas. Walls are segments,
token footprints are rectangles (``obb_corners``) and light/darkness areas
are discs.

Two flavors of the same intersection math live here:

  * ``segment_intersection`` tests one sightline against one segment. The
    LOS check and the override scan use it because they stop early.
  * ``ray_segment_hits`` tests R sightlines against S segments at once as an
    (R x S) numpy matrix. Silhouette coverage fires dozens of rays at every
    wall and creature edge, which is where the vectorized form pays off.

Polygon/disc overlap (how much of a sightline crosses a creature, whether a
darkness disc fully contains a footprint) goes through shapely.
"""

from __future__ import annotations

import math

import numpy as np
from shapely.geometry import LineString, MultiPoint
from shapely.geometry import Point as ShapelyPoint
from shapely.geometry import Polygon as ShapelyPolygon

from .types import Token

Point = tuple[float, float]
Segment = tuple[float, float, float, float]  # (x1, y1, x2, y2)
Corners = list[tuple[float, float]]

_EPS = 1e-9


def distance(a: Point, b: Point) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])


def side_of_line(
    x1: float, y1: float, x2: float, y2: float, px: float, py: float
) -> float:
    """Cross product of (x2-x1, y2-y1) with (px-x1, py-y1).

    Negative and positive values are the two sides; zero is on the line.
    """
    return (x2 - x1) * (py - y1) - (y2 - y1) * (px - x1)


def segment_intersection(
    ax: float,
    ay: float,
    bx: float,
    by: float,
    cx: float,
    cy: float,
    dx: float,
    dy: float,
) -> tuple[float, float, float] | None:
    """Intersect segment A-B with segment C-D, endpoints included.

    Returns ``(t, x, y)`` where ``t`` in [0, 1] is the parameter along A-B,
    or None when the segments miss, are parallel, or either is degenerate.
    """
    rx = bx - ax
    ry = by - ay
    sx = dx - cx
    sy = dy - cy
    denom = rx * sy - ry * sx
    if abs(denom) < 1e-12:
        return None

    qx = cx - ax
    qy = cy - ay
    t = (qx * sy - qy * sx) / denom
    u = (qx * ry - qy * rx) / denom
    if -_EPS <= t <= 1 + _EPS and -_EPS <= u <= 1 + _EPS:
        return (t, ax + t * rx, ay + t * ry)
    return None


def obb_corners(
    cx: float,
    cy: float,
    half_w: float,
    half_l: float,
    rot_rad: float = 0.0,
) -> Corners:
    """Compute the 4 corners of a rotated rectangle."""
    cos_r = math.cos(rot_rad)
    sin_r = math.sin(rot_rad)
    result: Corners = []
    for sx, sy in ((-1, -1), (1, -1), (1, 1), (-1, 1)):
        lx = sx * half_w
        ly = sy * half_l
        result.append(
            (
                cx + lx * cos_r - ly * sin_r,
                cy + lx * sin_r + ly * cos_r,
            )
        )
    return result


def token_footprint(token: Token, grid_distance: float) -> Corners:
    """World-space corners of a token's square/rectangular footprint."""
    return obb_corners(
        token.x,
        token.y,
        token.width * grid_distance / 2,
        token.length * grid_distance / 2,
    )


def footprint_edges(corners: Corners) -> list[Segment]:
    n = len(corners)
    return [
        (
            corners[i][0],
            corners[i][1],
            corners[(i + 1) % n][0],
            corners[(i + 1) % n][1],
        )
        for i in range(n)
    ]


def _project(corners: Corners, ax: float, ay: float) -> tuple[float, float]:
    """Project corners onto an axis, return (min, max)."""
    dots = [c[0] * ax + c[1] * ay for c in corners]
    return min(dots), max(dots)


def footprints_overlap(a: Corners, b: Corners) -> bool:
    """True if the interiors of two rectangles overlap.

    Touching (shared edge or corner) is NOT counted as overlap.
    """
    for corners in (a, b):
        for i in range(2):
            j = (i + 1) % 4
            ex = corners[j][0] - corners[i][0]
            ey = corners[j][1] - corners[i][1]
            ax, ay = -ey, ex
            min_a, max_a = _project(a, ax, ay)
            min_b, max_b = _project(b, ax, ay)
            if max_a <= min_b or max_b <= min_a:
                return False
    return True


def sightline_overlap_length(p1: Point, p2: Point, corners: Corners) -> float:
    """Length of the part of segment p1-p2 lying inside the polygon."""
    if p1 == p2:
        return 0.0
    overlap = LineString([p1, p2]).intersection(ShapelyPolygon(corners))
    if overlap.is_empty:
        return 0.0
    return overlap.length


def footprint_in_corridor(a: Corners, b: Corners, blocker: Corners) -> bool:
    """True if ``blocker`` reaches into the hull spanned by footprints a and b.

    Every sightline between a point of a and a point of b lies inside that
    hull, so a blocker outside it cannot affect cover between them.
    """
    hull = MultiPoint(list(a) + list(b)).convex_hull
    return hull.intersects(ShapelyPolygon(blocker))


def disc_contains_footprint(
    cx: float, cy: float, radius: float, corners: Corners
) -> bool:
    if radius <= 0:
        return False
    return ShapelyPoint(cx, cy).buffer(radius).contains(ShapelyPolygon(corners))


def disc_touches_footprint(
    cx: float, cy: float, radius: float, corners: Corners
) -> bool:
    if radius <= 0:
        return False
    return ShapelyPoint(cx, cy).buffer(radius).intersects(
        ShapelyPolygon(corners)
    )


def segment_crosses_disc(
    p1: Point, p2: Point, cx: float, cy: float, radius: float
) -> bool:
    """True if any part of segment p1-p2 lies within the disc."""
    if radius <= 0:
        return False
    if p1 == p2:
        return distance(p1, (cx, cy)) <= radius
    return LineString([p1, p2]).distance(ShapelyPoint(cx, cy)) <= radius


def ray_segment_hits(
    origins: np.ndarray,
    targets: np.ndarray,
    segments: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Intersect R sightlines against S segments in one batch.

    Args:
        origins: (R, 2) sightline start points.
        targets: (R, 2) sightline end points.
        segments: (S, 4) segments as x1, y1, x2, y2.

    Returns:
        ``(hit, t)``, both (R, S). ``hit[r, s]`` is True when sightline r
        crosses segment s strictly before reaching its end point; ``t`` is
        the parameter along the sightline (inf where there is no hit).
    """
    n_rays = origins.shape[0]
    n_segs = segments.shape[0]
    if n_rays == 0 or n_segs == 0:
        return (
            np.zeros((n_rays, n_segs), dtype=bool),
            np.full((n_rays, n_segs), np.inf),
        )

    ray_dx = targets[:, 0] - origins[:, 0]  # (R,)
    ray_dy = targets[:, 1] - origins[:, 1]
    seg_dx = segments[:, 2] - segments[:, 0]  # (S,)
    seg_dy = segments[:, 3] - segments[:, 1]

    # denom[r, s] = ray_d[r] x seg_d[s]
    denom = ray_dx[:, None] * seg_dy[None, :] - ray_dy[:, None] * seg_dx[None, :]
    valid_denom = np.abs(denom) >= 1e-12
    safe_denom = np.where(valid_denom, denom, 1.0)

    qx = segments[None, :, 0] - origins[:, 0, None]  # (R, S)
    qy = segments[None, :, 1] - origins[:, 1, None]

    t = (qx * seg_dy[None, :] - qy * seg_dx[None, :]) / safe_denom
    u = (qx * ray_dy[:, None] - qy * ray_dx[:, None]) / safe_denom

    # A hit exactly at the far end point is the target touching the wall,
    # not the wall standing between the two.
    hit = (
        valid_denom
        & (t >= -_EPS)
        & (t < 1.0 - 1e-6)
        & (u >= -_EPS)
        & (u <= 1.0 + _EPS)
    )
    return hit, np.where(hit, t, np.inf)
