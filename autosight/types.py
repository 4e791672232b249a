"""Data types for scenes, tokens and the values the engine produces.

Everything the engine consumes from the host (tokens, walls, light and
darkness emitters, granted senses) is described here as plain dataclasses
with ``from_dict``/``to_dict`` so scenes can be loaded from JSON. The engine
treats these as read-only snapshots; it never mutates a token or a wall.

The discrete values the engine produces (visibility state, cover tier,
light level) are string enums so they serialize as their plain names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class InvalidStateError(ValueError):
    """A visibility or cover value outside the fixed set was supplied."""


class VisibilityState(str, Enum):
    OBSERVED = "observed"
    CONCEALED = "concealed"
    HIDDEN = "hidden"
    UNDETECTED = "undetected"

    @property
    def severity(self) -> int:
        """0 for observed up to 3 for undetected."""
        return _VISIBILITY_ORDER.index(self)

    @staticmethod
    def parse(value: VisibilityState | str) -> VisibilityState:
        try:
            return VisibilityState(value)
        except ValueError:
            raise InvalidStateError(
                f"invalid visibility state: {value!r}"
            ) from None


_VISIBILITY_ORDER = (
    VisibilityState.OBSERVED,
    VisibilityState.CONCEALED,
    VisibilityState.HIDDEN,
    VisibilityState.UNDETECTED,
)


def worst_visibility(*states: VisibilityState) -> VisibilityState:
    return max(states, key=lambda s: s.severity)


class CoverLevel(str, Enum):
    NONE = "none"
    LESSER = "lesser"
    STANDARD = "standard"
    GREATER = "greater"

    @property
    def rank(self) -> int:
        return _COVER_ORDER.index(self)

    @staticmethod
    def parse(value: CoverLevel | str) -> CoverLevel:
        try:
            return CoverLevel(value)
        except ValueError:
            raise InvalidStateError(f"invalid cover level: {value!r}") from None


_COVER_ORDER = (
    CoverLevel.NONE,
    CoverLevel.LESSER,
    CoverLevel.STANDARD,
    CoverLevel.GREATER,
)


def best_cover(*levels: CoverLevel) -> CoverLevel:
    if not levels:
        return CoverLevel.NONE
    return max(levels, key=lambda c: c.rank)


class LightLevel(str, Enum):
    BRIGHT = "bright"
    DIM = "dim"
    DARKNESS = "darkness"


class Acuity(str, Enum):
    PRECISE = "precise"
    IMPRECISE = "imprecise"


class WallDirection(str, Enum):
    """Which side of a wall blocks.

    ``LEFT`` walls block observers for which the cross product of the wall
    vector and the observer offset is negative; ``RIGHT`` the reverse.
    """

    BOTH = "both"
    LEFT = "left"
    RIGHT = "right"


# Creature size -> (rank, footprint in grid squares)
SIZES: dict[str, tuple[int, float]] = {
    "tiny": (0, 0.5),
    "small": (1, 1.0),
    "medium": (2, 1.0),
    "large": (3, 2.0),
    "huge": (4, 3.0),
    "gargantuan": (5, 4.0),
}

_SIZE_ALIASES = {
    "sm": "small",
    "med": "medium",
    "lg": "large",
    "grg": "gargantuan",
}


def normalize_size(size: str | None) -> str:
    if not size:
        return "medium"
    s = str(size).lower().strip()
    s = _SIZE_ALIASES.get(s, s)
    return s if s in SIZES else "medium"


@dataclass
class Token:
    """Snapshot of one token. ``x``/``y`` are the footprint center."""

    id: str
    x: float
    y: float
    elevation: float = 0.0
    width: float | None = None
    length: float | None = None
    size: str = "medium"
    actor_id: str | None = None
    conditions: set[str] = field(default_factory=set)
    traits: set[str] = field(default_factory=set)
    vision: bool = True
    hidden: bool = False
    cover_override: CoverLevel | None = None

    def __post_init__(self) -> None:
        self.size = normalize_size(self.size)
        footprint = SIZES[self.size][1]
        if self.width is None:
            self.width = footprint
        if self.length is None:
            self.length = footprint
        self.conditions = {c.lower() for c in self.conditions}
        self.traits = {t.lower() for t in self.traits}

    @property
    def center(self) -> tuple[float, float]:
        return (self.x, self.y)

    @property
    def size_rank(self) -> int:
        return SIZES[self.size][0]

    def has_condition(self, name: str) -> bool:
        return name in self.conditions

    @staticmethod
    def from_dict(d: dict) -> Token:
        co = d.get("cover_override")
        return Token(
            id=d["id"],
            x=d["x"],
            y=d["y"],
            elevation=d.get("elevation", 0.0),
            width=d.get("width"),
            length=d.get("length"),
            size=d.get("size", "medium"),
            actor_id=d.get("actor_id"),
            conditions=set(d.get("conditions", [])),
            traits=set(d.get("traits", [])),
            vision=d.get("vision", True),
            hidden=d.get("hidden", False),
            cover_override=CoverLevel.parse(co) if co else None,
        )

    def to_dict(self) -> dict:
        d: dict = {
            "id": self.id,
            "x": self.x,
            "y": self.y,
            "elevation": self.elevation,
            "width": self.width,
            "length": self.length,
            "size": self.size,
        }
        if self.actor_id:
            d["actor_id"] = self.actor_id
        if self.conditions:
            d["conditions"] = sorted(self.conditions)
        if self.traits:
            d["traits"] = sorted(self.traits)
        if not self.vision:
            d["vision"] = False
        if self.hidden:
            d["hidden"] = True
        if self.cover_override is not None:
            d["cover_override"] = self.cover_override.value
        return d


@dataclass
class Wall:
    id: str
    x1: float
    y1: float
    x2: float
    y2: float
    blocks_sight: bool = True
    blocks_sound: bool = True
    direction: WallDirection = WallDirection.BOTH
    door: bool = False
    door_open: bool = False
    cover_override: CoverLevel | None = None
    height_bottom: float | None = None
    height_top: float | None = None

    @property
    def is_degenerate(self) -> bool:
        return self.x1 == self.x2 and self.y1 == self.y2

    @staticmethod
    def from_dict(d: dict) -> Wall:
        c = d.get("c")
        if c is not None:
            x1, y1, x2, y2 = c
        else:
            x1, y1, x2, y2 = d["x1"], d["y1"], d["x2"], d["y2"]
        co = d.get("cover_override")
        return Wall(
            id=d["id"],
            x1=x1,
            y1=y1,
            x2=x2,
            y2=y2,
            blocks_sight=d.get("blocks_sight", True),
            blocks_sound=d.get("blocks_sound", True),
            direction=WallDirection(d.get("direction", "both")),
            door=d.get("door", False),
            door_open=d.get("door_open", False),
            cover_override=CoverLevel.parse(co) if co else None,
            height_bottom=d.get("height_bottom"),
            height_top=d.get("height_top"),
        )

    def to_dict(self) -> dict:
        d: dict = {
            "id": self.id,
            "c": [self.x1, self.y1, self.x2, self.y2],
            "blocks_sight": self.blocks_sight,
            "blocks_sound": self.blocks_sound,
            "direction": self.direction.value,
        }
        if self.door:
            d["door"] = True
            d["door_open"] = self.door_open
        if self.cover_override is not None:
            d["cover_override"] = self.cover_override.value
        if self.height_bottom is not None:
            d["height_bottom"] = self.height_bottom
        if self.height_top is not None:
            d["height_top"] = self.height_top
        return d


@dataclass
class LightEmitter:
    """A light source, or a darkness source when ``darkness_rank`` is set.

    Darkness sources use ``dim_radius`` as their radius.
    """

    id: str
    x: float
    y: float
    bright_radius: float = 0.0
    dim_radius: float = 0.0
    darkness_rank: int | None = None
    active: bool = True

    @property
    def radius(self) -> float:
        return max(self.bright_radius, self.dim_radius)

    @property
    def is_darkness(self) -> bool:
        return self.darkness_rank is not None

    @staticmethod
    def from_dict(d: dict) -> LightEmitter:
        bright = d.get("bright_radius", 0.0)
        dim = d.get("dim_radius", 0.0)
        # Short form: {"radius": r, "bright": bool}
        if "radius" in d:
            dim = max(dim, d["radius"])
            if d.get("bright", False):
                bright = max(bright, d["radius"])
        rank = d.get("darkness_rank")
        return LightEmitter(
            id=d["id"],
            x=d["x"],
            y=d["y"],
            bright_radius=bright,
            dim_radius=dim,
            darkness_rank=int(rank) if rank is not None else None,
            active=d.get("active", True),
        )

    def to_dict(self) -> dict:
        d: dict = {
            "id": self.id,
            "x": self.x,
            "y": self.y,
            "bright_radius": self.bright_radius,
            "dim_radius": self.dim_radius,
        }
        if self.darkness_rank is not None:
            d["darkness_rank"] = self.darkness_rank
        if not self.active:
            d["active"] = False
        return d


@dataclass
class SenseGrant:
    """One sense as granted by an item or effect, before normalization."""

    type: str
    acuity: Acuity = Acuity.IMPRECISE
    range: float = float("inf")

    @staticmethod
    def from_dict(d: dict) -> SenseGrant:
        rng = d.get("range")
        return SenseGrant(
            type=d["type"],
            acuity=Acuity(str(d.get("acuity", "imprecise")).lower()),
            range=float("inf") if rng is None else float(rng),
        )

    def to_dict(self) -> dict:
        d: dict = {"type": self.type, "acuity": self.acuity.value}
        if self.range != float("inf"):
            d["range"] = self.range
        return d


@dataclass
class SceneState:
    tokens: list[Token] = field(default_factory=list)
    walls: list[Wall] = field(default_factory=list)
    lights: list[LightEmitter] = field(default_factory=list)
    senses: dict[str, list[SenseGrant]] = field(default_factory=dict)
    global_darkness: bool = False
    name: str | None = None

    @staticmethod
    def from_dict(d: dict) -> SceneState:
        return SceneState(
            tokens=[Token.from_dict(t) for t in d.get("tokens", [])],
            walls=[Wall.from_dict(w) for w in d.get("walls", [])],
            lights=[LightEmitter.from_dict(li) for li in d.get("lights", [])],
            senses={
                actor_id: [SenseGrant.from_dict(s) for s in grants]
                for actor_id, grants in d.get("senses", {}).items()
            },
            global_darkness=d.get("global_darkness", False),
            name=d.get("name"),
        )

    def to_dict(self) -> dict:
        d: dict = {
            "tokens": [t.to_dict() for t in self.tokens],
            "walls": [w.to_dict() for w in self.walls],
            "lights": [li.to_dict() for li in self.lights],
            "senses": {
                actor_id: [s.to_dict() for s in grants]
                for actor_id, grants in self.senses.items()
            },
            "global_darkness": self.global_darkness,
        }
        if self.name:
            d["name"] = self.name
        return d
