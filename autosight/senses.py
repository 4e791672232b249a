"""Sensing capability resolution.

``SensingResolver.resolve(token)`` turns the raw sense grants for a token's
actor (innate senses plus anything items and effects grant) into a
``SensingProfile``: one ``SenseEntry`` per canonical sense type with its
best acuity and longest range.

Normalization rules:

  * sense names go through ``SENSE_ALIASES`` (``light-perception`` ->
    ``vision``, ``feel-tremor`` -> ``tremorsense``, ...);
  * duplicates merge to the best acuity and the largest range, so a precise
    grant always beats an imprecise grant of the same type;
  * a token with sight enabled always has at least a precise ``vision``
    entry of unlimited range.

Conditions do not delete senses. ``blinded`` and ``deafened`` are recorded
as flags and applied by ``SensingProfile.active_senses`` at query time, so
curing the condition restores the senses without rebuilding the profile.

Target-type limitations (lifesense vs. constructs, tremorsense vs. flyers)
are also kept out of the profile so it stays target-agnostic and cacheable;
the calculator asks ``sense_applicability`` per target instead.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping

from .types import Acuity, SenseGrant, Token

logger = logging.getLogger(__name__)

SENSE_ALIASES = {
    "light-perception": "vision",
    "lightperception": "vision",
    "sight": "vision",
    "basic-sight": "vision",
    "basicsight": "vision",
    "lowlightvision": "low-light-vision",
    "low-light": "low-light-vision",
    "dark-vision": "darkvision",
    "greaterdarkvision": "greater-darkvision",
    "feeltremor": "tremorsense",
    "feel-tremor": "tremorsense",
    "smell": "scent",
    "life-sense": "lifesense",
    "seeinvisibility": "see-invisibility",
    "echo-location": "echolocation",
    "true-seeing": "truesight",
    "truesight": "truesight",
}

VISUAL_SENSES = frozenset(
    {
        "vision",
        "low-light-vision",
        "darkvision",
        "greater-darkvision",
        "see-invisibility",
        "truesight",
    }
)

# Senses that need sound to travel between observer and target.
AUDITORY_SENSES = frozenset({"hearing", "echolocation"})

# Visual senses that see regardless of darkness rank.
DARKNESS_PIERCING_SENSES = frozenset({"greater-darkvision", "truesight"})


def normalize_sense_type(raw: str) -> str:
    key = str(raw).lower().strip().replace("_", "-").replace(" ", "-")
    return SENSE_ALIASES.get(key, key)


@dataclass(frozen=True)
class SenseEntry:
    type: str
    acuity: Acuity
    range: float = math.inf

    @property
    def precise(self) -> bool:
        return self.acuity == Acuity.PRECISE

    @property
    def visual(self) -> bool:
        return self.type in VISUAL_SENSES

    def in_range(self, dist: float) -> bool:
        return dist <= self.range


@dataclass(frozen=True)
class SensingProfile:
    senses: Mapping[str, SenseEntry] = field(default_factory=dict)
    is_blinded: bool = False
    is_deafened: bool = False
    is_dazzled: bool = False

    def get(self, sense_type: str) -> SenseEntry | None:
        return self.senses.get(normalize_sense_type(sense_type))

    def is_suppressed(self, entry: SenseEntry) -> bool:
        if self.is_blinded and entry.visual:
            return True
        if self.is_deafened and entry.type in AUDITORY_SENSES:
            return True
        return False

    def active_senses(self) -> list[SenseEntry]:
        """Senses usable right now, precise ones first."""
        active = [e for e in self.senses.values() if not self.is_suppressed(e)]
        active.sort(key=lambda e: (not e.precise, e.type))
        return active

    def precise(self) -> list[SenseEntry]:
        return [e for e in self.active_senses() if e.precise]

    def imprecise(self) -> list[SenseEntry]:
        return [e for e in self.active_senses() if not e.precise]

    def has_precise_non_visual(self) -> bool:
        return any(not e.visual and e.range > 0 for e in self.precise())


def merge_senses(grants: Iterable[SenseGrant]) -> dict[str, SenseEntry]:
    """Collapse grants to one entry per sense type: best acuity, best range."""
    merged: dict[str, SenseEntry] = {}
    for g in grants:
        sense_type = normalize_sense_type(g.type)
        rng = math.inf if g.range is None else float(g.range)
        if rng <= 0:
            continue
        prev = merged.get(sense_type)
        if prev is None:
            merged[sense_type] = SenseEntry(sense_type, g.acuity, rng)
            continue
        acuity = (
            Acuity.PRECISE
            if Acuity.PRECISE in (prev.acuity, g.acuity)
            else Acuity.IMPRECISE
        )
        merged[sense_type] = SenseEntry(sense_type, acuity, max(prev.range, rng))
    return merged


def build_profile(token: Token, grants: Iterable[SenseGrant]) -> SensingProfile:
    senses = merge_senses(grants)
    if token.vision and "vision" not in senses:
        senses["vision"] = SenseEntry("vision", Acuity.PRECISE, math.inf)
    return SensingProfile(
        senses=senses,
        is_blinded=token.has_condition("blinded"),
        is_deafened=token.has_condition("deafened"),
        is_dazzled=token.has_condition("dazzled"),
    )


@dataclass(frozen=True)
class Applicability:
    valid: bool
    reason: str | None = None


_VALID = Applicability(True)


def sense_applicability(
    sense_type: str,
    target: Token,
    observer: Token | None = None,
    *,
    lifesense_detects_undead: bool = False,
) -> Applicability:
    """Whether a sense can detect this particular target at all.

    Range, walls and lighting are not considered here; only what kind of
    creature the target is and where it stands.
    """
    sense_type = normalize_sense_type(sense_type)
    if sense_type == "lifesense":
        if "construct" in target.traits:
            return Applicability(False, "construct")
        if "undead" in target.traits and not lifesense_detects_undead:
            return Applicability(False, "undead")
        return _VALID
    if sense_type == "tremorsense":
        if target.elevation > 0 or target.has_condition("flying"):
            return Applicability(False, "target-not-grounded")
        if observer is not None and (
            observer.elevation > 0 or observer.has_condition("flying")
        ):
            return Applicability(False, "observer-not-grounded")
        if target.has_condition("petal-step") or "petal-step" in target.traits:
            return Applicability(False, "petal-step")
        return _VALID
    return _VALID


class SensingResolver:
    """Builds and caches ``SensingProfile`` per token.

    Profiles are cached by actor id with a short TTL; the cache also keys on
    the token's condition set and sight flag, so a condition change never
    serves a stale blinded/deafened flag even before ``invalidate`` runs.
    """

    def __init__(
        self,
        grants_for: Callable[[str], list[SenseGrant]],
        *,
        ttl: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._grants_for = grants_for
        self._ttl = ttl
        self._clock = clock
        self._cache: dict[str, tuple[float, tuple, SensingProfile]] = {}

    def resolve(self, token: Token) -> SensingProfile:
        key = token.actor_id or token.id
        stamp = (frozenset(token.conditions), token.vision)
        now = self._clock()
        hit = self._cache.get(key)
        if hit is not None:
            expires, cached_stamp, profile = hit
            if expires > now and cached_stamp == stamp:
                return profile

        grants = self._grants_for(key) if token.actor_id else []
        profile = build_profile(token, grants)
        self._cache[key] = (now + self._ttl, stamp, profile)
        logger.debug(
            "resolved senses for %s: %s",
            key,
            sorted(profile.senses),
        )
        return profile

    def invalidate(self, actor_id: str | None = None) -> None:
        if actor_id is None:
            self._cache.clear()
        else:
            self._cache.pop(actor_id, None)
