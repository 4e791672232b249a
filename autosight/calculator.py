"""Visibility calculator.

Fuses sensing, lighting, line of sight and target conditions into one
verdict for an ordered (observer, target) pair.

The fusion itself (``calculate_visibility``) is a pure function of a
``VisibilityInputs`` snapshot; ``VisibilityCalculator`` only gathers that
snapshot from the world. Precedence, first match wins:

  1. A precise sense that is in range, applicable to the target and (for
     visual senses) has line of sight and enough light -> ``observed``,
     or ``concealed`` when the detection is degraded (plain vision in dim
     light, darkvision in darkness at or above the blocking rank, a dazzled
     observer with no precise non-visual sense, see-invisibility against an
     invisible target). Among several precise senses the best result wins.
  2. Otherwise an imprecise sense that is in range and applicable ->
     ``hidden``.
  3. Otherwise ``undetected``.

Finally the verdict is clamped. The target's self-reported
``concealed``/``hidden``/``undetected`` condition, or a
``minimum-visibility-target:<state>`` condition, sets a floor it cannot be
seen better than. An observer's ``maximum-visibility-observer:<state>``
condition caps how well that observer sees anyone.

Magical darkness (rank >= ``magical_darkness_rank``) surrounding the
observer or crossed by the sightline is treated as if it covered the target.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping

from .config import EngineConfig
from .cover import pair_span, sound_blocked, token_line_of_sight
from .geometry import distance
from .lighting import BRIGHT, LightingPass, LightSample
from .senses import (
    AUDITORY_SENSES,
    DARKNESS_PIERCING_SENSES,
    SenseEntry,
    SensingProfile,
    SensingResolver,
    sense_applicability,
)
from .types import (
    InvalidStateError,
    LightLevel,
    Token,
    VisibilityState,
    worst_visibility,
)
from .world import WorldState

logger = logging.getLogger(__name__)

# Self-reported target conditions that floor the verdict.
CONDITION_FLOORS = {
    "concealed": VisibilityState.CONCEALED,
    "hidden": VisibilityState.HIDDEN,
    "undetected": VisibilityState.UNDETECTED,
}

TARGET_FLOOR_PREFIX = "minimum-visibility-target:"
OBSERVER_CEILING_PREFIX = "maximum-visibility-observer:"

_INVISIBILITY_SEERS = frozenset({"see-invisibility", "truesight"})


@dataclass(frozen=True)
class VisibilityInputs:
    profile: SensingProfile
    distance: float
    target_light: LightSample = BRIGHT
    observer_light: LightSample = BRIGHT
    ray_darkness_rank: int | None = None
    line_of_sight: bool = True
    sound_blocked: bool = False
    target_conditions: frozenset[str] = frozenset()
    observer_conditions: frozenset[str] = frozenset()
    # sense type -> reason it cannot detect this target
    inapplicable: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class VisibilityVerdict:
    state: VisibilityState
    sense: str | None = None
    precise: bool = False
    reason: str | None = None

    @staticmethod
    def undetected(reason: str | None = None) -> VisibilityVerdict:
        return VisibilityVerdict(VisibilityState.UNDETECTED, reason=reason)

    def clamped(self, floor: VisibilityState, reason: str) -> VisibilityVerdict:
        """A copy no better than ``floor``; self when already at least as bad."""
        if self.state.severity >= floor.severity:
            return self
        return VisibilityVerdict(floor, self.sense, self.precise, reason)


def effective_light(inputs: VisibilityInputs, config: EngineConfig) -> LightSample:
    """Light at the target after magical darkness on the observer side."""
    light = inputs.target_light
    ranks = []
    if inputs.ray_darkness_rank is not None:
        ranks.append(inputs.ray_darkness_rank)
    if inputs.observer_light.level == LightLevel.DARKNESS:
        ranks.append(inputs.observer_light.darkness_rank)
    if not ranks:
        return light
    rank = max(ranks)
    if rank < config.magical_darkness_rank:
        return light
    if light.level == LightLevel.DARKNESS and light.darkness_rank >= rank:
        return light
    return LightSample(LightLevel.DARKNESS, rank)


def visual_state(
    sense_type: str,
    light: LightSample,
    invisible: bool,
    config: EngineConfig,
) -> VisibilityState | None:
    """What one visual sense makes of the target, or None if it fails."""
    if invisible and sense_type not in _INVISIBILITY_SEERS:
        return None

    if light.level == LightLevel.DARKNESS:
        if sense_type in DARKNESS_PIERCING_SENSES:
            state = VisibilityState.OBSERVED
        elif sense_type == "darkvision":
            if light.darkness_rank >= config.darkness_blocking_rank:
                state = VisibilityState.CONCEALED
            else:
                state = VisibilityState.OBSERVED
        else:
            return None
    elif light.level == LightLevel.DIM and sense_type in (
        "vision",
        "see-invisibility",
    ):
        state = VisibilityState.CONCEALED
    else:
        state = VisibilityState.OBSERVED

    if invisible and sense_type == "see-invisibility":
        state = worst_visibility(state, VisibilityState.CONCEALED)
    return state


def _usable(entry: SenseEntry, inputs: VisibilityInputs) -> bool:
    if not entry.in_range(inputs.distance):
        return False
    if entry.type in inputs.inapplicable:
        return False
    if entry.type in AUDITORY_SENSES and inputs.sound_blocked:
        return False
    return True


def condition_limit(
    conditions: frozenset[str], prefix: str
) -> VisibilityState | None:
    """Worst state named by a ``<prefix><state>`` condition, if any."""
    limit: VisibilityState | None = None
    for condition in conditions:
        if not condition.startswith(prefix):
            continue
        try:
            state = VisibilityState.parse(condition[len(prefix):])
        except InvalidStateError:
            logger.warning("ignoring malformed condition %r", condition)
            continue
        limit = state if limit is None else worst_visibility(limit, state)
    return limit


def calculate_visibility(
    inputs: VisibilityInputs, config: EngineConfig | None = None
) -> VisibilityVerdict:
    config = config or EngineConfig()
    profile = inputs.profile
    invisible = "invisible" in inputs.target_conditions
    light = effective_light(inputs, config)

    best: VisibilityVerdict | None = None
    for entry in profile.precise():
        if not _usable(entry, inputs):
            continue
        if entry.visual:
            if not inputs.line_of_sight:
                continue
            state = visual_state(entry.type, light, invisible, config)
            if state is None:
                continue
            reason = None if state == VisibilityState.OBSERVED else light.level.value
            if (
                state == VisibilityState.OBSERVED
                and profile.is_dazzled
                and not profile.has_precise_non_visual()
            ):
                state = VisibilityState.CONCEALED
                reason = "dazzled"
        else:
            state = VisibilityState.OBSERVED
            reason = None
        if best is None or state.severity < best.state.severity:
            best = VisibilityVerdict(state, entry.type, True, reason)
        if state == VisibilityState.OBSERVED:
            break

    if best is None:
        for entry in profile.imprecise():
            if not _usable(entry, inputs):
                continue
            if entry.visual and (
                not inputs.line_of_sight
                or visual_state(entry.type, light, invisible, config) is None
            ):
                continue
            best = VisibilityVerdict(VisibilityState.HIDDEN, entry.type, False)
            break

    if best is None:
        best = VisibilityVerdict.undetected("no-sense")

    for condition, floor in CONDITION_FLOORS.items():
        if condition in inputs.target_conditions:
            best = best.clamped(floor, condition)
    floor = condition_limit(inputs.target_conditions, TARGET_FLOOR_PREFIX)
    if floor is not None:
        best = best.clamped(floor, "target-minimum")
    ceiling = condition_limit(inputs.observer_conditions, OBSERVER_CEILING_PREFIX)
    if ceiling is not None:
        best = best.clamped(ceiling, "observer-maximum")
    return best


class VisibilityCalculator:
    """Gathers inputs from the world and runs ``calculate_visibility``."""

    def __init__(
        self,
        world: WorldState,
        resolver: SensingResolver | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.world = world
        self.config = config or EngineConfig()
        self.resolver = resolver or SensingResolver(
            world.granted_senses, ttl=self.config.sense_cache_ttl
        )

    def lighting_pass(self) -> LightingPass:
        return LightingPass(
            self.world.light_emitters(),
            global_darkness=self.world.global_darkness(),
            grid_distance=self.config.grid_distance,
        )

    def gather_inputs(
        self,
        observer: Token,
        target: Token,
        lighting: LightingPass | None = None,
    ) -> VisibilityInputs:
        lighting = lighting or self.lighting_pass()
        profile = self.resolver.resolve(observer)
        walls = self.world.walls()
        gd = self.config.grid_distance

        inapplicable: dict[str, str] = {}
        for sense_type in profile.senses:
            verdict = sense_applicability(
                sense_type,
                target,
                observer,
                lifesense_detects_undead=self.config.lifesense_detects_undead,
            )
            if not verdict.valid:
                inapplicable[sense_type] = verdict.reason or "invalid"

        return VisibilityInputs(
            profile=profile,
            distance=distance(observer.center, target.center),
            target_light=lighting.for_token(target),
            observer_light=lighting.for_token(observer),
            ray_darkness_rank=lighting.along(observer.center, target.center),
            line_of_sight=token_line_of_sight(observer, target, walls, gd),
            sound_blocked=sound_blocked(
                observer.center,
                target.center,
                walls,
                span=pair_span(observer, target, gd),
            ),
            target_conditions=frozenset(target.conditions),
            observer_conditions=frozenset(observer.conditions),
            inapplicable=inapplicable,
        )

    def calculate(
        self,
        observer: Token,
        target: Token,
        lighting: LightingPass | None = None,
    ) -> VisibilityVerdict:
        if observer.id == target.id:
            return VisibilityVerdict(VisibilityState.OBSERVED, reason="self")
        inputs = self.gather_inputs(observer, target, lighting)
        verdict = calculate_visibility(inputs, self.config)
        logger.debug(
            "%s -> %s: %s via %s", observer.id, target.id, verdict.state.value, verdict.sense
        )
        return verdict
