"""World-state providers.

The engine never reaches into ambient globals for tokens, walls or lights.
Everything comes through a ``WorldState`` passed at construction time, so the
same engine can run against a live host scene, a loaded JSON file, or a
hand-built fixture in a test.

``SceneWorld`` is the in-memory provider backed by a ``SceneState``. Its
mutators replace token snapshots rather than editing them, so anything still
holding the old ``Token`` keeps seeing the state it was computed from.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Protocol

from .types import LightEmitter, SceneState, SenseGrant, Token, Wall

logger = logging.getLogger(__name__)


class WorldState(Protocol):
    """What the engine needs to know about a scene."""

    def get_token(self, token_id: str) -> Token | None: ...

    def tokens(self) -> list[Token]: ...

    def walls(self) -> list[Wall]: ...

    def light_emitters(self) -> list[LightEmitter]: ...

    def global_darkness(self) -> bool: ...

    def granted_senses(self, actor_id: str) -> list[SenseGrant]: ...


class SceneWorld:
    def __init__(self, scene: SceneState | None = None) -> None:
        self.scene = scene or SceneState()
        self._by_id = {t.id: t for t in self.scene.tokens}

    # -- WorldState --------------------------------------------------------

    def get_token(self, token_id: str) -> Token | None:
        return self._by_id.get(token_id)

    def tokens(self) -> list[Token]:
        return list(self.scene.tokens)

    def walls(self) -> list[Wall]:
        return list(self.scene.walls)

    def light_emitters(self) -> list[LightEmitter]:
        return list(self.scene.lights)

    def global_darkness(self) -> bool:
        return self.scene.global_darkness

    def granted_senses(self, actor_id: str) -> list[SenseGrant]:
        return list(self.scene.senses.get(actor_id, []))

    # -- mutation ----------------------------------------------------------

    def _replace(self, token: Token) -> None:
        self._by_id[token.id] = token
        self.scene.tokens = [
            token if t.id == token.id else t for t in self.scene.tokens
        ]

    def add_token(self, token: Token) -> None:
        if token.id in self._by_id:
            self._replace(token)
            return
        self.scene.tokens.append(token)
        self._by_id[token.id] = token

    def update_token(self, token_id: str, **changes) -> Token | None:
        """Replace a token with a copy carrying ``changes``.

        Returns the new snapshot, or None if the id is unknown.
        """
        old = self._by_id.get(token_id)
        if old is None:
            logger.warning("update of unknown token %s", token_id)
            return None
        new = dataclasses.replace(old, **changes)
        self._replace(new)
        return new

    def move_token(
        self, token_id: str, x: float, y: float, elevation: float | None = None
    ) -> Token | None:
        changes: dict = {"x": x, "y": y}
        if elevation is not None:
            changes["elevation"] = elevation
        return self.update_token(token_id, **changes)

    def set_conditions(self, token_id: str, conditions: set[str]) -> Token | None:
        return self.update_token(token_id, conditions=set(conditions))

    def remove_token(self, token_id: str) -> bool:
        if self._by_id.pop(token_id, None) is None:
            return False
        self.scene.tokens = [t for t in self.scene.tokens if t.id != token_id]
        return True

    def set_walls(self, walls: list[Wall]) -> None:
        self.scene.walls = list(walls)

    def add_light(self, emitter: LightEmitter) -> None:
        self.scene.lights = [
            li for li in self.scene.lights if li.id != emitter.id
        ] + [emitter]

    def remove_light(self, emitter_id: str) -> bool:
        before = len(self.scene.lights)
        self.scene.lights = [li for li in self.scene.lights if li.id != emitter_id]
        return len(self.scene.lights) != before

    def set_global_darkness(self, dark: bool) -> None:
        self.scene.global_darkness = dark

    def grant_senses(self, actor_id: str, grants: list[SenseGrant]) -> None:
        self.scene.senses[actor_id] = list(grants)
