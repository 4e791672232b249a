"""Tests for scene persistence and debug rendering."""

import json
from pathlib import Path

import pytest
from PIL import Image

from autosight.overrides import OverrideRecord
from autosight.render import OBSERVER_FILL, STATE_FILLS, SceneRenderer
from autosight.scene_io import (
    METADATA_KEY,
    OVERRIDES_KEY,
    load_scene,
    save_scene_json,
    save_scene_png,
    scene_from_dict,
    scene_to_dict,
)
from autosight.types import (
    Acuity,
    CoverLevel,
    LightEmitter,
    SceneState,
    SenseGrant,
    Token,
    VisibilityState,
    Wall,
    WallDirection,
)


def _scene():
    return SceneState(
        tokens=[
            Token("rogue", 0, 0, actor_id="rogue", conditions={"invisible"}),
            Token("goblin", 20, 0, size="small", traits={"goblin"}),
        ],
        walls=[
            Wall("w1", 10, -20, 10, 20, direction=WallDirection.LEFT),
            Wall("d1", 0, 10, 10, 10, door=True, door_open=True),
            Wall("low", 0, -10, 10, -10, height_top=3, cover_override=CoverLevel.LESSER),
        ],
        lights=[
            LightEmitter("torch", 5, 5, bright_radius=20, dim_radius=40),
            LightEmitter("dark", 30, 0, dim_radius=10, darkness_rank=4),
        ],
        senses={"rogue": [SenseGrant("darkvision", Acuity.PRECISE, 60)]},
        global_darkness=True,
        name="cellar",
    )


def _overrides():
    return [
        OverrideRecord("goblin", "rogue", VisibilityState.HIDDEN, "sneak", 12.5),
        OverrideRecord(
            "rogue",
            "goblin",
            VisibilityState.CONCEALED,
            "manual",
            13.0,
            has_cover=True,
            expected_cover=CoverLevel.STANDARD,
        ),
    ]


class TestSceneDict:
    def test_overrides_stored_on_target_token(self):
        d = scene_to_dict(_scene(), _overrides())
        rogue = next(t for t in d["tokens"] if t["id"] == "rogue")
        assert rogue[OVERRIDES_KEY] == {
            "goblin": {"state": "hidden", "source": "sneak", "created_at": 12.5}
        }

    def test_round_trip(self):
        scene = _scene()
        loaded, overrides = scene_from_dict(
            json.loads(json.dumps(scene_to_dict(scene, _overrides())))
        )
        assert loaded == scene
        assert sorted(overrides, key=lambda r: r.key) == sorted(
            _overrides(), key=lambda r: r.key
        )

    def test_not_a_scene(self):
        with pytest.raises(ValueError):
            scene_from_dict(["tokens"])

    def test_missing_fields(self):
        with pytest.raises(ValueError):
            scene_from_dict({"tokens": [{"x": 1, "y": 2}]})

    def test_bad_override_state(self):
        d = {
            "tokens": [
                {"id": "a", "x": 0, "y": 0, OVERRIDES_KEY: {"b": {"state": "nah"}}}
            ]
        }
        with pytest.raises(ValueError):
            scene_from_dict(d)


class TestSceneFiles:
    def test_json(self, tmp_path):
        path = str(tmp_path / "scene.json")
        save_scene_json(path, _scene(), _overrides())
        scene, overrides = load_scene(path)
        assert scene.name == "cellar"
        assert len(overrides) == 2

    def test_png(self, tmp_path):
        path = str(tmp_path / "scene.png")
        img = SceneRenderer(_scene()).render()
        save_scene_png(img, path, _scene(), _overrides())
        scene, overrides = load_scene(path)
        assert [t.id for t in scene.tokens] == ["rogue", "goblin"]
        assert len(overrides) == 2

    def test_png_without_metadata(self, tmp_path):
        path = str(tmp_path / "plain.png")
        Image.new("RGB", (4, 4)).save(path)
        with pytest.raises(ValueError, match=METADATA_KEY):
            load_scene(path)

    def test_unsupported_extension(self, tmp_path):
        with pytest.raises(ValueError):
            load_scene(str(tmp_path / "scene.yaml"))


class TestSceneRenderer:
    def test_colours_tokens_by_state(self):
        scene = SceneState(tokens=[Token("a", 0, 0), Token("b", 20, 0)])
        renderer = SceneRenderer(scene, px_per_unit=4)
        img = renderer.render("a", {"b": VisibilityState.HIDDEN})
        assert img.getpixel(tuple(int(v) for v in renderer._to_px(0, 0))) == (
            Image.new("RGB", (1, 1), OBSERVER_FILL).getpixel((0, 0))
        )
        assert img.getpixel(tuple(int(v) for v in renderer._to_px(20, 0))) == (
            Image.new("RGB", (1, 1), STATE_FILLS[VisibilityState.HIDDEN]).getpixel(
                (0, 0)
            )
        )

    def test_covers_scene_extent(self):
        renderer = SceneRenderer(_scene(), px_per_unit=2, margin=5)
        img = renderer.render()
        # Torch dim radius reaches x = 45
        assert img.width >= (45 + 5 - renderer.min_x) * 2 - 1


class TestSampleScene:
    def test_corridor_loads(self):
        path = Path(__file__).resolve().parent.parent / "scenes" / "corridor.json"
        scene, overrides = load_scene(str(path))
        assert len(scene.tokens) == 5
        assert [r.key for r in overrides] == [("fighter", "bat")]
        assert scene.walls[3].cover_override == CoverLevel.LESSER
