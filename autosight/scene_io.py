"""Save and load scenes, overrides included, as JSON or PNG.

Overrides are stored on the target token they apply to, under
``visibility_overrides``, keyed by observer id:

    {"id": "rogue", ..., "visibility_overrides": {
        "goblin": {"state": "hidden", "source": "sneak", "created_at": 1700000000.0}
    }}

so they survive reload and token re-ordering, and removing one pair only
touches one entry. PNG files carry the same scene JSON in a tEXt chunk
(key: ``autosight_scene``) next to a rendered debug image.
"""

import json

from PIL import Image
from PIL.PngImagePlugin import PngInfo

from .overrides import OverrideRecord
from .types import SceneState

METADATA_KEY = "autosight_scene"
OVERRIDES_KEY = "visibility_overrides"


def scene_to_dict(scene: SceneState, overrides=()) -> dict:
    d = scene.to_dict()
    by_target: dict[str, dict] = {}
    for record in overrides:
        entry = record.to_dict()
        del entry["observer_id"]
        del entry["target_id"]
        by_target.setdefault(record.target_id, {})[record.observer_id] = entry
    for token in d["tokens"]:
        if token["id"] in by_target:
            token[OVERRIDES_KEY] = by_target[token["id"]]
    return d


def scene_from_dict(d: dict) -> tuple[SceneState, list[OverrideRecord]]:
    """Parse a scene dict into a ``SceneState`` and its override records.

    Raises ValueError if the dict is not a scene.
    """
    if not isinstance(d, dict) or not isinstance(d.get("tokens", []), list):
        raise ValueError("scene data must be an object with a 'tokens' list")
    try:
        scene = SceneState.from_dict(d)
        overrides = [
            OverrideRecord.from_dict(
                {**entry, "observer_id": observer_id, "target_id": token["id"]}
            )
            for token in d.get("tokens", [])
            for observer_id, entry in token.get(OVERRIDES_KEY, {}).items()
        ]
    except (KeyError, TypeError) as e:
        raise ValueError(f"malformed scene data: {e}") from e
    return scene, overrides


def save_scene_json(path: str, scene: SceneState, overrides=()) -> None:
    with open(path, "w") as f:
        json.dump(scene_to_dict(scene, overrides), f, indent=2)


def save_scene_png(
    img: Image.Image, path: str, scene: SceneState, overrides=()
) -> None:
    """Save a rendered scene image with the scene JSON as a PNG tEXt chunk."""
    info = PngInfo()
    info.add_text(METADATA_KEY, json.dumps(scene_to_dict(scene, overrides)))
    img.save(path, pnginfo=info)


def load_scene_png(path: str) -> dict:
    """Load a scene dict from a PNG file's tEXt metadata.

    Raises ValueError if the PNG does not contain scene metadata.
    """
    img = Image.open(path)
    text_data = getattr(img, "text", None)
    if not text_data or METADATA_KEY not in text_data:
        raise ValueError(
            f"PNG file does not contain scene metadata (missing '{METADATA_KEY}' chunk)"
        )
    return json.loads(text_data[METADATA_KEY])


def load_scene_json(path: str) -> dict:
    with open(path) as f:
        return json.load(f)


def load_scene(path: str) -> tuple[SceneState, list[OverrideRecord]]:
    """Load a scene from a file, dispatching by extension.

    Supports .png (reads embedded metadata) and .json (reads raw JSON).
    Raises ValueError for unsupported extensions or malformed content.
    """
    lower = path.lower()
    if lower.endswith(".png"):
        data = load_scene_png(path)
    elif lower.endswith(".json"):
        data = load_scene_json(path)
    else:
        raise ValueError(f"Unsupported file extension: {path}")
    return scene_from_dict(data)
