#!/usr/bin/env python3
"""Print the visibility and cover matrix for a saved scene.

Usage (from the repo root):
    python scripts/scene_report.py scenes/corridor.json
    python scripts/scene_report.py scenes/corridor.json --config balance.json
    python scripts/scene_report.py scenes/corridor.json --observer goblin --render out.png
    python scripts/scene_report.py scenes/corridor.json --json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add the repo root to path so we can import autosight
SCRIPT_DIR = Path(__file__).resolve().parent
ROOT_DIR = SCRIPT_DIR.parent
sys.path.insert(0, str(ROOT_DIR))

from autosight.config import EngineConfig, load_config  # noqa: E402
from autosight.engine import AutoVisibilityEngine  # noqa: E402
from autosight.logs import configure_logging  # noqa: E402
from autosight.render import SceneRenderer  # noqa: E402
from autosight.scene_io import load_scene, save_scene_png  # noqa: E402
from autosight.world import SceneWorld  # noqa: E402

logger = logging.getLogger("scene_report")


def build_engine(args):
    scene, overrides = load_scene(args.scene)
    config = load_config(args.config) if args.config else EngineConfig()
    world = SceneWorld(scene)
    engine = AutoVisibilityEngine(world, config)
    engine.store.load(overrides)
    return scene, engine


def report_rows(engine):
    rows = []
    for result in sorted(
        engine.scheduler.cache.results(),
        key=lambda r: (r.observer_id, r.target_id),
    ):
        rows.append(
            {
                "observer": result.observer_id,
                "target": result.target_id,
                "state": result.state.value,
                "auto": result.verdict.state.value,
                "sense": result.verdict.sense,
                "cover": result.cover.value,
                "override": result.overridden,
            }
        )
    return rows


def print_table(rows):
    header = f"{'observer':<14}{'target':<14}{'state':<12}{'sense':<20}{'cover':<10}"
    print(header)
    print("-" * len(header))
    for r in rows:
        state = r["state"] + ("*" if r["override"] else "")
        print(
            f"{r['observer']:<14}{r['target']:<14}{state:<12}"
            f"{r['sense'] or '-':<20}{r['cover']:<10}"
        )
    if any(r["override"] for r in rows):
        print("\n* manual override")


def main():
    parser = argparse.ArgumentParser(description=__doc__.split("\n")[0])
    parser.add_argument("scene", help="scene file (.json or .png)")
    parser.add_argument("--config", help="engine config JSON")
    parser.add_argument("--json", action="store_true", help="print rows as JSON")
    parser.add_argument("--observer", help="observer for --render colouring")
    parser.add_argument("--render", help="write a debug PNG (scene embedded)")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else "WARNING")

    try:
        scene, engine = build_engine(args)
    except (OSError, ValueError) as e:
        print(f"Cannot load scene: {e}")
        sys.exit(1)

    asyncio.run(engine.recalculate_all(force=True))
    rows = report_rows(engine)

    if args.json:
        print(json.dumps(rows, indent=2))
    else:
        print_table(rows)
        for record in engine.validate_overrides():
            cover = record.expected_cover
            recorded = cover.value if cover is not None else "unknown"
            print(
                f"override {record.observer_id} -> {record.target_id}: "
                f"cover was {recorded} when set, "
                "now differs"
            )

    if args.render:
        states = None
        if args.observer:
            states = engine.visibility_matrix().get(args.observer)
            if states is None:
                logger.warning("unknown observer %s", args.observer)
        img = SceneRenderer(scene, engine.config.grid_distance).render(
            args.observer, states
        )
        save_scene_png(img, args.render, scene, engine.store.records())
        print(f"\nRendered to {args.render}")


if __name__ == "__main__":
    main()
