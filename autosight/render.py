"""Top-down debug rendering of a scene with PIL.

Draws walls, light and darkness areas and tokens. When an observer and its
row of visibility states are given, every other token is filled by how that
observer perceives it, which makes a wrong verdict easy to spot.
"""

from PIL import Image, ImageDraw

from .types import LightEmitter, SceneState, Token, VisibilityState, Wall

BG = "#1e1e1e"
GRID = "#2b2b2b"
WALL = "#e0e0e0"
WALL_NO_SIGHT = "#6a6a8a"  # sound-only or window
DOOR_OPEN = "#8fbc8f"
LIGHT_FILL = "#4a4420"
DARKNESS_FILL = "#0a0a18"
OBSERVER_FILL = "#3070ff"
STATE_FILLS = {
    VisibilityState.OBSERVED: "#40c040",
    VisibilityState.CONCEALED: "#c0c040",
    VisibilityState.HIDDEN: "#e08030",
    VisibilityState.UNDETECTED: "#c03030",
}
UNKNOWN_FILL = "#888888"


class SceneRenderer:
    def __init__(
        self,
        scene: SceneState,
        grid_distance: float = 5.0,
        px_per_unit: float = 8.0,
        margin: float = 10.0,
    ):
        self.scene = scene
        self.grid_distance = grid_distance
        self.ppu = px_per_unit
        xs, ys = self._extent_points()
        self.min_x = min(xs) - margin
        self.min_y = min(ys) - margin
        self.width = max(xs) + margin - self.min_x
        self.height = max(ys) + margin - self.min_y

    def _extent_points(self):
        xs = [0.0]
        ys = [0.0]
        for t in self.scene.tokens:
            xs.append(t.x)
            ys.append(t.y)
        for w in self.scene.walls:
            xs.extend((w.x1, w.x2))
            ys.extend((w.y1, w.y2))
        for li in self.scene.lights:
            xs.extend((li.x - li.radius, li.x + li.radius))
            ys.extend((li.y - li.radius, li.y + li.radius))
        return xs, ys

    def _to_px(self, x, y):
        """Scene coords -> pixel coords (top-left origin)."""
        return ((x - self.min_x) * self.ppu, (y - self.min_y) * self.ppu)

    def render(self, observer_id=None, states=None):
        w = max(1, int(self.width * self.ppu))
        h = max(1, int(self.height * self.ppu))
        img = Image.new("RGB", (w, h), BG)
        draw = ImageDraw.Draw(img)

        self._draw_grid(draw, w, h)
        for li in self.scene.lights:
            if li.active:
                self._draw_light(draw, li)
        for wall in self.scene.walls:
            self._draw_wall(draw, wall)
        for token in self.scene.tokens:
            if token.id == observer_id:
                fill = OBSERVER_FILL
            elif states is not None:
                fill = STATE_FILLS.get(states.get(token.id), UNKNOWN_FILL)
            else:
                fill = UNKNOWN_FILL
            self._draw_token(draw, token, fill)
        return img

    def _draw_grid(self, draw, w, h):
        step = self.grid_distance * self.ppu
        if step < 4:
            return
        x = (-self.min_x % self.grid_distance) * self.ppu
        while x < w:
            draw.line([(x, 0), (x, h - 1)], fill=GRID)
            x += step
        y = (-self.min_y % self.grid_distance) * self.ppu
        while y < h:
            draw.line([(0, y), (w - 1, y)], fill=GRID)
            y += step

    def _draw_light(self, draw, li: LightEmitter):
        x0, y0 = self._to_px(li.x - li.radius, li.y - li.radius)
        x1, y1 = self._to_px(li.x + li.radius, li.y + li.radius)
        fill = DARKNESS_FILL if li.is_darkness else LIGHT_FILL
        draw.ellipse([x0, y0, x1, y1], fill=fill)

    def _draw_wall(self, draw, wall: Wall):
        if wall.door and wall.door_open:
            color = DOOR_OPEN
        elif not wall.blocks_sight:
            color = WALL_NO_SIGHT
        else:
            color = WALL
        draw.line(
            [self._to_px(wall.x1, wall.y1), self._to_px(wall.x2, wall.y2)],
            fill=color,
            width=max(1, round(self.ppu / 4)),
        )

    def _draw_token(self, draw, token: Token, fill):
        half_w = token.width * self.grid_distance / 2
        half_l = token.length * self.grid_distance / 2
        x0, y0 = self._to_px(token.x - half_w, token.y - half_l)
        x1, y1 = self._to_px(token.x + half_w, token.y + half_l)
        inset = self.ppu / 2
        draw.ellipse(
            [x0 + inset, y0 + inset, x1 - inset, y1 - inset],
            fill=fill,
            outline="#000000",
        )
