"""
Deterministic layout for the generation graph.

Configuration nodes sit side by side on one row; each configuration's image
nodes hang below it in a single column. Positions depend only on graph
content, so the layout is recomputed when membership changes and translated
when a configuration is dragged.
"""

from dataclasses import dataclass

FIRST_CONFIG_X = 100
FIRST_CONFIG_Y = 100
CONFIG_SPACING = 350
IMAGE_OFFSET_Y = 220
IMAGE_SPACING_Y = 280


@dataclass(frozen=True)
class Position:
    """A 2-D canvas coordinate."""

    x: float
    y: float

    def translate(self, dx: float, dy: float) -> "Position":
        return Position(self.x + dx, self.y + dy)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: dict) -> "Position":
        return cls(x=data.get("x", 0), y=data.get("y", 0))


def config_position(confirmed_count: int) -> Position:
    """Position of the configuration that would follow `confirmed_count` confirmed ones."""
    return Position(FIRST_CONFIG_X + confirmed_count * CONFIG_SPACING, FIRST_CONFIG_Y)


def image_position(config_pos: Position, index: int) -> Position:
    """Position of the image at batch `index` beneath a configuration node."""
    return Position(config_pos.x, config_pos.y + IMAGE_OFFSET_Y + index * IMAGE_SPACING_Y)


__all__ = [
    "CONFIG_SPACING",
    "FIRST_CONFIG_X",
    "FIRST_CONFIG_Y",
    "IMAGE_OFFSET_Y",
    "IMAGE_SPACING_Y",
    "Position",
    "config_position",
    "image_position",
]
