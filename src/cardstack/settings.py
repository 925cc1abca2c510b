from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Mapping

# Layout chrome shared by the card view and the height budget.
BOUNDARY_TOP = 24.0
BOUNDARY_BOTTOM = 28.0
CONTENT_PADDING_H = 24.0

HEADING_SIZE_BOOST = 6.0
BODY_LINE_HEIGHT = 1.6
HEADING_LINE_HEIGHT = 1.4
MIN_BUDGET = 1.0


class ContentDensity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    FULL_PAGE = "full_page"


class FontSize(str, Enum):
    XS = "xs"
    S = "s"
    M = "m"
    L = "l"
    XL = "xl"


DENSITY_MULTIPLIERS = {
    ContentDensity.LOW: 0.35,
    ContentDensity.MEDIUM: 0.55,
    ContentDensity.HIGH: 0.75,
    ContentDensity.FULL_PAGE: 1.0,
}
FONT_SIZES = {
    FontSize.XS: 14.0,
    FontSize.S: 16.0,
    FontSize.M: 18.0,
    FontSize.L: 22.0,
    FontSize.XL: 26.0,
}


@dataclass(frozen=True)
class ReadingSettings:
    """Style inputs that change the measured height of text."""

    font_family: str = "literata"
    font_weight: int = 400
    font_size: FontSize = FontSize.M
    text_align: str = "left"
    text_scale: float = 1.0
    density: ContentDensity = ContentDensity.MEDIUM

    @property
    def density_multiplier(self) -> float:
        return DENSITY_MULTIPLIERS[self.density]

    @property
    def body_font_size(self) -> float:
        return FONT_SIZES[self.font_size]

    @property
    def heading_font_size(self) -> float:
        return FONT_SIZES[self.font_size] + HEADING_SIZE_BOOST

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["font_size"] = self.font_size.value
        payload["density"] = self.density.value
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> ReadingSettings:
        """Build settings from a stored mapping, ignoring unknown or invalid values."""
        defaults = cls()
        known = {f.name for f in fields(cls)}
        values: dict[str, object] = {}
        for key, value in payload.items():
            if key not in known or value is None:
                continue
            try:
                if key == "font_size":
                    value = FontSize(value)
                elif key == "density":
                    value = ContentDensity(value)
                elif key == "font_weight":
                    value = int(value)  # type: ignore[arg-type]
                elif key == "text_scale":
                    value = float(value)  # type: ignore[arg-type]
                    if value <= 0:
                        continue
                else:
                    value = str(value)
            except (TypeError, ValueError):
                continue
            values[key] = value
        return cls(**{**asdict(defaults), **values})


@dataclass(frozen=True)
class Viewport:
    width: float
    height: float
    inset_top: float = 0.0
    inset_bottom: float = 0.0


def content_width(viewport: Viewport) -> float:
    return max(viewport.width - 2 * CONTENT_PADDING_H, 1.0)


def height_budget(viewport: Viewport, settings: ReadingSettings) -> float:
    """Height available to one card: the space between the boundaries times the density."""
    top = viewport.inset_top + BOUNDARY_TOP
    bottom = viewport.inset_bottom + BOUNDARY_BOTTOM
    available = viewport.height - top - bottom
    return max(available * settings.density_multiplier, MIN_BUDGET)


__all__ = [
    "BOUNDARY_BOTTOM",
    "BOUNDARY_TOP",
    "CONTENT_PADDING_H",
    "ContentDensity",
    "DENSITY_MULTIPLIERS",
    "FONT_SIZES",
    "FontSize",
    "ReadingSettings",
    "Viewport",
    "content_width",
    "height_budget",
]
