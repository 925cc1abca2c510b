from __future__ import annotations

import textwrap
from dataclasses import dataclass, field

from .settings import BODY_LINE_HEIGHT, HEADING_LINE_HEIGHT, ReadingSettings


@dataclass(frozen=True)
class MonospaceMeasurer:
    """
    Deterministic stand-in for platform text layout.

    Every glyph is assumed to be ``glyph_width_ratio`` times the font size
    wide; paragraphs are word-wrapped to ``width`` and the height is the line
    count times the line height. Good enough for the CLI and for tests, where
    a real layout engine is not available.
    """

    width: float
    settings: ReadingSettings = field(default_factory=ReadingSettings)
    glyph_width_ratio: float = 0.5

    def _font_size(self, is_heading: bool) -> float:
        base = self.settings.heading_font_size if is_heading else self.settings.body_font_size
        return base * self.settings.text_scale

    def chars_per_line(self, is_heading: bool = False) -> int:
        glyph = self._font_size(is_heading) * self.glyph_width_ratio
        return max(1, int(self.width // glyph))

    def line_count(self, text: str, is_heading: bool = False) -> int:
        limit = self.chars_per_line(is_heading)
        return sum(len(textwrap.wrap(paragraph, limit)) or 1 for paragraph in text.split("\n"))

    def __call__(self, text: str, is_heading: bool) -> float:
        factor = HEADING_LINE_HEIGHT if is_heading else BODY_LINE_HEIGHT
        return self.line_count(text, is_heading) * self._font_size(is_heading) * factor


__all__ = ["MonospaceMeasurer"]
