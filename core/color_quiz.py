"""
Color Quiz - Guess the color of a flat image

Answers are accepted as hex (#RRGGBB) within a summed channel tolerance,
or as OKLCH in any of:
    oklch(62.8% 0.258 29.2)
    62.8% 0.258 29.2
    62.8%, 0.258, 29.2
"""

import math
import random
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Tuple

from PIL import Image

IMAGE_SIZE = (640, 360)

# OKLCH acceptance window
LIGHTNESS_TOLERANCE = 5.0
CHROMA_TOLERANCE = 0.05
HUE_TOLERANCE = 10.0


def srgb_to_linear(c: float) -> float:
    """sRGB channel in [0, 1] to linear light"""
    if c <= 0.04045:
        return c / 12.92
    return ((c + 0.055) / 1.055) ** 2.4


def rgb_to_oklch(r: int, g: int, b: int) -> Tuple[float, float, float]:
    """
    Convert 8-bit sRGB to OKLCH.

    Returns: (lightness in percent, chroma, hue in degrees [0, 360))
    """
    r_lin = srgb_to_linear(r / 255.0)
    g_lin = srgb_to_linear(g / 255.0)
    b_lin = srgb_to_linear(b / 255.0)

    l = 0.4122214708 * r_lin + 0.5363325363 * g_lin + 0.0514459929 * b_lin
    m = 0.2119034982 * r_lin + 0.6806995451 * g_lin + 0.1073969566 * b_lin
    s = 0.0883024619 * r_lin + 0.2817188376 * g_lin + 0.6299787005 * b_lin

    # Channels are never negative here, so ** (1/3) is a real cube root
    l_ = l ** (1.0 / 3.0)
    m_ = m ** (1.0 / 3.0)
    s_ = s ** (1.0 / 3.0)

    lab_l = 0.2104542553 * l_ + 0.7936177850 * m_ - 0.0040720468 * s_
    lab_a = 1.9779984951 * l_ - 2.4285922050 * m_ + 0.4505937099 * s_
    lab_b = 0.0259040371 * l_ + 0.7827717662 * m_ - 0.8086757660 * s_

    lightness = lab_l * 100.0
    chroma = math.sqrt(lab_a * lab_a + lab_b * lab_b)
    hue = math.degrees(math.atan2(lab_b, lab_a))
    if hue < 0:
        hue += 360.0

    return lightness, chroma, hue


def parse_oklch(text: str) -> Optional[Tuple[float, float, float]]:
    """Parse an OKLCH answer. Returns (L, C, H) or None."""
    inner = text.strip()
    if inner.lower().startswith("oklch(") and inner.endswith(")"):
        inner = inner[len("oklch("):-1]

    parts = [p for p in inner.replace(",", " ").split() if p]
    if len(parts) != 3:
        return None

    try:
        lightness = float(parts[0].rstrip("%"))
        chroma = float(parts[1])
        hue = float(parts[2])
    except ValueError:
        return None

    return lightness, chroma, hue


def parse_hex(text: str) -> Optional[Tuple[int, int, int]]:
    digits = text.strip().lstrip("#")
    if len(digits) != 6:
        return None
    try:
        return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)
    except ValueError:
        return None


@dataclass
class ColorQuiz:
    r: int
    g: int
    b: int

    @classmethod
    def generate(cls, rng: random.Random) -> "ColorQuiz":
        return cls(r=rng.randint(0, 255), g=rng.randint(0, 255), b=rng.randint(0, 255))

    @property
    def hex(self) -> str:
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}"

    def describe(self) -> str:
        """The answer as announced when the quiz expires"""
        lightness, chroma, hue = rgb_to_oklch(self.r, self.g, self.b)
        return (
            f"rgb({self.r}, {self.g}, {self.b}) / `{self.hex}` / "
            f"`oklch({lightness:.1f}% {chroma:.3f} {hue:.1f})`"
        )

    def generate_image(self) -> bytes:
        """Encode a flat 640x360 PNG of the quiz color"""
        image = Image.new("RGB", IMAGE_SIZE, (self.r, self.g, self.b))
        buffer = BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()

    def validate_answer(self, answer: str, hex_tolerance: int = 20) -> bool:
        answer = answer.strip()
        if answer.startswith("#"):
            return self.validate_hex(answer, hex_tolerance)
        return self.validate_oklch(answer)

    def validate_hex(self, answer: str, tolerance: int = 20) -> bool:
        """Accept when |dr| + |dg| + |db| <= tolerance"""
        parsed = parse_hex(answer)
        if parsed is None:
            return False
        r, g, b = parsed
        diff = abs(self.r - r) + abs(self.g - g) + abs(self.b - b)
        return diff <= tolerance

    def validate_oklch(self, answer: str) -> bool:
        parsed = parse_oklch(answer)
        if parsed is None:
            return False

        user_l, user_c, user_h = parsed
        actual_l, actual_c, actual_h = rgb_to_oklch(self.r, self.g, self.b)

        hue_diff = abs(actual_h - user_h) % 360.0
        hue_diff = min(hue_diff, 360.0 - hue_diff)

        return (
            abs(actual_l - user_l) <= LIGHTNESS_TOLERANCE
            and abs(actual_c - user_c) <= CHROMA_TOLERANCE
            and hue_diff <= HUE_TOLERANCE
        )
