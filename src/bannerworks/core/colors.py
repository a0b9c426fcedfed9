"""Brand colour helpers.

Brand themes store colours as hex codes.  Image prompts read better with
colour names ("navy blue, coral") than with hex codes, so each code is
mapped to the nearest entry of a fixed named palette by squared RGB
distance.  The backend call receives the same colours as normalised
``#RRGGBB`` codes.
"""

from __future__ import annotations

import re

_HEX_PATTERN = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")

NAMED_COLORS: dict[str, str] = {
    "black": "#000000",
    "charcoal": "#36454F",
    "slate gray": "#708090",
    "gray": "#808080",
    "light gray": "#D3D3D3",
    "white": "#FFFFFF",
    "ivory": "#FFFFF0",
    "cream": "#FFFDD0",
    "beige": "#F5F5DC",
    "sand": "#C2B280",
    "tan": "#D2B48C",
    "navy blue": "#000080",
    "midnight blue": "#191970",
    "royal blue": "#4169E1",
    "cobalt blue": "#0047AB",
    "sky blue": "#87CEEB",
    "light blue": "#ADD8E6",
    "cyan": "#00FFFF",
    "turquoise": "#40E0D0",
    "teal": "#008080",
    "sea green": "#2E8B57",
    "mint green": "#98FF98",
    "emerald green": "#50C878",
    "green": "#008000",
    "dark green": "#006400",
    "olive green": "#808000",
    "lime green": "#32CD32",
    "yellow": "#FFFF00",
    "lemon yellow": "#FFF44F",
    "mustard": "#FFDB58",
    "goldenrod": "#DAA520",
    "orange": "#FFA500",
    "dark orange": "#FF8C00",
    "amber": "#FFBF00",
    "terra cotta": "#E2725B",
    "brown": "#A52A2A",
    "chocolate": "#7B3F00",
    "sienna": "#A0522D",
    "maroon": "#800000",
    "burgundy": "#800020",
    "crimson": "#DC143C",
    "red": "#FF0000",
    "coral": "#FF7F50",
    "salmon": "#FA8072",
    "pink": "#FFC0CB",
    "hot pink": "#FF69B4",
    "magenta": "#FF00FF",
    "plum": "#8E4585",
    "purple": "#800080",
    "violet": "#8F00FF",
    "lavender": "#E6E6FA",
    "peach": "#FFE5B4",
    "gold": "#FFD700",
    "silver": "#C0C0C0",
    "bronze": "#CD7F32",
    "copper": "#B87333",
}


def normalize_hex(value: str) -> str:
    """Return ``value`` as an upper-case ``#RRGGBB`` string.

    Raises:
        ValueError: If ``value`` is not a 3- or 6-digit hex colour.
    """
    match = _HEX_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid hex colour: {value!r}")
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    return f"#{digits.upper()}"


def _to_rgb(hex_value: str) -> tuple[int, int, int]:
    digits = normalize_hex(hex_value)[1:]
    return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)


def nearest_color_name(hex_value: str) -> str:
    """Return the name of the palette entry closest to ``hex_value``."""
    r, g, b = _to_rgb(hex_value)

    def distance(item: tuple[str, str]) -> int:
        nr, ng, nb = _to_rgb(item[1])
        return (r - nr) ** 2 + (g - ng) ** 2 + (b - nb) ** 2

    return min(NAMED_COLORS.items(), key=distance)[0]


def describe_palette(hex_values: list[str]) -> str:
    """Describe a list of hex colours as comma-separated colour names.

    Repeated names are collapsed so near-identical brand colours do not
    produce "navy blue, navy blue".
    """
    names: list[str] = []
    for value in hex_values:
        name = nearest_color_name(value)
        if name not in names:
            names.append(name)
    return ", ".join(names)
