"""
Color parsing utilities for palette cards.

Understands hex (3/4/6/8 digits), rgb()/rgba(), hsl()/hsla() and CSS
color names, and can pull a deduplicated palette out of free text such as
design notes or CSS snippets.
"""

import re

from cardflow.core.models import HSL, RGB, Color

MAX_PALETTE_COLORS = 12

# CSS named colors
COLOR_NAMES: dict[str, str] = {
    "aliceblue": "#F0F8FF", "antiquewhite": "#FAEBD7", "aqua": "#00FFFF",
    "aquamarine": "#7FFFD4", "azure": "#F0FFFF", "beige": "#F5F5DC",
    "bisque": "#FFE4C4", "black": "#000000", "blanchedalmond": "#FFEBCD",
    "blue": "#0000FF", "blueviolet": "#8A2BE2", "brown": "#A52A2A",
    "burlywood": "#DEB887", "cadetblue": "#5F9EA0", "chartreuse": "#7FFF00",
    "chocolate": "#D2691E", "coral": "#FF7F50", "cornflowerblue": "#6495ED",
    "cornsilk": "#FFF8DC", "crimson": "#DC143C", "cyan": "#00FFFF",
    "darkblue": "#00008B", "darkcyan": "#008B8B", "darkgoldenrod": "#B8860B",
    "darkgray": "#A9A9A9", "darkgrey": "#A9A9A9", "darkgreen": "#006400",
    "darkkhaki": "#BDB76B", "darkmagenta": "#8B008B", "darkolivegreen": "#556B2F",
    "darkorange": "#FF8C00", "darkorchid": "#9932CC", "darkred": "#8B0000",
    "darksalmon": "#E9967A", "darkseagreen": "#8FBC8F", "darkslateblue": "#483D8B",
    "darkslategray": "#2F4F4F", "darkslategrey": "#2F4F4F", "darkturquoise": "#00CED1",
    "darkviolet": "#9400D3", "deeppink": "#FF1493", "deepskyblue": "#00BFFF",
    "dimgray": "#696969", "dimgrey": "#696969", "dodgerblue": "#1E90FF",
    "firebrick": "#B22222", "floralwhite": "#FFFAF0", "forestgreen": "#228B22",
    "fuchsia": "#FF00FF", "gainsboro": "#DCDCDC", "ghostwhite": "#F8F8FF",
    "gold": "#FFD700", "goldenrod": "#DAA520", "gray": "#808080",
    "grey": "#808080", "green": "#008000", "greenyellow": "#ADFF2F",
    "honeydew": "#F0FFF0", "hotpink": "#FF69B4", "indianred": "#CD5C5C",
    "indigo": "#4B0082", "ivory": "#FFFFF0", "khaki": "#F0E68C",
    "lavender": "#E6E6FA", "lavenderblush": "#FFF0F5", "lawngreen": "#7CFC00",
    "lemonchiffon": "#FFFACD", "lightblue": "#ADD8E6", "lightcoral": "#F08080",
    "lightcyan": "#E0FFFF", "lightgoldenrodyellow": "#FAFAD2", "lightgray": "#D3D3D3",
    "lightgrey": "#D3D3D3", "lightgreen": "#90EE90", "lightpink": "#FFB6C1",
    "lightsalmon": "#FFA07A", "lightseagreen": "#20B2AA", "lightskyblue": "#87CEFA",
    "lightslategray": "#778899", "lightslategrey": "#778899", "lightsteelblue": "#B0C4DE",
    "lightyellow": "#FFFFE0", "lime": "#00FF00", "limegreen": "#32CD32",
    "linen": "#FAF0E6", "magenta": "#FF00FF", "maroon": "#800000",
    "mediumaquamarine": "#66CDAA", "mediumblue": "#0000CD", "mediumorchid": "#BA55D3",
    "mediumpurple": "#9370DB", "mediumseagreen": "#3CB371", "mediumslateblue": "#7B68EE",
    "mediumspringgreen": "#00FA9A", "mediumturquoise": "#48D1CC",
    "mediumvioletred": "#C71585", "midnightblue": "#191970", "mintcream": "#F5FFFA",
    "mistyrose": "#FFE4E1", "moccasin": "#FFE4B5", "navajowhite": "#FFDEAD",
    "navy": "#000080", "oldlace": "#FDF5E6", "olive": "#808000",
    "olivedrab": "#6B8E23", "orange": "#FFA500", "orangered": "#FF4500",
    "orchid": "#DA70D6", "palegoldenrod": "#EEE8AA", "palegreen": "#98FB98",
    "paleturquoise": "#AFEEEE", "palevioletred": "#DB7093", "papayawhip": "#FFEFD5",
    "peachpuff": "#FFDAB9", "peru": "#CD853F", "pink": "#FFC0CB",
    "plum": "#DDA0DD", "powderblue": "#B0E0E6", "purple": "#800080",
    "red": "#FF0000", "rosybrown": "#BC8F8F", "royalblue": "#4169E1",
    "saddlebrown": "#8B4513", "salmon": "#FA8072", "sandybrown": "#F4A460",
    "seagreen": "#2E8B57", "seashell": "#FFF5EE", "sienna": "#A0522D",
    "silver": "#C0C0C0", "skyblue": "#87CEEB", "slateblue": "#6A5ACD",
    "slategray": "#708090", "slategrey": "#708090", "snow": "#FFFAFA",
    "springgreen": "#00FF7F", "steelblue": "#4682B4", "tan": "#D2B48C",
    "teal": "#008080", "thistle": "#D8BFD8", "tomato": "#FF6347",
    "turquoise": "#40E0D0", "violet": "#EE82EE", "wheat": "#F5DEB3",
    "white": "#FFFFFF", "whitesmoke": "#F5F5F5", "yellow": "#FFFF00",
    "yellowgreen": "#9ACD32",
}

HEX_TOKEN = re.compile(r"^#([a-f0-9]{3,4}|[a-f0-9]{6}|[a-f0-9]{8})$", re.IGNORECASE)
RGB_TOKEN = re.compile(r"rgba?\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*(?:,\s*[\d.]+\s*)?\)")
HSL_TOKEN = re.compile(r"hsla?\(\s*(\d+)\s*,\s*(\d+)%\s*,\s*(\d+)%\s*(?:,\s*[\d.]+\s*)?\)")

HEX_IN_TEXT = re.compile(r"#(?:[a-f0-9]{8}|[a-f0-9]{6}|[a-f0-9]{3,4})\b", re.IGNORECASE)
RGB_IN_TEXT = re.compile(
    r"rgba?\(\s*\d+\s*,\s*\d+\s*,\s*\d+\s*(?:,\s*[\d.]+\s*)?\)", re.IGNORECASE
)
HSL_IN_TEXT = re.compile(
    r"hsla?\(\s*\d+\s*,\s*\d+%\s*,\s*\d+%\s*(?:,\s*[\d.]+\s*)?\)", re.IGNORECASE
)
CSS_CUSTOM_PROPERTY = re.compile(r"--([a-z0-9_-]+)\s*:\s*([^;{}\n]+)[;}]?", re.IGNORECASE)
LABELED_COLOR = re.compile(
    r"^\s*([A-Za-z][\w \-]{0,40}?)\s*[:=]\s*(#[a-f0-9]{3,8}\b|rgba?\([^)]*\)|hsla?\([^)]*\))",
    re.IGNORECASE | re.MULTILINE,
)

_NAME_BY_HEX = {}
for _name, _hex in COLOR_NAMES.items():
    _NAME_BY_HEX.setdefault(_hex, _name)


# =============================================================================
# Conversions
# =============================================================================


def hex_to_rgb(value: str) -> RGB | None:
    normalized = value.lstrip("#")
    if len(normalized) in (3, 4):
        normalized = "".join(ch * 2 for ch in normalized)
    if len(normalized) == 8:
        normalized = normalized[:6]
    if len(normalized) != 6:
        return None
    try:
        return RGB(
            r=int(normalized[0:2], 16),
            g=int(normalized[2:4], 16),
            b=int(normalized[4:6], 16),
        )
    except ValueError:
        return None


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def rgb_to_hsl(r: int, g: int, b: int) -> HSL:
    rf, gf, bf = r / 255, g / 255, b / 255
    high = max(rf, gf, bf)
    low = min(rf, gf, bf)
    lightness = (high + low) / 2
    hue = saturation = 0.0

    if high != low:
        delta = high - low
        saturation = (
            delta / (2 - high - low) if lightness > 0.5 else delta / (high + low)
        )
        if high == rf:
            hue = (gf - bf) / delta + (6 if gf < bf else 0)
        elif high == gf:
            hue = (bf - rf) / delta + 2
        else:
            hue = (rf - gf) / delta + 4
        hue /= 6

    return HSL(
        h=_round_half_up(hue * 360),
        s=_round_half_up(saturation * 100),
        l=_round_half_up(lightness * 100),
    )


def hsl_to_rgb(h: int, s: int, lightness: int) -> RGB:
    hf, sf, lf = h / 360, s / 100, lightness / 100

    def hue_to_rgb(p: float, q: float, t: float) -> float:
        if t < 0:
            t += 1
        if t > 1:
            t -= 1
        if t < 1 / 6:
            return p + (q - p) * 6 * t
        if t < 1 / 2:
            return q
        if t < 2 / 3:
            return p + (q - p) * (2 / 3 - t) * 6
        return p

    if sf == 0:
        r = g = b = lf
    else:
        q = lf * (1 + sf) if lf < 0.5 else lf + sf - lf * sf
        p = 2 * lf - q
        r = hue_to_rgb(p, q, hf + 1 / 3)
        g = hue_to_rgb(p, q, hf)
        b = hue_to_rgb(p, q, hf - 1 / 3)

    return RGB(r=_round_half_up(r * 255), g=_round_half_up(g * 255), b=_round_half_up(b * 255))


def rgb_to_hex(r: int, g: int, b: int) -> str:
    return f"#{r:02X}{g:02X}{b:02X}"


def get_color_name(hex_value: str) -> str | None:
    return _NAME_BY_HEX.get(hex_value.upper())


# =============================================================================
# Parsing
# =============================================================================


def parse_color_string(value: str) -> Color | None:
    """Parse a single color token, returning None when it is not a color."""
    text = value.strip().lower()

    match = HEX_TOKEN.match(text)
    if match:
        raw = match.group(1)
        if len(raw) in (3, 4):
            raw = "".join(ch * 2 for ch in raw)
        rgb_hex = raw[:6]
        alpha = raw[6:] if len(raw) == 8 else None
        rgb = hex_to_rgb(rgb_hex)
        base_hex = f"#{rgb_hex.upper()}"
        return Color(
            hex=f"#{(rgb_hex + alpha).upper()}" if alpha else base_hex,
            name=None if alpha else get_color_name(base_hex),
            rgb=rgb,
            hsl=rgb_to_hsl(rgb.r, rgb.g, rgb.b) if rgb else None,
        )

    match = RGB_TOKEN.search(text)
    if match:
        r, g, b = (int(part) for part in match.groups())
        if all(0 <= channel <= 255 for channel in (r, g, b)):
            return Color(hex=rgb_to_hex(r, g, b), rgb=RGB(r=r, g=g, b=b), hsl=rgb_to_hsl(r, g, b))

    match = HSL_TOKEN.search(text)
    if match:
        h, s, lightness = (int(part) for part in match.groups())
        if 0 <= h <= 360 and 0 <= s <= 100 and 0 <= lightness <= 100:
            rgb = hsl_to_rgb(h, s, lightness)
            return Color(
                hex=rgb_to_hex(rgb.r, rgb.g, rgb.b),
                rgb=rgb,
                hsl=HSL(h=h, s=s, l=lightness),
            )

    name = re.sub(r"[^a-z]", "", text)
    if name in COLOR_NAMES:
        hex_value = COLOR_NAMES[name]
        rgb = hex_to_rgb(hex_value)
        return Color(
            hex=hex_value,
            name=name,
            rgb=rgb,
            hsl=rgb_to_hsl(rgb.r, rgb.g, rgb.b) if rgb else None,
        )

    return None


def _format_palette_name(slug: str) -> str | None:
    cleaned = re.sub(r"[_-]+", " ", slug).strip()
    if not cleaned:
        return None
    return " ".join(word[:1].upper() + word[1:] for word in cleaned.split())


def _normalize_palette_text(text: str) -> str:
    text = text.replace("\\n", "\n")
    return re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)


def extract_palette_colors(text: str, max_colors: int = MAX_PALETTE_COLORS) -> list[Color]:
    """
    Extract a palette from free text.

    Sources, in order: CSS custom properties (named after the property),
    ``Label: #hex`` pairs (named after the label), then any hex/rgb/hsl
    occurrence. Colors are deduplicated by uppercase hex; a later source
    only contributes a name when the first occurrence had none.
    """
    if not text:
        return []

    text = _normalize_palette_text(text)
    found: dict[str, Color] = {}

    def add(color: Color | None, inferred_name: str | None = None) -> None:
        if color is None:
            return
        hex_value = color.hex.upper()
        name = (inferred_name or "").strip() or color.name
        existing = found.get(hex_value)
        if existing is not None:
            if not existing.name and name:
                found[hex_value] = existing.model_copy(update={"name": name})
            return
        found[hex_value] = color.model_copy(update={"hex": hex_value, "name": name})

    for slug, value in CSS_CUSTOM_PROPERTY.findall(text):
        add(parse_color_string(value), _format_palette_name(slug))

    for label, value in LABELED_COLOR.findall(text):
        add(parse_color_string(value), label.strip())

    occurrences: list[tuple[int, str]] = []
    for pattern in (HEX_IN_TEXT, RGB_IN_TEXT, HSL_IN_TEXT):
        occurrences.extend((m.start(), m.group(0)) for m in pattern.finditer(text))
    for _, token in sorted(occurrences):
        add(parse_color_string(token))

    return list(found.values())[:max_colors]


def colors_match(current: list[Color] | None, candidate: list[Color]) -> bool:
    """True when both lists hold the same colors in the same order."""
    if not current:
        return not candidate
    if len(current) != len(candidate):
        return False
    for existing, color in zip(current, candidate, strict=True):
        if existing.hex.upper() != color.hex.upper():
            return False
        if (existing.name or "") != (color.name or ""):
            return False
        if existing.rgb != color.rgb or existing.hsl != color.hsl:
            return False
    return True
