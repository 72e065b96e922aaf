"""CSS-ish color strings -> ffmpeg color syntax."""

import re

_HEX_RE = re.compile(r"^#([0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")
_SHORT_HEX_RE = re.compile(r"^#([0-9a-fA-F]{3})$")
_FF_HEX_RE = re.compile(r"^0x([0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")
_RGB_RE = re.compile(r"^rgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*(?:,\s*([\d.]+)\s*)?\)$")
_NAMED_RE = re.compile(r"^[a-zA-Z]{3,24}$")


def is_safe_color(value: str) -> bool:
    """True if ``value`` can be embedded in a filter graph without escaping."""
    value = value.strip()
    return bool(
        _HEX_RE.match(value)
        or _SHORT_HEX_RE.match(value)
        or _FF_HEX_RE.match(value)
        or _RGB_RE.match(value)
        or _NAMED_RE.match(value)
    )


def to_ffmpeg_color(value: str | None, default: str = "white") -> str:
    """Convert ``#rrggbb``, ``#rgb``, ``rgb()/rgba()`` or a color name for ffmpeg.

    Alpha in ``rgba()`` is dropped; callers pass opacity separately.
    """
    if not value:
        return default
    value = value.strip()

    if m := _HEX_RE.match(value):
        return f"0x{m.group(1)}"
    if m := _SHORT_HEX_RE.match(value):
        return "0x" + "".join(ch * 2 for ch in m.group(1))
    if _FF_HEX_RE.match(value):
        return value
    if m := _RGB_RE.match(value):
        r, g, b = (min(255, int(c)) for c in m.group(1, 2, 3))
        return f"0x{r:02x}{g:02x}{b:02x}"
    if _NAMED_RE.match(value):
        return value.lower()
    return default
