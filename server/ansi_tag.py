"""Canonical SGR tag generation.

``state_as_tag`` turns a display state back into the shortest escape
sequence that reproduces it, e.g. bold + red foreground -> ``ESC[1;31m``.
The tag length is measured first and the built tag is checked against it.
"""

from __future__ import annotations

from ansi_state import (
    EXTENDED_COLOR,
    NO_COLOR,
    PALETTE,
    TRUECOLOR,
    ColorExtra,
    State,
    TagSizeError,
)

CSI = "\x1b["
FOREGROUND = "3"
BACKGROUND = "4"


def num_chr_len(num: int) -> int:
    """Number of characters needed to write a non-negative integer."""
    return len(str(num))


def _extended_values(color_extra: ColorExtra) -> tuple[int, ...]:
    mode = color_extra[0]
    if mode == TRUECOLOR:
        return color_extra[:4]
    if mode == PALETTE:
        return color_extra[:2]
    raise TagSizeError(f"Unexpected extended color format {color_extra!r}")


def color_size(color: int, color_extra: ColorExtra) -> int:
    """Characters written for one color, separator included.

    Color 0 writes nothing, see ``color_write``.
    """
    if color == EXTENDED_COLOR:
        values = _extended_values(color_extra)
        return 3 + sum(num_chr_len(v) + 1 for v in values)
    if 0 < color < 8:
        return 3
    if color in (0, NO_COLOR):
        return 0
    raise TagSizeError(f"Unexpected color value {color}")


def color_write(parts: list[str], color: int, color_extra: ColorExtra, mode: str) -> int:
    """Append the encoding of one color to *parts*; returns characters added.

    Only colors greater than 0 are written, so basic black is dropped.
    """
    if color <= 0:
        return 0
    if color != EXTENDED_COLOR:
        chunk = f"{mode}{color};"
    else:
        values = ";".join(str(v) for v in _extended_values(color_extra))
        chunk = f"{mode}8;{values};"
    parts.append(chunk)
    return len(chunk)


def tag_size(state: State) -> int:
    """Length of the tag ``state_as_tag`` produces, 0 for no tag."""
    size = 2 * len(state.style.codes())
    size += color_size(state.color, state.color_extra)
    size += color_size(state.bg_color, state.bg_color_extra)
    if not size:
        return 0
    # The final separator is replaced by the terminator, not appended
    return size + len(CSI)


def state_as_tag(state: State) -> str:
    """Generate the SGR tag for the display attributes of *state*."""
    size = tag_size(state)
    if not size:
        return ""

    parts = [CSI]
    written = len(CSI)
    for code in state.style.codes():
        parts.append(f"{code};")
        written += 2
    written += color_write(parts, state.color, state.color_extra, FOREGROUND)
    written += color_write(parts, state.bg_color, state.bg_color_extra, BACKGROUND)

    if written != size:
        raise TagSizeError(f"Tag size mismatch (wrote {written}, measured {size})")
    tag = "".join(parts)
    return tag[:-1] + "m"
