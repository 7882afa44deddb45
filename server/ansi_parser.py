"""ANSI SGR escape sequence parser.

Walks a string that may contain ``ESC [ ... m`` sequences and tracks the
display state in effect at a requested visual (raw) offset:

  state = state_at_raw_position(3, text, state_init())

The returned state can be fed back in with a later offset on the same
string to continue the scan without re-reading the prefix.
"""

from __future__ import annotations

import enum
import logging
import warnings
from collections.abc import Callable
from dataclasses import dataclass

from ansi_state import (
    EMPTY_EXTRA,
    EXTENDED_COLOR,
    NO_COLOR,
    PALETTE,
    TRUECOLOR,
    NonAsciiError,
    State,
    StateReuseError,
    Style,
    UnhandledSgrWarning,
    safe_add,
)

logger = logging.getLogger(__name__)

ESC = "\x1b"
CSI = ESC + "["
SEPARATOR = ";"
TERMINATOR = "m"

# Legal SGR codes never exceed three digits.
_MAX_CODE_DIGITS = 3

_UNHANDLED_CODES = frozenset({20, 21, 26})
_COMPONENTS = {TRUECOLOR: 3, PALETTE: 1}

AdvisorySink = Callable[[str], None]


class TokenOutcome(enum.IntEnum):
    REJECTED = 0
    INAPPLICABLE = 1
    APPLICABLE = 2


@dataclass(frozen=True)
class TokenResult:
    value: int
    length: int
    outcome: TokenOutcome
    last: bool

    @property
    def accepted(self) -> bool:
        return self.outcome is not TokenOutcome.REJECTED


def _check_ascii(text: str, offset: int) -> None:
    char = text[offset]
    if ord(char) > 127:
        raise NonAsciiError(char, offset)


def _is_digit(char: str) -> bool:
    return "0" <= char <= "9"


def parse_token(text: str, offset: int) -> TokenResult:
    """Read one numeric SGR parameter starting at *offset*.

    The digit run must be followed by ``;`` or ``m``. Runs longer than three
    digits are accepted but flagged INAPPLICABLE, and their value is not
    decoded. A rejected token consumes only its digits.
    """
    end = offset
    size = len(text)
    while end < size and _is_digit(text[end]):
        end += 1
    digits = end - offset

    if end >= size:
        return TokenResult(0, digits, TokenOutcome.REJECTED, False)
    _check_ascii(text, end)
    if text[end] not in (SEPARATOR, TERMINATOR):
        return TokenResult(0, digits, TokenOutcome.REJECTED, False)

    last = text[end] == TERMINATOR
    length = safe_add(digits, 1)
    if digits > _MAX_CODE_DIGITS:
        return TokenResult(0, length, TokenOutcome.INAPPLICABLE, last)

    # Read the digits backwards; an empty run is 0
    value, mult = 0, 1
    for char in reversed(text[offset:end]):
        value += (ord(char) - ord("0")) * mult
        mult *= 10
    return TokenResult(value, length, TokenOutcome.APPLICABLE, last)


def _set_color(state: State, background: bool, color: int, extra) -> None:
    if background:
        state.bg_color = color
        state.bg_color_extra = extra
    else:
        state.color = color
        state.color_extra = extra


def parse_extended_color(state: State, text: str, background: bool) -> State:
    """Consume the ``2;r;g;b`` or ``5;n`` continuation of a 38/48 code.

    *state* must sit just past the ``38;`` or ``48;`` token. A sub-mode other
    than 2 or 5 rewinds the cursor so that token is read again as an
    ordinary code, and the color is left as it was.
    """
    res = parse_token(text, state.pos_byte)
    state.pos_byte = safe_add(state.pos_byte, res.length)
    state.last = res.last

    if not res.accepted:
        state.fail = True
        return state
    if (
        res.outcome is not TokenOutcome.APPLICABLE
        or res.value not in _COMPONENTS
        or res.last
    ):
        state.pos_byte -= res.length
        state.last = False
        return state

    mode = res.value
    wanted = _COMPONENTS[mode]
    components = [0, 0, 0]
    valid = True
    for i in range(wanted):
        res = parse_token(text, state.pos_byte)
        state.pos_byte = safe_add(state.pos_byte, res.length)
        state.last = res.last
        if not res.accepted:
            state.fail = True
            return state
        final = i == wanted - 1
        if (
            res.outcome is TokenOutcome.APPLICABLE
            and res.value < 256
            and (final or not res.last)
        ):
            components[i] = res.value
        else:
            # Bad color, but keep the cursor in step with what was read
            valid = False
        if res.last:
            break

    if valid:
        _set_color(state, background, EXTENDED_COLOR, (mode, *components))
    else:
        _set_color(state, background, NO_COLOR, EMPTY_EXTRA)
    return state


def _apply_code(
    state: State, code: int, text: str, advise: AdvisorySink | None = None
) -> State:
    if code == 0:
        state.reset()
    elif code < 10:
        state.style |= Style.from_code(code)
    elif code in _UNHANDLED_CODES:
        logger.debug("Unhandled SGR code %d at byte %d", code, state.pos_byte)
        message = f"Encountered unhandled SGR code {code}"
        if advise is not None:
            advise(message)
        else:
            warnings.warn(message, UnhandledSgrWarning, stacklevel=4)
    elif code == 22:
        state.style &= ~(Style.BOLD | Style.FAINT)
    elif code == 25:
        state.style &= ~(Style.SLOW_BLINK | Style.FAST_BLINK)
    elif 20 <= code < 30:
        state.style &= ~Style.from_code(code - 20)
    elif 30 <= code < 50:
        background = code >= 40
        color = code % 10
        if color == EXTENDED_COLOR:
            state = parse_extended_color(state, text, background)
        else:
            if color == 9:
                color = NO_COLOR
            _set_color(state, background, color, EMPTY_EXTRA)
    return state


def parse_escape(state: State, text: str, advise: AdvisorySink | None = None) -> State:
    """Parse the SGR sequence whose ``ESC`` is at ``state.pos_byte``.

    A well formed sequence updates the display attributes and advances only
    ``pos_byte``. A malformed one is counted as literal text: the display
    attributes are restored and ``pos_raw`` advances by the bytes consumed.
    Unhandled codes are reported to *advise*, or as an
    ``UnhandledSgrWarning`` when no sink is given.
    """
    start = state.pos_byte
    snapshot = state.copy()
    state.pos_byte = safe_add(start, len(CSI))

    while True:
        res = parse_token(text, state.pos_byte)
        state.pos_byte = safe_add(state.pos_byte, res.length)
        state.last = res.last

        if not res.accepted:
            state.fail = True
        elif res.outcome is TokenOutcome.APPLICABLE:
            state = _apply_code(state, res.value, text, advise)

        # state.last can differ from res.last after a 38/48 continuation
        if res.last or state.last or state.fail:
            break

    if state.fail:
        consumed = state.pos_byte - start
        logger.debug("Malformed SGR sequence at byte %d, %d bytes literal", start, consumed)
        state.restore_display(snapshot)
        state.pos_raw = safe_add(state.pos_raw, consumed)
    return state


def state_at_raw_position(
    pos: int, text: str, state: State, advise: AdvisorySink | None = None
) -> State:
    """Advance *state* through *text* up to raw offset *pos*.

    *state* is either fresh from ``state_init()`` or the result of an earlier
    call on the same string with a position no greater than *pos*. An escape
    sequence starting exactly at *pos* is still read, since it has no width.
    The argument is not modified; the advanced state is returned. *advise*
    receives advisory messages, see ``parse_escape``.
    """
    if state.string is not None and state.string is not text:
        raise StateReuseError("Cannot re-use a state with a different string.")
    if pos < state.pos_target:
        raise StateReuseError(
            f"Cannot re-use a state for an earlier position ({pos}) "
            f"than it has reached ({state.pos_target})."
        )

    state = state.copy()
    state.string = text
    state.pos_target = pos
    size = len(text)

    while state.pos_byte < size and state.pos_raw <= pos:
        state.fail = state.last = False
        _check_ascii(text, state.pos_byte)

        if text.startswith(CSI, state.pos_byte):
            state = parse_escape(state, text, advise)
        elif state.pos_raw < pos:
            state.pos_byte = safe_add(state.pos_byte, 1)
            state.pos_raw = safe_add(state.pos_raw, 1)
        else:
            break

    state.pos_ansi = state.pos_byte
    return state
