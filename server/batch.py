"""Batch state lookup over one string.

Runs the parser once per query, reusing the state from the previous query,
and reports 1-based byte/raw/ansi offsets plus the SGR tag in effect.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from ansi_parser import state_at_raw_position
from ansi_state import StateReuseError, safe_add, same_display, state_init
from ansi_tag import state_as_tag

logger = logging.getLogger(__name__)

MATRIX_ROWS = ("pos.byte", "pos.raw", "pos.ansi")


@dataclass
class Offsets:
    byte: int
    raw: int
    ansi: int


@dataclass
class StateBatch:
    tags: list[str | None] = field(default_factory=list)
    offsets: list[Offsets | None] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def as_matrix(self) -> dict[str, list[int | None]]:
        """Offsets as one row per position space, one column per query."""
        matrix: dict[str, list[int | None]] = {name: [] for name in MATRIX_ROWS}
        for off in self.offsets:
            matrix["pos.byte"].append(off.byte if off else None)
            matrix["pos.raw"].append(off.raw if off else None)
            matrix["pos.ansi"].append(off.ansi if off else None)
        return matrix


def state_at_positions(
    text: str | None,
    positions: Sequence[int | None],
    check_cancel: Callable[[], None] | None = None,
) -> StateBatch:
    """Look up the display state at each 1-based raw position of *text*.

    Non-null *positions* must be strictly increasing. ``None`` positions, or
    a ``None`` text, give ``None`` entries. When the state is unchanged from
    the previous query the previous tag string is reused. *check_cancel* is
    called before each query and may raise to stop the scan. Advisories for
    unhandled SGR codes are collected in ``warnings`` instead of being
    issued through the warnings module.
    """
    batch = StateBatch()
    state = state_init()
    prev = state_init()
    prev_tag = ""
    prev_pos = 0

    for pos in positions:
        if check_cancel is not None:
            check_cancel()
        if text is None or pos is None:
            batch.tags.append(None)
            batch.offsets.append(None)
            continue
        if pos <= prev_pos:
            raise StateReuseError(
                f"Positions must be sorted, strictly increasing and >= 1 (got {pos} after {prev_pos})."
            )
        prev_pos = pos

        state = state_at_raw_position(pos - 1, text, state, batch.warnings.append)
        batch.offsets.append(
            Offsets(
                byte=safe_add(state.pos_byte, 1),
                raw=safe_add(state.pos_raw, 1),
                ansi=safe_add(state.pos_ansi, 1),
            )
        )
        if not same_display(state, prev):
            prev_tag = state_as_tag(state)
        batch.tags.append(prev_tag)
        prev = state

    logger.debug("Resolved %d positions over %d characters", len(positions), len(text or ""))
    return batch
