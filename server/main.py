"""ansi-state FastAPI server — SGR display state lookup."""

from __future__ import annotations

import logging
import os
import socket
import sys
import time
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field, field_validator, model_validator

from ansi_state import (
    EMPTY_EXTRA,
    EXTENDED_COLOR,
    PALETTE,
    TRUECOLOR,
    NonAsciiError,
    ScanCancelledError,
    State,
    StateReuseError,
    Style,
)
from ansi_tag import state_as_tag
from batch import state_at_positions

__version__ = "1.0.0"

logger = logging.getLogger(__name__)

app = FastAPI(title="ansi-state", version=__version__)
_security = HTTPBearer()

TOKEN = os.environ.get("ANSI_STATE_TOKEN", "changeme")
MAX_TEXT = int(os.environ.get("ANSI_STATE_MAX_TEXT", "1000000"))
MAX_POSITIONS = int(os.environ.get("ANSI_STATE_MAX_POSITIONS", "10000"))
RATE_LIMIT = int(os.environ.get("ANSI_STATE_RATE_LIMIT", "50"))
SCAN_TIMEOUT = float(os.environ.get("ANSI_STATE_SCAN_TIMEOUT", "5.0"))

if TOKEN == "changeme":
    logger.critical(
        "ANSI_STATE_TOKEN is set to 'changeme'. Generate a secure token with "
        "python3 -c \"import secrets; print(secrets.token_urlsafe(32))\" "
        "and export ANSI_STATE_TOKEN=<your-token>"
    )
    sys.exit(1)


def _verify(creds: HTTPAuthorizationCredentials = Depends(_security)) -> str:
    if creds.credentials != TOKEN:
        logger.warning("Rejected request with invalid token")
        raise HTTPException(status_code=401, detail="Invalid token")
    return creds.credentials


class _RateLimiter:
    """Simple in-memory sliding-window rate limiter."""

    def __init__(self, max_per_sec: int = 20):
        self._max = max_per_sec
        self._timestamps: list[float] = []

    def check(self) -> None:
        now = time.monotonic()
        self._timestamps = [t for t in self._timestamps if now - t < 1.0]
        if len(self._timestamps) >= self._max:
            raise HTTPException(status_code=429, detail="Rate limit exceeded")
        self._timestamps.append(now)


_state_limiter = _RateLimiter(max_per_sec=RATE_LIMIT)


def _deadline(seconds: float):
    """Cancellation hook that gives up once *seconds* have elapsed."""
    expires = time.monotonic() + seconds

    def check() -> None:
        if time.monotonic() > expires:
            raise ScanCancelledError(f"Scan exceeded {seconds:g}s")

    return check


class StateRequest(BaseModel):
    text: Optional[str] = Field(default=None, max_length=MAX_TEXT)
    positions: list[Optional[int]] = Field(max_length=MAX_POSITIONS)

    @model_validator(mode="after")
    def sorted_positions(self):
        prev = 0
        for pos in self.positions:
            if pos is None:
                continue
            if pos <= prev:
                raise ValueError("positions must be >= 1 and strictly increasing")
            prev = pos
        return self


class ColorSpec(BaseModel):
    code: Optional[int] = Field(default=None, ge=0, le=7)
    palette: Optional[int] = Field(default=None, ge=0, le=255)
    rgb: Optional[tuple[int, int, int]] = None

    @field_validator("rgb")
    @classmethod
    def rgb_range(cls, value):
        if value is not None and not all(0 <= v <= 255 for v in value):
            raise ValueError("rgb components must be 0-255")
        return value

    @model_validator(mode="after")
    def exactly_one(self):
        given = [v for v in (self.code, self.palette, self.rgb) if v is not None]
        if len(given) != 1:
            raise ValueError("Provide exactly one of code, palette or rgb")
        return self

    def as_fields(self) -> tuple[int, tuple[int, int, int, int]]:
        if self.code is not None:
            return self.code, EMPTY_EXTRA
        if self.palette is not None:
            return EXTENDED_COLOR, (PALETTE, self.palette, 0, 0)
        # exactly_one guarantees rgb is set here
        r, g, b = self.rgb
        return EXTENDED_COLOR, (TRUECOLOR, r, g, b)


class TagRequest(BaseModel):
    styles: list[str] = Field(default_factory=list)
    fg: Optional[ColorSpec] = None
    bg: Optional[ColorSpec] = None

    @field_validator("styles")
    @classmethod
    def known_styles(cls, value):
        unknown = [name for name in value if name.upper() not in Style.__members__]
        if unknown:
            raise ValueError(f"Unknown styles: {', '.join(unknown)}")
        return value

    def to_state(self) -> State:
        state = State()
        for name in self.styles:
            state.style |= Style[name.upper()]
        if self.fg is not None:
            state.color, state.color_extra = self.fg.as_fields()
        if self.bg is not None:
            state.bg_color, state.bg_color_extra = self.bg.as_fields()
        return state


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "hostname": socket.gethostname(),
        "version": __version__,
    }


@app.post("/state")
async def post_state(
    body: StateRequest,
    _: str = Depends(_verify),
):
    _state_limiter.check()
    try:
        batch = await run_in_threadpool(
            state_at_positions,
            body.text,
            body.positions,
            check_cancel=_deadline(SCAN_TIMEOUT),
        )
    except (NonAsciiError, StateReuseError) as exc:
        logger.warning("Rejected /state request: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc))
    except ScanCancelledError as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    return {
        "tags": batch.tags,
        "offsets": [
            {"byte": off.byte, "raw": off.raw, "ansi": off.ansi} if off else None
            for off in batch.offsets
        ],
        "warnings": batch.warnings,
    }


@app.post("/tag")
async def post_tag(
    body: TagRequest,
    _: str = Depends(_verify),
):
    return {"tag": state_as_tag(body.to_state())}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.environ.get("ANSI_STATE_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        app,
        host=os.environ.get("ANSI_STATE_HOST", "127.0.0.1"),
        port=int(os.environ.get("ANSI_STATE_PORT", "8787")),
    )
