"""Byte-oriented line framing for the sensor notification stream."""

from __future__ import annotations

import logging
from collections.abc import Iterator

from sensorctl.core.errors import DecodeError

LINE_TERMINATOR = b"\n"
DEFAULT_MAX_PENDING_BYTES = 4096
LOGGER = logging.getLogger(__name__)

_CONTROL_CHARS = {codepoint: None for codepoint in [*range(0x20), 0x7F]}


def normalize_line(text: str) -> str:
    """Drop control characters (including CR) and trim surrounding whitespace."""
    return text.translate(_CONTROL_CHARS).strip()


class FrameDecoder:
    """Accumulates notification chunks and yields complete, normalized lines.

    Chunks may split a line anywhere, including inside a multi-byte UTF-8
    sequence, or carry several lines at once. Bytes after the last terminator
    are kept verbatim until a later chunk completes them.
    """

    def __init__(self, max_pending_bytes: int = DEFAULT_MAX_PENDING_BYTES) -> None:
        if max_pending_bytes <= 0:
            raise ValueError("max_pending_bytes must be positive")
        self.max_pending_bytes = max_pending_bytes
        self._pending = bytearray()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def reset(self) -> None:
        self._pending.clear()

    def feed(self, chunk: bytes) -> Iterator[str]:
        """Append `chunk` and return the lines it completes, in order.

        Framing and decoding both happen before this returns, so the pending
        buffer never holds a terminator. Every complete line that is valid
        UTF-8 is yielded. Lines that are not, and an unterminated remainder
        above `max_pending_bytes`, are left out and reported together as one
        `DecodeError` once the good lines have been consumed. A rejected line
        costs only its own bytes; the pending buffer is cleared on overflow.
        """
        self._pending.extend(chunk)

        lines: list[str] = []
        problems: list[str] = []
        while True:
            index = self._pending.find(LINE_TERMINATOR)
            if index == -1:
                break
            raw = bytes(self._pending[:index])
            del self._pending[: index + len(LINE_TERMINATOR)]
            try:
                lines.append(normalize_line(raw.decode("utf-8")))
            except UnicodeDecodeError as exc:
                LOGGER.debug("Rejecting frame that is not UTF-8: %r", raw)
                problems.append(f"Invalid UTF-8 in frame {raw!r}: {exc.reason}")

        if len(self._pending) > self.max_pending_bytes:
            LOGGER.warning(
                "Dropping %d unterminated bytes (limit %d)", len(self._pending), self.max_pending_bytes
            )
            problems.append(
                f"Frame buffer overflow: {len(self._pending)} bytes without a line terminator "
                f"(limit {self.max_pending_bytes})"
            )
            self._pending.clear()

        return self._emit(lines, problems)

    @staticmethod
    def _emit(lines: list[str], problems: list[str]) -> Iterator[str]:
        yield from lines
        if problems:
            raise DecodeError("; ".join(problems))
