"""Tagged reading parser: normalized line -> Reading."""

from __future__ import annotations

import logging
import re

from sensorctl.core.errors import ParseError
from sensorctl.core.model import Reading, ReadingKind

LOGGER = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_TAGS = {"E": ReadingKind.ECG, "P": ReadingKind.PPG}


def parse_value(text: str) -> float:
    """Parse plain decimal floating-point text (no locale separators, no nan/inf)."""
    if not _NUMBER_RE.fullmatch(text):
        raise ParseError(f"Not a decimal number: {text!r}")
    return float(text)


def parse_reading(line: str) -> Reading | None:
    """Classify one normalized line.

    Returns None for empty lines and for lines that are not tagged readings
    (unknown prefix or a bare tag). A tagged line with a malformed number
    yields an INVALID reading so the stream can carry on.
    """
    if not line:
        return None

    kind = _TAGS.get(line[0])
    if kind is None or len(line) < 2:
        LOGGER.debug("Dropping unrecognized line: %r", line)
        return None

    try:
        value = parse_value(line[1:])
    except ParseError:
        LOGGER.debug("Bad %s number in line %r", kind.value, line)
        return Reading(kind=ReadingKind.INVALID, raw_text=line, reason=f"bad {kind.value} number")
    return Reading(kind=kind, value=value)
