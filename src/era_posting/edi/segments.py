"""Segment tokenizer and lenient value coercions for X12 text.

Every accessor here is total: positions past the end of a segment read as
absent, unparsable amounts read as ``0.0`` and unparsable dates read as today.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

_AMOUNT_PREFIX = re.compile(r"^\s*[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?")

# ISA is a fixed 16-element header
ISA_ELEMENT_COUNT = 16


class Delimiters(BaseModel):
    """The three separators an interchange is written with."""

    model_config = ConfigDict(frozen=True)

    element: str = "*"
    segment: str = "~"
    component: str = ":"


DEFAULT_DELIMITERS = Delimiters()


class Segment(BaseModel):
    """One X12 segment: a tag plus its ordered elements.

    Positions are 1-based to match X12 element numbering (``CLP01`` is
    ``segment.element(1)``).
    """

    model_config = ConfigDict(frozen=True)

    tag: str
    elements: list[str] = Field(default_factory=list)

    def element(self, position: int, default: str = "") -> str:
        if 1 <= position <= len(self.elements):
            return self.elements[position - 1] or default
        return default

    def optional(self, position: int) -> str | None:
        value = self.element(position)
        return value if value else None

    def components(self, position: int, separator: str = ":") -> list[str]:
        value = self.element(position)
        return value.split(separator) if value else []

    def amount(self, position: int) -> float:
        return parse_amount(self.element(position))


def normalize_line_endings(content: str) -> str:
    return content.replace("\r\n", "\n").replace("\r", "\n")


def detect_delimiters(content: str, fallback: Delimiters = DEFAULT_DELIMITERS) -> Delimiters:
    """Read the element, component and segment separators from an ISA header.

    The character after ``ISA`` is the element separator, ISA16 holds the
    component separator and the character right after ISA16 terminates the
    segment. Anything that does not look like a well-formed header yields
    ``fallback``.
    """
    text = content.lstrip()
    if not text.startswith("ISA") or len(text) < 4:
        return fallback

    element = text[3]
    if element.isalnum() or element.isspace() or element == fallback.segment:
        return fallback

    parts = text.split(element, ISA_ELEMENT_COUNT)
    if len(parts) <= ISA_ELEMENT_COUNT or len(parts[ISA_ELEMENT_COUNT]) < 2:
        return fallback

    component = parts[ISA_ELEMENT_COUNT][0]
    segment = parts[ISA_ELEMENT_COUNT][1]
    if component.isalnum() or component.isspace():
        return fallback
    if segment.isalnum() or (segment.isspace() and segment != "\n"):
        return fallback
    if len({element, component, segment}) < 3:
        return fallback
    # A short ISA lets the split run into later segments
    if any(segment in part for part in parts[1:ISA_ELEMENT_COUNT]):
        return fallback

    return Delimiters(element=element, segment=segment, component=component)


def split_segments(content: str, delimiters: Delimiters = DEFAULT_DELIMITERS) -> list[Segment]:
    """Split normalized X12 text into tokenized segments, dropping empty ones."""
    segments: list[Segment] = []
    for raw in content.split(delimiters.segment):
        raw = raw.strip()
        if not raw:
            continue
        parts = raw.split(delimiters.element)
        segments.append(Segment(tag=parts[0].strip(), elements=parts[1:]))
    return segments


def parse_amount(value: str | None) -> float:
    """Parse a monetary or quantity element, treating junk as ``0.0``."""
    if not value:
        return 0.0
    match = _AMOUNT_PREFIX.match(value)
    if match is None:
        return 0.0
    number = float(match.group(0))
    return number if math.isfinite(number) else 0.0


def _resolve_year(digits: str, pivot: int) -> int:
    year = int(digits)
    if len(digits) == 2:
        year += 1900 if year > pivot else 2000
    return year


def _split_date(value: str, pivot: int) -> tuple[int, int, int] | None:
    if not value.isdigit():
        return None
    if len(value) == 8:
        return _resolve_year(value[:4], pivot), int(value[4:6]), int(value[6:8])
    if len(value) == 6:
        return _resolve_year(value[:2], pivot), int(value[2:4]), int(value[4:6])
    return None


def parse_edi_date(value: str | None, pivot: int = 50) -> date:
    """Parse ``YYYYMMDD`` or ``YYMMDD``; malformed input yields today."""
    parts = _split_date((value or "").strip(), pivot)
    if parts is None:
        return date.today()
    try:
        return date(*parts)
    except ValueError:
        return date.today()


def parse_edi_datetime(value: str | None, time_value: str | None = None, pivot: int = 50) -> datetime:
    """Parse an EDI date plus optional ``HHMM`` time as a local datetime."""
    parts = _split_date((value or "").strip(), pivot)
    if parts is None:
        return datetime.now()
    hour = minute = 0
    time_value = (time_value or "").strip()
    if len(time_value) >= 4 and time_value[:4].isdigit():
        hour, minute = int(time_value[:2]), int(time_value[2:4])
    try:
        return datetime(*parts, hour, minute)
    except ValueError:
        return datetime.now()
