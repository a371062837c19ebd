"""Strict integer, date and file-size literals.

Every byte of a field must be consumed. A partial parse is always an
error, never a silently truncated value.
"""

from __future__ import annotations

import email.utils
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Literal

from .errors import CodecError, CodecErrorKind

DateFormat = Literal["raw", "raw-permissive", "rfc2822", "now"]
DATE_FORMATS: tuple[str, ...] = ("raw", "raw-permissive", "rfc2822", "now")

# Largest zone accepted by fast-import's strict raw format.
MAX_STRICT_ZONE = 1400

_UNIT_FACTORS = {
    b"": 1,
    b"k": 1024,
    b"K": 1024,
    b"m": 1024 * 1024,
    b"M": 1024 * 1024,
    b"g": 1024 * 1024 * 1024,
    b"G": 1024 * 1024 * 1024,
}


def _scan_digits(b: bytes, start: int = 0) -> int:
    """Return the index just past the ASCII digits beginning at start."""
    i = start
    while i < len(b) and 48 <= b[i] <= 57:
        i += 1
    return i


def parse_uint(b: bytes, *, bits: int = 64) -> int:
    """Parse an unsigned decimal integer that fits in ``bits`` bits.

    Raises:
        CodecError: SIGN for ``+``/``-``, NO_DIGITS for empty input,
            TRAILING for any non-digit byte, OVERFLOW when too large.
    """
    if b[:1] in (b"+", b"-"):
        raise CodecError(CodecErrorKind.SIGN, b)
    end = _scan_digits(b)
    if end == 0:
        if b:
            raise CodecError(CodecErrorKind.TRAILING, b)
        raise CodecError(CodecErrorKind.NO_DIGITS, b)
    if end != len(b):
        raise CodecError(CodecErrorKind.TRAILING, b)
    value = int(b)
    if value >= 1 << bits:
        raise CodecError(CodecErrorKind.OVERFLOW, b)
    return value


def parse_int(b: bytes, *, bits: int = 64) -> int:
    """Parse a signed decimal integer. Only ``-`` is a legal sign."""
    if b[:1] == b"+":
        raise CodecError(CodecErrorKind.SIGN, b)
    negative = b[:1] == b"-"
    digits = b[1:] if negative else b
    if digits[:1] in (b"+", b"-"):
        raise CodecError(CodecErrorKind.SIGN, b)
    end = _scan_digits(digits)
    if end == 0:
        if digits:
            raise CodecError(CodecErrorKind.TRAILING, b)
        raise CodecError(CodecErrorKind.NO_DIGITS, b)
    if end != len(digits):
        raise CodecError(CodecErrorKind.TRAILING, b)
    value = -int(digits) if negative else int(digits)
    if not -(1 << (bits - 1)) <= value < 1 << (bits - 1):
        raise CodecError(CodecErrorKind.OVERFLOW, b)
    return value


@dataclass(frozen=True)
class FileSize:
    """A size with an optional unit suffix, as in ``--max-pack-size=4g``."""

    value: int
    unit: bytes = b""

    @property
    def num_bytes(self) -> int:
        return self.value * _UNIT_FACTORS[self.unit]

    def to_bytes(self) -> bytes:
        return b"%d%s" % (self.value, self.unit)


def parse_file_size(b: bytes) -> FileSize:
    """Parse ``<digits>[kKmMgG]``. Suffixes are only legal here."""
    end = _scan_digits(b)
    unit = b[end:]
    if end == 0:
        parse_uint(b)  # raises the precise kind
    if unit not in _UNIT_FACTORS:
        raise CodecError(CodecErrorKind.TRAILING, b)
    return FileSize(parse_uint(b[:end], bits=32), unit)


def _zone_bytes(offset: int) -> bytes:
    sign = b"-" if offset < 0 else b"+"
    hours, minutes = divmod(abs(offset), 60)
    return b"%s%02d%02d" % (sign, hours, minutes)


def _zone_offset(tz: bytes) -> int:
    """Minutes east of UTC for a zone token like ``-0530``."""
    sign = -1 if tz[:1] == b"-" else 1
    digits = tz[1:] if tz[:1] in (b"+", b"-") else tz
    value = int(digits) if digits else 0
    hours, minutes = divmod(value, 100)
    return sign * (hours * 60 + minutes)


@dataclass(frozen=True)
class Date:
    """A timestamp from a person identifier.

    ``tz`` is the zone token as written (``+0100``). ``text`` keeps the
    exact source bytes so an untouched date serializes unchanged; it is
    ignored once it no longer agrees with ``seconds``/``tz``.
    """

    seconds: int
    tz: bytes = b"+0000"
    is_now: bool = False
    text: bytes | None = field(default=None, compare=False, repr=False)

    @classmethod
    def now(cls) -> Date:
        return cls(0, b"+0000", is_now=True, text=b"now")

    @classmethod
    def from_offset(cls, seconds: int, offset: int) -> Date:
        """Build a date from seconds since the epoch and minutes east of UTC."""
        return cls(seconds, _zone_bytes(offset))

    @property
    def offset(self) -> int:
        return _zone_offset(self.tz)

    def to_datetime(self) -> datetime:
        tzinfo = timezone(timedelta(minutes=self.offset))
        return datetime.fromtimestamp(self.seconds, tzinfo)

    def format(self, fmt: DateFormat = "raw") -> bytes:
        """Render the date for a stream using ``fmt``."""
        if self.text is not None:
            try:
                reparsed = parse_date(self.text, fmt)
            except CodecError:
                reparsed = None
            if reparsed == self:
                return self.text
        if fmt == "now" or self.is_now:
            return b"now"
        if fmt == "rfc2822":
            return email.utils.format_datetime(self.to_datetime()).encode("ascii")
        return b"%d %s" % (self.seconds, self.tz)


def parse_date(b: bytes, fmt: DateFormat = "raw") -> Date:
    """Parse a person-identifier date in one of fast-import's formats.

    Raises:
        CodecError: DATE/ZONE for malformed dates, or the integer kinds
            for a malformed seconds field.
    """
    if fmt == "raw" or fmt == "raw-permissive":
        return _parse_raw_date(b, strict=fmt == "raw")
    if fmt == "rfc2822":
        return _parse_rfc2822_date(b)
    if fmt == "now":
        if b != b"now":
            raise CodecError(CodecErrorKind.DATE, b)
        return Date.now()
    raise ValueError(f"Unknown date format: {fmt!r}")


def _parse_raw_date(b: bytes, *, strict: bool) -> Date:
    sp = b.find(b" ")
    if sp < 0:
        raise CodecError(CodecErrorKind.DATE, b)
    seconds = parse_uint(b[:sp])
    zone = b[sp + 1 :]
    if zone[:1] in (b"+", b"-"):
        digits = zone[1:]
    elif strict:
        raise CodecError(CodecErrorKind.ZONE, b)
    else:
        digits = zone
    try:
        value = parse_uint(digits)
    except CodecError as err:
        raise CodecError(err.kind, b) from err
    if strict and value > MAX_STRICT_ZONE:
        raise CodecError(CodecErrorKind.ZONE, b)
    return Date(seconds, zone, text=b)


def _parse_rfc2822_date(b: bytes) -> Date:
    try:
        parsed = email.utils.parsedate_tz(b.decode("ascii"))
    except (UnicodeDecodeError, ValueError, IndexError) as err:
        raise CodecError(CodecErrorKind.DATE, b) from err
    if parsed is None:
        raise CodecError(CodecErrorKind.DATE, b)
    offset_seconds = parsed[9] or 0
    seconds = email.utils.mktime_tz(parsed)
    return Date(seconds, _zone_bytes(offset_seconds // 60), text=b)
