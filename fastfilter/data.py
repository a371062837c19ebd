"""Payload framing for ``data`` blocks, and the line-accounted input."""

from __future__ import annotations

import io
import tempfile
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterator

from .errors import CodecError, FatalParseError, ParseErrorKind
from .numbers import parse_uint

CHUNK_SIZE = 64 * 1024

# fast-import's default for --big-file-threshold.
DEFAULT_BIG_FILE_THRESHOLD = 512 * 1024 * 1024


class StreamInput:
    """Binary input that counts lines and bytes and can push back one line.

    ``line`` and ``line_offset`` describe the most recently returned line,
    which is what error positions point at.
    """

    def __init__(self, raw: BinaryIO | bytes) -> None:
        if isinstance(raw, (bytes, bytearray, memoryview)):
            raw = io.BytesIO(bytes(raw))
        self.raw = raw
        self.offset = 0
        self.line = 0
        self.line_offset = 0
        self.eof = False
        self._last: bytes | None = None
        self._unread = False

    def readline(self) -> bytes | None:
        """Return the next line without its LF, or None at end of input."""
        if self._unread:
            self._unread = False
            return self._last
        raw = self.raw.readline()
        if not raw:
            self.eof = True
            self._last = None
            return None
        self.line_offset = self.offset
        self.offset += len(raw)
        self.line += 1
        self._last = raw[:-1] if raw.endswith(b"\n") else raw
        return self._last

    def unread(self) -> None:
        """Make the next readline() return the last line again."""
        if self._last is None:
            raise RuntimeError("No line to push back")
        self._unread = True

    def readline_raw(self) -> bytes:
        """Return the next line including its LF; b"" at end of input."""
        if self._unread:
            raise RuntimeError("Raw read with a pushed-back line pending")
        raw = self.raw.readline()
        if not raw:
            self.eof = True
            return b""
        self.line_offset = self.offset
        self.offset += len(raw)
        self.line += 1
        return raw

    def read(self, n: int) -> bytes:
        """Read up to n bytes; fewer only at end of input."""
        if self._unread:
            raise RuntimeError("Raw read with a pushed-back line pending")
        parts = []
        remaining = n
        while remaining > 0:
            chunk = self.raw.read(remaining)
            if not chunk:
                self.eof = True
                break
            parts.append(chunk)
            remaining -= len(chunk)
        data = b"".join(parts)
        self.offset += len(data)
        self.line += data.count(b"\n")
        return data


@dataclass(frozen=True)
class Counted:
    """``data <length>`` framing."""

    length: int

    def to_bytes(self) -> bytes:
        return b"data %d" % self.length


@dataclass(frozen=True)
class Delimited:
    """``data <<<delim>`` framing; the payload ends at a line equal to delim."""

    delim: bytes

    def to_bytes(self) -> bytes:
        return b"data <<" + self.delim


DataHeader = Counted | Delimited


def parse_data_header(line: bytes) -> DataHeader:
    """Parse a ``data`` line.

    Raises:
        FatalParseError: EXPECTED_DATA, INVALID_DATA_LENGTH or
            DELIM_CONTAINS_NUL.
    """
    if not line.startswith(b"data "):
        raise FatalParseError(ParseErrorKind.EXPECTED_DATA, repr(line))
    arg = line[5:]
    if arg.startswith(b"<<"):
        delim = arg[2:]
        if b"\0" in delim:
            raise FatalParseError(ParseErrorKind.DELIM_CONTAINS_NUL, repr(delim))
        return Delimited(delim)
    try:
        return Counted(parse_uint(arg))
    except CodecError as err:
        raise FatalParseError(ParseErrorKind.INVALID_DATA_LENGTH, str(err)) from err


class DataReader:
    """Streaming reader over one payload of the input.

    Reads never run past the end of the payload. With ``spool_size`` set,
    everything read is also recorded to a spooled temporary file, so the
    payload can still be replayed to the output after a hook has looked
    at it. At most ``spool_size`` bytes of that record stay in memory.
    """

    def __init__(
        self,
        source: StreamInput,
        header: DataHeader,
        *,
        spool_size: int | None = None,
        on_finish: Callable[[], None] | None = None,
    ) -> None:
        self.source = source
        self.on_finish = on_finish
        self.header = header
        self.len_read = 0
        self.closed = False
        self.finished = isinstance(header, Counted) and header.length == 0
        self._pending = b""
        self._spool = (
            tempfile.SpooledTemporaryFile(max_size=spool_size)
            if spool_size is not None
            else None
        )

    @property
    def length(self) -> int | None:
        """Declared length for counted data, None for delimited data."""
        if isinstance(self.header, Counted):
            return self.header.length
        return None

    def readable(self) -> bool:
        return True

    def read(self, n: int = -1) -> bytes:
        if n is None or n < 0:
            return self.readall()
        data = self._read(n)
        if data and self._spool is not None:
            self._spool.write(data)
        return data

    def readall(self) -> bytes:
        parts = []
        while chunk := self.read(CHUNK_SIZE):
            parts.append(chunk)
        return b"".join(parts)

    def _read(self, n: int) -> bytes:
        if self.closed:
            raise FatalParseError(ParseErrorKind.DATA_CLOSED)
        if n == 0:
            return b""
        if isinstance(self.header, Counted):
            if self.finished:
                return b""
            want = min(n, self.header.length - self.len_read)
            data = self.source.read(want)
            if len(data) < want:
                raise FatalParseError(
                    ParseErrorKind.DATA_UNEXPECTED_EOF,
                    f"read {self.len_read + len(data)} of {self.header.length} bytes",
                )
            self.len_read += len(data)
            if self.len_read == self.header.length:
                self._finish()
            return data
        if not self._pending:
            if self.finished:
                return b""
            line = self.source.readline_raw()
            if not line:
                raise FatalParseError(
                    ParseErrorKind.UNTERMINATED_DATA, repr(self.header.delim)
                )
            if line.endswith(b"\n") and line[:-1] == self.header.delim:
                self._finish()
                return b""
            self._pending = line
        data = self._pending[:n]
        self._pending = self._pending[n:]
        self.len_read += len(data)
        return data

    def _finish(self) -> None:
        self.finished = True
        if self.on_finish is not None:
            self.on_finish()

    def skip_rest(self) -> int:
        """Consume the rest of the payload without keeping it.

        Returns:
            The number of bytes skipped.
        """
        skipped = 0
        while chunk := self._read(CHUNK_SIZE):
            skipped += len(chunk)
        return skipped

    def close(self) -> None:
        """Skip whatever is left and refuse further reads."""
        if self.closed:
            return
        self.skip_rest()
        self.closed = True
        if self._spool is not None:
            self._spool.close()
            self._spool = None

    def replay(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        """Yield the whole payload from its first byte, in bounded chunks.

        Bytes already read come back from the spool; the rest is read
        from the input.

        Raises:
            FatalParseError: DATA_ALREADY_OPENED if part of the payload was
                consumed without a spool to replay it from.
        """
        if self.len_read and self._spool is None:
            raise FatalParseError(
                ParseErrorKind.DATA_ALREADY_OPENED, "payload was partly consumed"
            )
        if self._spool is not None:
            self._spool.seek(0)
            while chunk := self._spool.read(chunk_size):
                yield chunk
        while chunk := self._read(chunk_size):
            yield chunk


def delimited_ok(payload: bytes, delim: bytes) -> bool:
    """Whether ``payload`` can be written with ``delim`` framing unchanged."""
    if not delim or b"\0" in delim or b"\n" in delim:
        return False
    if not payload.endswith(b"\n") or b"\0" in payload:
        return False
    return delim not in payload[:-1].split(b"\n")


def write_data(
    out: BinaryIO,
    payload: bytes | DataReader,
    *,
    delim: bytes | None = None,
) -> None:
    """Write a ``data`` command with its payload.

    Bytes are written counted unless ``delim`` is given and valid for
    them. A DataReader is copied in chunks in its original framing, so
    it is never fully buffered.
    """
    if isinstance(payload, DataReader):
        header = payload.header
        out.write(header.to_bytes() + b"\n")
        for chunk in payload.replay():
            out.write(chunk)
        if isinstance(header, Delimited):
            out.write(header.delim + b"\n")
        return
    if delim is not None and delimited_ok(payload, delim):
        out.write(b"data <<%s\n" % delim)
        out.write(payload)
        out.write(delim + b"\n")
        return
    out.write(b"data %d\n" % len(payload))
    out.write(payload)
