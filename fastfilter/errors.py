"""fastfilter error types."""

from __future__ import annotations

import enum
from dataclasses import dataclass


@dataclass(frozen=True)
class StreamPosition:
    """Where in the input stream something happened.

    Attributes:
        command: Zero-based index of the top-level command.
        line: One-based line number of the offending line.
        offset: Byte offset of the start of the offending line.
    """

    command: int
    line: int
    offset: int

    def __str__(self) -> str:
        return f"command {self.command}, line {self.line}, byte {self.offset}"


class ParseErrorKind(enum.Enum):
    """Kinds of fatal errors raised while reading a stream."""

    UNSUPPORTED_COMMAND = "unsupported command"
    UNEXPECTED_BLANK = "unexpected blank line"
    UNEXPECTED_EOF = "unexpected end of input"
    MISSING_DONE = "stream ended without 'done' after 'feature done'"
    INVALID_MARK = "invalid mark"
    ZERO_MARK = "cannot use ':0' as a mark"
    UNKNOWN_MARK = "mark is not defined"
    DUPLICATE_MARK = "mark is already defined"
    MARK_ALREADY_FINAL = "mark identity was already finalized"
    WRONG_OBJECT_KIND = "reference names the wrong kind of object"
    EXPECTED_DATA = "expected 'data' command"
    INVALID_DATA_LENGTH = "invalid data length"
    DATA_UNEXPECTED_EOF = "unexpected EOF in data stream"
    DELIM_CONTAINS_NUL = "data delimiter contains NUL"
    UNTERMINATED_DATA = "unterminated delimited data stream"
    DATA_ALREADY_OPENED = "data stream already opened for reading"
    DATA_CLOSED = "data reader is closed"
    EXPECTED_COMMITTER = "expected committer in commit"
    EXPECTED_TAGGER = "expected tagger in tag"
    EXPECTED_FROM = "expected 'from' command"
    EXPECTED_TO = "expected 'to' command in alias"
    EXPECTED_MARK = "expected 'mark' command"
    REF_CONTAINS_NUL = "ref name contains NUL"
    IDENT_CONTAINS_NUL = "person identifier contains NUL"
    IDENT_NO_LT_OR_GT = "person identifier does not have '<' or '>'"
    IDENT_NO_LT_BEFORE_GT = "person identifier does not have '<' before '>'"
    IDENT_NO_GT_AFTER_LT = "person identifier does not have '>' after '<'"
    IDENT_NO_SPACE_BEFORE_LT = "person identifier does not have ' ' before '<'"
    IDENT_NO_SPACE_AFTER_GT = "person identifier does not have ' ' after '>'"
    INVALID_DATE = "invalid date"
    INVALID_NUMBER = "invalid number"
    INVALID_PATH = "invalid path"
    INVALID_FILE_CHANGE = "invalid file change"
    INVALID_DATAREF = "invalid data reference"
    UNSUPPORTED_OPTION = "unsupported git option"
    UNSUPPORTED_DATE_FORMAT = "unsupported date format"
    OUT_OF_ORDER = "parent commit appears after its child"


class FatalParseError(Exception):
    """Raised when the stream cannot be parsed; aborts the session.

    Attributes:
        kind: The ParseErrorKind describing the failure.
        detail: Extra context (often the offending line).
        position: Where it happened, or None until the lexer or
            pipeline attaches one.
    """

    def __init__(
        self,
        kind: ParseErrorKind,
        detail: str = "",
        position: StreamPosition | None = None,
    ) -> None:
        self.kind = kind
        self.detail = detail
        self.position = position
        super().__init__(self._format())

    def _format(self) -> str:
        text = self.kind.value
        if self.detail:
            text = f"{text}: {self.detail}"
        if self.position is not None:
            text = f"{text} ({self.position})"
        return text

    def at(self, position: StreamPosition) -> FatalParseError:
        """Attach a position if none was recorded yet. Returns self."""
        if self.position is None:
            self.position = position
            self.args = (self._format(),)
        return self


class UnknownMark(FatalParseError):
    """A mark was referenced before any command defined it."""

    def __init__(self, mark: int, position: StreamPosition | None = None) -> None:
        self.mark = mark
        super().__init__(ParseErrorKind.UNKNOWN_MARK, f":{mark}", position)


class DuplicateMark(FatalParseError):
    """A mark was defined twice in one session."""

    def __init__(self, mark: int, position: StreamPosition | None = None) -> None:
        self.mark = mark
        super().__init__(ParseErrorKind.DUPLICATE_MARK, f":{mark}", position)


class MarkAlreadyFinal(FatalParseError):
    """A mark's final identity was assigned more than once."""

    def __init__(self, mark: int, position: StreamPosition | None = None) -> None:
        self.mark = mark
        super().__init__(ParseErrorKind.MARK_ALREADY_FINAL, f":{mark}", position)


class CodecErrorKind(enum.Enum):
    """Kinds of errors from the number, date and path codecs."""

    SIGN = "sign not permitted"
    TRAILING = "unexpected trailing bytes"
    NO_DIGITS = "no digits"
    OVERFLOW = "value overflows"
    ZONE = "invalid timezone offset"
    DATE = "invalid date"
    UNTERMINATED = "string not terminated"
    INVALID_ESCAPE = "invalid escape sequence"
    INVALID_OCTAL = "invalid digit in octal escape sequence"
    OCTAL_OVERFLOW = "octal escape sequence overflows"
    ESCAPED_NUL = "escaped NUL in string"
    NOT_QUOTED = "path must be quoted"
    EMPTY = "value is empty"


class CodecError(ValueError):
    """Raised by the leaf codecs when a field is malformed.

    Attributes:
        kind: The CodecErrorKind describing the failure.
        value: The offending bytes.
    """

    def __init__(self, kind: CodecErrorKind, value: bytes = b"") -> None:
        self.kind = kind
        self.value = value
        super().__init__(f"{kind.value}: {value!r}")


class ConfigurationError(Exception):
    """Raised when a pipeline is constructed with contradictory settings.

    Detected before any stream processing begins.
    """


class Severity(enum.IntEnum):
    INFO = 10
    WARN = 20
    ERROR = 30


@dataclass(frozen=True)
class PolicyWarning:
    """A non-fatal finding surfaced to the caller.

    Processing continues; the pipeline collects these in order.
    """

    severity: Severity
    message: str
    position: StreamPosition | None = None

    def __str__(self) -> str:
        where = f" ({self.position})" if self.position is not None else ""
        return f"{self.severity.name}: {self.message}{where}"
