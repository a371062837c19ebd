"""C-style quoting of paths in file changes and ``ls`` commands.

Paths are bytes, never text. Each grammar position has its own rule
for where an unquoted path ends, so there is one parser per context.
"""

from .errors import CodecError, CodecErrorKind

_UNESCAPES = {
    ord("a"): 0x07,
    ord("b"): 0x08,
    ord("f"): 0x0C,
    ord("n"): 0x0A,
    ord("r"): 0x0D,
    ord("t"): 0x09,
    ord("v"): 0x0B,
    ord("\\"): ord("\\"),
    ord('"'): ord('"'),
}

_ESCAPES = {value: b"\\" + bytes([key]) for key, value in _UNESCAPES.items()}


def unquote_c_style(buf: bytes, pos: int = 0) -> tuple[bytes, int]:
    """Unquote the C-style string literal starting at ``buf[pos]``.

    Returns:
        The decoded bytes and the index just past the closing quote.

    Raises:
        CodecError: UNTERMINATED, INVALID_ESCAPE, INVALID_OCTAL,
            OCTAL_OVERFLOW or ESCAPED_NUL.
    """
    if buf[pos : pos + 1] != b'"':
        raise CodecError(CodecErrorKind.NOT_QUOTED, buf[pos:])
    out = bytearray()
    i = pos + 1
    n = len(buf)
    while True:
        # Copy runs without escapes in one slice.
        j = i
        while j < n and buf[j] not in (0x22, 0x5C):
            j += 1
        out += buf[i:j]
        if j >= n:
            raise CodecError(CodecErrorKind.UNTERMINATED, buf[pos:])
        if buf[j] == 0x22:
            return bytes(out), j + 1
        j += 1
        if j >= n:
            raise CodecError(CodecErrorKind.UNTERMINATED, buf[pos:])
        ch = buf[j]
        if ch in _UNESCAPES:
            out.append(_UNESCAPES[ch])
            i = j + 1
        elif 0x30 <= ch <= 0x33:
            if j + 2 >= n:
                raise CodecError(CodecErrorKind.UNTERMINATED, buf[pos:])
            o2, o3 = buf[j + 1], buf[j + 2]
            if not (0x30 <= o2 <= 0x37 and 0x30 <= o3 <= 0x37):
                raise CodecError(CodecErrorKind.INVALID_OCTAL, buf[pos:])
            value = (ch - 0x30) << 6 | (o2 - 0x30) << 3 | (o3 - 0x30)
            if value == 0:
                raise CodecError(CodecErrorKind.ESCAPED_NUL, buf[pos:])
            out.append(value)
            i = j + 3
        elif 0x34 <= ch <= 0x37:
            raise CodecError(CodecErrorKind.OCTAL_OVERFLOW, buf[pos:])
        else:
            raise CodecError(CodecErrorKind.INVALID_ESCAPE, buf[pos:])


def parse_path(line: bytes, pos: int = 0) -> tuple[bytes, int]:
    """Parse a path that is followed by another field on the same line.

    An unquoted path ends at the next space. Returns the path and the
    index of the byte after it (the separating space, or end of line).
    """
    if line[pos : pos + 1] == b'"':
        return unquote_c_style(line, pos)
    end = line.find(b" ", pos)
    if end < 0:
        end = len(line)
    if end == pos:
        raise CodecError(CodecErrorKind.EMPTY, line[pos:])
    return line[pos:end], end


def parse_path_eol(line: bytes, pos: int = 0) -> bytes:
    """Parse a path that runs to the end of the line.

    Unquoted, spaces are part of the path. Quoted, nothing may follow
    the closing quote.
    """
    if line[pos : pos + 1] == b'"':
        path, end = unquote_c_style(line, pos)
        if end != len(line):
            raise CodecError(CodecErrorKind.TRAILING, line[pos:])
        return path
    if pos >= len(line):
        raise CodecError(CodecErrorKind.EMPTY, b"")
    return line[pos:]


def parse_ls_path(line: bytes, pos: int = 0) -> bytes:
    """Parse the path of a top-level ``ls <dataref> <path>`` command."""
    return parse_path_eol(line, pos)


def parse_commit_ls_path(line: bytes, pos: int = 0) -> bytes:
    """Parse the path of an in-commit ``ls "<path>"``; it must be quoted.

    A leading byte other than ``"`` means the line is the
    ``ls <dataref> <path>`` form instead.
    """
    if line[pos : pos + 1] != b'"':
        raise CodecError(CodecErrorKind.NOT_QUOTED, line[pos:])
    return parse_path_eol(line, pos)


def needs_quoting(path: bytes, *, quote_non_ascii: bool = False) -> bool:
    for b in path:
        if b < 0x20 or b == 0x7F or b in (0x20, 0x22, 0x5C):
            return True
        if quote_non_ascii and b >= 0x80:
            return True
    return False


def quote_path(
    path: bytes, *, quote_non_ascii: bool = False, force: bool = False
) -> bytes:
    """Quote a path for the stream when it needs it, else return it as is.

    ``force`` quotes unconditionally, as the in-commit ``ls`` form requires.
    The empty path, which names the root tree, is always written as ``""``.

    Raises:
        ValueError: If the path contains NUL, which no quoting can represent.
    """
    if not path:
        return b'""'
    if b"\0" in path:
        raise ValueError(f"Path contains NUL: {path!r}")
    if not force and not needs_quoting(path, quote_non_ascii=quote_non_ascii):
        return path
    out = bytearray(b'"')
    for b in path:
        if b in _ESCAPES:
            out += _ESCAPES[b]
        elif b < 0x20 or b == 0x7F or (quote_non_ascii and b >= 0x80):
            out += b"\\%03o" % b
        else:
            out.append(b)
    out += b'"'
    return bytes(out)
