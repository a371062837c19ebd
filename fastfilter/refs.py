"""Refname validation following ``git check-ref-format``."""

from __future__ import annotations

import enum


class RefnameError(enum.Enum):
    EMPTY = "refname is empty"
    STARTS_WITH_SLASH = "refname starts with slash '/'"
    ENDS_WITH_SLASH = "refname ends with slash '/'"
    SLASH_SLASH = "refname contains consecutive slashes '//'"
    ONLY_ONE_LEVEL = "refname has only one level"
    COMPONENT_IS_DOT = "refname component is dot '.'"
    COMPONENT_STARTS_WITH_DOT = "refname component starts with dot '.'"
    ENDS_WITH_DOT = "refname ends with dot '.'"
    DOT_DOT = "refname contains consecutive dots '..'"
    ASTERISK = "refname contains asterisk '*'"
    MULTIPLE_ASTERISKS = "refname pattern contains multiple asterisks '*'"
    CONTROL_CHAR = "refname contains ASCII control character"
    SPACE = "refname contains space ' '"
    COLON = "refname contains colon ':'"
    QUESTION = "refname contains question mark '?'"
    OPEN_BRACKET = "refname contains open bracket '['"
    BACKSLASH = "refname contains backslash '\\'"
    CARET = "refname contains caret '^'"
    TILDE = "refname contains tilde '~'"
    IS_AT = "refname is the single character '@'"
    AT_BRACE = "refname contains the sequence '@{'"
    COMPONENT_ENDS_WITH_DOT_LOCK = "refname component ends with '.lock'"


_FORBIDDEN = {
    ord(" "): RefnameError.SPACE,
    ord(":"): RefnameError.COLON,
    ord("?"): RefnameError.QUESTION,
    ord("["): RefnameError.OPEN_BRACKET,
    ord("\\"): RefnameError.BACKSLASH,
    ord("^"): RefnameError.CARET,
    ord("~"): RefnameError.TILDE,
}


def check_refname_format(
    name: bytes,
    *,
    allow_onelevel: bool = True,
    refspec_pattern: bool = False,
) -> list[RefnameError]:
    """Return every rule ``name`` breaks, in order of first occurrence.

    An empty list means git would accept the refname. With
    ``refspec_pattern`` a single ``*`` is allowed.
    """
    if not name:
        return [RefnameError.EMPTY]
    if name == b"@":
        return [RefnameError.IS_AT]
    errors: list[RefnameError] = []

    def add(error: RefnameError) -> None:
        if error not in errors:
            errors.append(error)

    asterisks = 0
    for i, ch in enumerate(name):
        if ch < 0x20 or ch == 0x7F:
            add(RefnameError.CONTROL_CHAR)
        elif ch in _FORBIDDEN:
            add(_FORBIDDEN[ch])
        elif ch == ord("*"):
            asterisks += 1
            if not refspec_pattern:
                add(RefnameError.ASTERISK)
            elif asterisks > 1:
                add(RefnameError.MULTIPLE_ASTERISKS)
        elif ch == ord(".") and name[i + 1 : i + 2] == b".":
            add(RefnameError.DOT_DOT)
        elif ch == ord("@") and name[i + 1 : i + 2] == b"{":
            add(RefnameError.AT_BRACE)

    components = name.split(b"/")
    for index, component in enumerate(components):
        if not component:
            if index == 0:
                add(RefnameError.STARTS_WITH_SLASH)
            elif index == len(components) - 1:
                add(RefnameError.ENDS_WITH_SLASH)
            else:
                add(RefnameError.SLASH_SLASH)
            continue
        if component == b".":
            add(RefnameError.COMPONENT_IS_DOT)
        elif component.startswith(b"."):
            add(RefnameError.COMPONENT_STARTS_WITH_DOT)
        if component.endswith(b".lock"):
            add(RefnameError.COMPONENT_ENDS_WITH_DOT_LOCK)
    if name.endswith(b"."):
        add(RefnameError.ENDS_WITH_DOT)
    if not allow_onelevel and len(components) < 2:
        add(RefnameError.ONLY_ONE_LEVEL)
    return errors
