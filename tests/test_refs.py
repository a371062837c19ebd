"""Tests for refname validation."""

import pytest

from fastfilter.refs import RefnameError, check_refname_format


class TestValidRefnames:
    @pytest.mark.parametrize(
        "name",
        [b"refs/heads/main", b"refs/tags/v1.0", b"HEAD", b"refs/heads/feature-x_y", b"a/b@c"],
    )
    def test_accepted(self, name):
        assert check_refname_format(name) == []

    def test_pattern(self):
        assert check_refname_format(b"refs/heads/*", refspec_pattern=True) == []


class TestInvalidRefnames:
    @pytest.mark.parametrize(
        "name, error",
        [
            (b"", RefnameError.EMPTY),
            (b"@", RefnameError.IS_AT),
            (b"/refs/heads/x", RefnameError.STARTS_WITH_SLASH),
            (b"refs/heads/x/", RefnameError.ENDS_WITH_SLASH),
            (b"refs//x", RefnameError.SLASH_SLASH),
            (b"refs/./x", RefnameError.COMPONENT_IS_DOT),
            (b"refs/.hidden", RefnameError.COMPONENT_STARTS_WITH_DOT),
            (b"refs/heads/x.", RefnameError.ENDS_WITH_DOT),
            (b"refs/a..b", RefnameError.DOT_DOT),
            (b"refs/heads/*", RefnameError.ASTERISK),
            (b"refs/a\x01b", RefnameError.CONTROL_CHAR),
            (b"refs/a\x7fb", RefnameError.CONTROL_CHAR),
            (b"refs/a b", RefnameError.SPACE),
            (b"refs/a:b", RefnameError.COLON),
            (b"refs/a?b", RefnameError.QUESTION),
            (b"refs/a[b", RefnameError.OPEN_BRACKET),
            (b"refs/a\\b", RefnameError.BACKSLASH),
            (b"refs/a^b", RefnameError.CARET),
            (b"refs/a~b", RefnameError.TILDE),
            (b"refs/a@{b", RefnameError.AT_BRACE),
            (b"refs/heads/x.lock", RefnameError.COMPONENT_ENDS_WITH_DOT_LOCK),
        ],
    )
    def test_single_error(self, name, error):
        assert check_refname_format(name) == [error]

    def test_one_level(self):
        assert check_refname_format(b"main", allow_onelevel=False) == [
            RefnameError.ONLY_ONE_LEVEL
        ]

    def test_multiple_asterisks_in_pattern(self):
        errors = check_refname_format(b"refs/*/*", refspec_pattern=True)
        assert errors == [RefnameError.MULTIPLE_ASTERISKS]

    def test_every_error_reported_once(self):
        errors = check_refname_format(b"refs/a b c:d..e")
        assert errors == [RefnameError.SPACE, RefnameError.COLON, RefnameError.DOT_DOT]
