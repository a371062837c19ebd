"""Tests for the serializer, including the lexer round trip."""

import io

import pytest
from streams import OID_A, RICH, SIMPLE

from fastfilter.lexer import Lexer, parse
from fastfilter.model import (
    Blob,
    Commit,
    Done,
    FileDelete,
    FileModify,
    FileRename,
    Ls,
    MarkRef,
    OidRef,
    OptionGit,
    PersonIdent,
    Reset,
    Tag,
)
from fastfilter.numbers import Date, FileSize
from fastfilter.serializer import Serializer, dumps

IDENT = PersonIdent(b"A", b"a@example.com", Date(0, b"+0000"))


def serialize(commands, **kwargs) -> bytes:
    out = io.BytesIO()
    serializer = Serializer(out, **kwargs)
    for command in commands:
        serializer.write(command)
    return out.getvalue()


class TestRoundTrip:
    @pytest.mark.parametrize("stream", [SIMPLE, RICH], ids=["simple", "rich"])
    def test_loaded(self, stream):
        commands = parse(stream)
        date_format = "raw-permissive" if stream is RICH else "raw"
        assert serialize(commands, date_format=date_format) == stream

    @pytest.mark.parametrize("stream", [SIMPLE, RICH], ids=["simple", "rich"])
    def test_streaming(self, stream):
        out = io.BytesIO()
        lexer = Lexer(stream)
        serializer = Serializer(out)
        for command in lexer:
            serializer.date_format = lexer.date_format
            serializer.write(command)
        assert out.getvalue() == stream

    def test_reparse_gives_equal_entities(self):
        commands = parse(RICH)
        again = parse(serialize(commands, date_format="raw-permissive"))
        assert again == commands

    def test_comments_round_trip(self):
        stream = b"# one\n# two\nprogress x\n# trailing\n"
        assert serialize(parse(stream)) == stream

    @pytest.mark.parametrize(
        "stream",
        [
            b"reset refs/heads/b\n# c\nfrom :1\n",
            b"reset refs/heads/b\nfrom :1\n# c\n\n",
            b"blob\n# m\nmark :1\n# o\noriginal-oid " + OID_A + b"\n# d\ndata 0\n",
            b"commit refs/heads/main\n# m\nmark :1\n# a\nauthor A <a@x> 0 +0000\n"
            b"# c\ncommitter C <c@x> 0 +0000\n# enc\nencoding utf-8\n# d\ndata 0\n"
            b"# f\nfrom :2\n# g\nmerge :3\n# h\nM 644 inline a\n# i\ndata 2\nx\n"
            b"# j\nD b\n# k\nls \"c\"\n# e\n\n",
            b"tag t\n# m\nmark :4\n# f\nfrom :1\n# t\ntagger T <t@x> 0 +0000\n# d\ndata 0\n\n",
            b"alias\n# m\nmark :2\n# to\nto :1\n\n",
        ],
        ids=["reset-from", "reset-end", "blob", "commit", "tag", "alias"],
    )
    def test_comments_inside_commands(self, stream):
        assert serialize(parse(stream)) == stream

    def test_empty_name_keeps_its_space(self):
        stream = b"commit refs/heads/main\ncommitter  <a@x> 0 +0000\ndata 0\n"
        assert serialize(parse(stream)) == stream

    @pytest.mark.parametrize(
        "body",
        [b'M 040000 4b825dc642cb6eb9a060e54bf8d69288fbee4904 ""\n', b'ls ""\n'],
        ids=["modify", "ls"],
    )
    def test_root_tree_path(self, body):
        stream = b"commit refs/heads/main\ncommitter C <c@x> 0 +0000\ndata 0\n" + body + b"\n"
        commands = parse(stream)
        assert commands[0].file_changes[0].path == b""
        assert serialize(commands) == stream


class TestEntities:
    def test_new_commit(self):
        commit = Commit(b"refs/heads/main", IDENT, b"msg\n", mark=1)
        assert dumps(commit) == (
            b"commit refs/heads/main\n"
            b"mark :1\n"
            b"committer A <a@example.com> 0 +0000\n"
            b"data 4\n"
            b"msg\n"
            b"\n"
        )

    def test_commit_parents_and_changes(self):
        commit = Commit(
            b"refs/heads/main",
            IDENT,
            b"",
            from_ref=MarkRef(1),
            merges=[OidRef(b"a" * 40)],
            file_changes=[
                FileModify(b"100644", MarkRef(2), b"a b"),
                FileModify(b"100644", None, b"inline.txt", data=b"xy"),
                FileDelete(b"gone"),
                FileRename(b"old", b"new"),
                Ls(b"plain"),
            ],
            optional_lf=False,
        )
        assert dumps(commit) == (
            b"commit refs/heads/main\n"
            b"committer A <a@example.com> 0 +0000\n"
            b"data 0\n"
            b"from :1\n"
            b"merge " + b"a" * 40 + b"\n"
            b'M 100644 :2 "a b"\n'
            b"M 100644 inline inline.txt\n"
            b"data 2\n"
            b"xy"
            b"D gone\n"
            b"R old new\n"
            b'ls "plain"\n'
        )

    def test_ident_without_name(self):
        commit = Commit(
            b"refs/heads/main", PersonIdent(b"", b"a@example.com", Date(5)), b"", optional_lf=False
        )
        assert b"committer <a@example.com> 5 +0000\n" in dumps(commit)

    def test_comments_survive_removed_fields(self):
        commit = Commit(
            b"refs/heads/main",
            IDENT,
            b"",
            merges=[MarkRef(2)],
            optional_lf=False,
            field_comments={"from": [b"# f"], "merge:0": [b"# a"], "merge:1": [b"# b"]},
        )
        assert dumps(commit).endswith(b"data 0\n# f\n# a\nmerge :2\n# b\n")

    def test_new_blob(self):
        assert dumps(Blob(b"abc", mark=1)) == b"blob\nmark :1\ndata 3\nabc\n"

    def test_replaced_blob_falls_back_to_counted(self):
        blob = parse(b"blob\ndata <<EOF\nold\nEOF\n")[0]
        blob.data = b"EOF\n"
        assert dumps(blob) == b"blob\ndata 4\nEOF\n"

    def test_replaced_blob_keeps_valid_delimiter(self):
        blob = parse(b"blob\ndata <<EOF\nold\nEOF\n")[0]
        blob.data = b"new\n"
        assert dumps(blob) == b"blob\ndata <<EOF\nnew\nEOF\n"

    def test_blob_data_must_be_bytes(self):
        with pytest.raises(TypeError, match="Expected bytes"):
            Blob().data = "text"  # type: ignore[assignment]

    def test_message_containing_delimiter(self):
        commit = parse(
            b"commit refs/heads/main\ncommitter A <a@example.com> 0 +0000\n"
            b"data <<MSG\nhi\nMSG\n\n"
        )[0]
        commit.message = b"MSG\n"
        again = parse(dumps(commit))[0]
        assert again.message == b"MSG\n"

    def test_tag(self):
        tag = Tag(b"v1", MarkRef(1), IDENT, b"release\n", optional_lf=False)
        assert dumps(tag) == (
            b"tag v1\nfrom :1\ntagger A <a@example.com> 0 +0000\ndata 8\nrelease\n"
        )

    def test_reset(self):
        assert dumps(Reset(b"refs/heads/x", MarkRef(3))) == b"reset refs/heads/x\nfrom :3\n\n"

    def test_option_values(self):
        assert dumps(OptionGit("depth", 10)) == b"option git --depth=10\n"
        assert dumps(OptionGit("big-file-threshold", FileSize(2, b"m"))) == (
            b"option git --big-file-threshold=2m\n"
        )

    def test_implicit_done_writes_nothing(self):
        assert dumps(Done(explicit=False)) == b""
        assert dumps(Done()) == b"done\n"

    def test_quote_non_ascii(self):
        commit = Commit(
            b"refs/heads/main",
            IDENT,
            b"",
            file_changes=[FileDelete("é".encode("utf-8"))],
            optional_lf=False,
        )
        assert b'D "\\303\\251"\n' in dumps(commit, quote_non_ascii=True)
        assert "D é\n".encode("utf-8") in dumps(commit)

    def test_rfc2822_output(self):
        commit = Commit(b"refs/heads/main", IDENT, b"", optional_lf=False)
        out = dumps(commit, date_format="rfc2822")
        assert b"committer A <a@example.com> Thu, 01 Jan 1970 00:00:00 +0000\n" in out

    def test_unknown_file_change(self):
        commit = Commit(b"refs/heads/main", IDENT, b"", file_changes=[object()])
        with pytest.raises(TypeError, match="Cannot serialize file change"):
            dumps(commit)

    def test_path_with_nul_rejected(self):
        commit = Commit(b"refs/heads/main", IDENT, b"", file_changes=[FileDelete(b"a\0b")])
        with pytest.raises(ValueError, match="NUL"):
            dumps(commit)
