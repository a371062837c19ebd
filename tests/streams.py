"""Sample fast-export streams shared by the tests."""

import io

OID_A = b"0123456789abcdef0123456789abcdef01234567"
OID_B = b"89abcdef0123456789abcdef0123456789abcdef"
OID_C = b"fedcba9876543210fedcba9876543210fedcba98"

# What `git fast-export --show-original-ids --reencode=no` writes.
SIMPLE = (
    b"feature done\n"
    b"blob\n"
    b"mark :1\n"
    b"original-oid " + OID_A + b"\n"
    b"data 6\n"
    b"hello\n"
    b"\n"
    b"reset refs/heads/main\n"
    b"commit refs/heads/main\n"
    b"mark :2\n"
    b"original-oid " + OID_B + b"\n"
    b"author A U Thor <author@example.com> 1112911993 -0700\n"
    b"committer C O Mitter <committer@example.com> 1112912053 -0700\n"
    b"data 8\n"
    b"initial\n"
    b"M 100644 :1 greeting.txt\n"
    b"\n"
    b"tag v1.0\n"
    b"from :2\n"
    b"original-oid " + OID_C + b"\n"
    b"tagger T Agger <tagger@example.com> 1112912053 -0700\n"
    b"data 5\n"
    b"v1.0\n"
    b"\n"
    b"done\n"
)

# Touches every command and most of the optional grammar.
RICH = (
    b"# exported by a test\n"
    b"feature date-format=raw-permissive\n"
    b"option git --quiet\n"
    b"option git --max-pack-size=4g\n"
    b"option hg --some-flag\n"
    b"blob\n"
    b"mark :1\n"
    b"data <<EOF\n"
    b"delimited content\n"
    b"EOF\n"
    b"\n"
    b"commit refs/heads/main\n"
    b"mark :2\n"
    b"author Jane <jane@example.com> 1 0100\n"
    b"committer Jane <jane@example.com> 1 0100\n"
    b"encoding iso-8859-1\n"
    b"data <<MSG\n"
    b"first\n"
    b"MSG\n"
    b"\n"
    b"deleteall\n"
    b'M 100644 :1 "with space.txt"\n'
    b"M 100755 inline script.sh\n"
    b"data 10\n"
    b"#!/bin/sh\n"
    b"\n"
    b"M 120000 :1 link\n"
    b"D old.txt\n"
    b'C "with space.txt" copy.txt\n'
    b'R copy.txt "renamed \\"file\\""\n'
    b"\n"
    b"commit refs/heads/topic\n"
    b"mark :3\n"
    b"committer Jane <jane@example.com> 2 +0000\n"
    b"data 0\n"
    b"from :2\n"
    b"\n"
    b"commit refs/heads/main\n"
    b"mark :5\n"
    b"committer Jane <jane@example.com> 3 +0000\n"
    b"data 6\n"
    b"merge\n"
    b"from :2\n"
    b"merge :3\n"
    b"N inline :3\n"
    b"data 5\n"
    b"note\n"
    b"\n"
    b"alias\n"
    b"mark :4\n"
    b"to :3\n"
    b"\n"
    b"get-mark :3\n"
    b"cat-blob :1\n"
    b'ls :2 "with space.txt"\n'
    b"checkpoint\n"
    b"\n"
    b"progress half way\n"
    b"reset refs/heads/old\n"
    b"from " + OID_A + b"\n"
    b"\n"
    b"done\n"
)


def commit(ref, mark, *, parents=(), changes=(), when=0, message=b"msg\n"):
    """A minimal marked commit; the first parent is ``from``, the rest merges."""
    lines = [
        b"commit " + ref,
        b"mark :%d" % mark,
        b"original-oid %040x" % mark,
        b"committer C <c@example.com> %d +0000" % when,
        b"data %d" % len(message),
    ]
    body = b"\n".join(lines) + b"\n" + message
    for index, parent in enumerate(parents):
        keyword = b"from" if index == 0 else b"merge"
        body += b"%s :%d\n" % (keyword, parent)
    for change in changes:
        body += change + b"\n"
    return body + b"\n"


def blob(mark, data):
    return b"blob\nmark :%d\ndata %d\n%s\n" % (mark, len(data), data)


def tag(name, target):
    return b"tag %s\nfrom :%d\ntagger T <t@example.com> 0 +0000\ndata 0\n\n" % (name, target)


class CountingSource(io.BytesIO):
    """BytesIO that remembers the largest single read request."""

    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self.largest_read = 0

    def read(self, n=-1):
        size = n if n is not None and n >= 0 else len(self.getvalue())
        self.largest_read = max(self.largest_read, size)
        return super().read(n)
