from __future__ import annotations

import pytest

from domain.errors import ProcessError
from domain.models import AttachmentDescriptor, MailItem, MimeLeaf, MimeMultipart

MARKER = "mailgrab-seen"


def leaf(mtype, subtype, name=None, filename=None, encoding="7bit"):
    return MimeLeaf(
        type=mtype,
        subtype=subtype,
        params={"name": name} if name is not None else {},
        disposition="attachment" if filename is not None else None,
        disposition_params={"filename": filename} if filename is not None else {},
        encoding=encoding,
    )


def multipart(*children, subtype="mixed"):
    return MimeMultipart(subtype=subtype, children=tuple(children))


class FakeSession:
    """MailSession en memoria: guarda llamadas y flags por UID."""

    def __init__(self, mails, parts=None, *, fail_part=(), fail_mark=(), fail_delete=(), fail_move=(),
                 fail_search=False, mailboxes=("Inbox",)):
        self.mails = {m.uid: m for m in mails}
        self.parts = dict(parts or {})
        self.flags = {uid: set() for uid in self.mails}
        self.fail_part = set(fail_part)
        self.fail_mark = set(fail_mark)
        self.fail_delete = set(fail_delete)
        self.fail_move = set(fail_move)
        self.fail_search = fail_search
        self.mailboxes = set(mailboxes)
        self.calls = []
        self.closed = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def select_mailbox(self, name):
        self.calls.append(("select", name))
        if name not in self.mailboxes:
            raise ProcessError(f"no existe {name}")

    def search_unprocessed(self):
        self.calls.append(("search",))
        if self.fail_search:
            raise ProcessError("search failed")
        return sorted(uid for uid in self.mails if MARKER not in self.flags[uid])

    def fetch_envelope_and_structure(self, ids):
        self.calls.append(("fetch_structure", tuple(ids)))
        return [self.mails[i] for i in ids]

    def fetch_part(self, uid, part: AttachmentDescriptor):
        self.calls.append(("fetch_part", uid, part.section))
        if (uid, part.section) in self.fail_part:
            raise ProcessError(f"fetch {uid} {part.section}")
        return self.parts.get((uid, part.section))

    def mark_processed(self, uid):
        self.calls.append(("mark", uid))
        if uid in self.fail_mark:
            raise ProcessError("store failed")
        self.flags[uid].add(MARKER)

    def delete(self, uid):
        self.calls.append(("delete", uid))
        if uid in self.fail_delete:
            raise ProcessError("expunge failed")
        del self.mails[uid]

    def move(self, uid, destination):
        self.calls.append(("move", uid, destination))
        if uid in self.fail_move:
            raise ProcessError("move failed")
        del self.mails[uid]

    def close(self):
        self.closed += 1


@pytest.fixture
def sample_mail():
    # texto + 2 imágenes + 1 pdf
    return MailItem(
        uid=42,
        subject="Fotos de la obra",
        structure=multipart(
            leaf("TEXT", "PLAIN"),
            leaf("image", "png", name="a.png"),
            leaf("IMAGE", "JPEG", filename="b.jpg"),
            leaf("application", "pdf", name="c.pdf"),
        ),
    )


@pytest.fixture
def sample_parts():
    return {
        (42, "2"): b"\x89PNG-data",
        (42, "3"): b"\xff\xd8JPEG-data",
        (42, "4"): b"%PDF-1.4",
    }


@pytest.fixture
def fake_session_cls():
    return FakeSession
