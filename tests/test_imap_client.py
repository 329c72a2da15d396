from __future__ import annotations

import base64
import ssl
from types import SimpleNamespace

import pytest
from imapclient import DELETED
from imapclient.exceptions import IMAPClientError, LoginError
from imapclient.response_types import BodyData

from domain.errors import MailConnectionError, ProcessError
from domain.models import AttachmentDescriptor, MimeMultipart
from infrastructure.email import imap_client
from infrastructure.email.imap_client import MARKER_FLAG, IMAPInbox


class FakeIMAPClient:
    instances: list = []

    def __init__(self, host, port=None, ssl=True, ssl_context=None):
        if host == "unreachable":
            raise ConnectionRefusedError("refused")
        self.host = host
        self.port = port
        self.ssl_context = ssl_context
        self.commands = []
        self.fetch_responses = []
        self.fail = set()
        self.shut = False
        FakeIMAPClient.instances.append(self)

    def _cmd(self, name, *args):
        self.commands.append((name,) + args)
        if name in self.fail:
            raise IMAPClientError(f"{name} failed")

    def login(self, user, password):
        self._cmd("login", user)
        if password == "bad":
            raise LoginError("[AUTHENTICATIONFAILED] Invalid credentials")

    def shutdown(self):
        self.shut = True

    def logout(self):
        self._cmd("logout")

    def select_folder(self, name, readonly=False):
        self._cmd("select", name, readonly)

    def search(self, criteria):
        self._cmd("search", criteria)
        return [7, 3]

    def fetch(self, ids, items):
        self._cmd("fetch", list(ids), list(items))
        return self.fetch_responses.pop(0)

    def add_flags(self, ids, flags, silent=False):
        self._cmd("add_flags", list(ids), list(flags), silent)

    def uid_expunge(self, ids):
        self._cmd("uid_expunge", list(ids))

    def move(self, ids, folder):
        self._cmd("move", list(ids), folder)


@pytest.fixture(autouse=True)
def fake_client(monkeypatch):
    FakeIMAPClient.instances = []
    monkeypatch.setattr(imap_client, "IMAPClient", FakeIMAPClient)


@pytest.fixture
def inbox():
    box = IMAPInbox("imap.example.com", 993, "user", "secret")
    box.connect()
    return box


def test_connect_uses_verified_tls_by_default(inbox):
    client = FakeIMAPClient.instances[0]
    assert client.commands == [("login", "user")]
    assert client.ssl_context.verify_mode == ssl.CERT_REQUIRED


def test_insecure_disables_verification():
    box = IMAPInbox("imap.example.com", 993, "user", "secret", insecure=True)
    box.connect()
    ctx = FakeIMAPClient.instances[0].ssl_context
    assert ctx.verify_mode == ssl.CERT_NONE
    assert ctx.check_hostname is False


def test_transport_failure_is_connection_error():
    with pytest.raises(MailConnectionError):
        IMAPInbox("unreachable", 993, "user", "secret").connect()


def test_login_failure_releases_transport():
    box = IMAPInbox("imap.example.com", 993, "user", "bad")
    with pytest.raises(MailConnectionError):
        with box:
            pass
    assert FakeIMAPClient.instances[0].shut is True
    assert box.client is None


def test_close_is_idempotent(inbox):
    client = inbox.client
    inbox.close()
    inbox.close()
    assert [c for c in client.commands if c[0] == "logout"] == [("logout",)]


def test_close_after_logout_error_forces_shutdown(inbox):
    client = inbox.client
    client.fail.add("logout")
    inbox.close()
    assert client.shut is True


def test_select_failure_is_process_error(inbox):
    inbox.client.fail.add("select")
    with pytest.raises(ProcessError):
        inbox.select_mailbox("Missing")


def test_search_excludes_marker_only(inbox):
    assert inbox.search_unprocessed() == [3, 7]
    criteria = inbox.client.commands[-1][1]
    assert criteria == ["UNKEYWORD", MARKER_FLAG]
    assert "UNSEEN" not in criteria


def test_fetch_envelope_and_structure_single_round_trip(inbox):
    structure = BodyData.create((
        (b"text", b"plain", None, None, None, b"7bit", 5, 1, None, None, None, None),
        (b"image", b"png", (b"name", b"a.png"), None, None, b"base64", 8, None, None, None, None),
        b"mixed", None, None, None, None,
    ))
    inbox.client.fetch_responses.append({
        3: {b"UID": 3, b"ENVELOPE": SimpleNamespace(subject=b"=?utf-8?q?Fotos?="), b"BODYSTRUCTURE": structure},
        7: {b"UID": 7, b"ENVELOPE": SimpleNamespace(subject=None), b"BODYSTRUCTURE": structure},
    })
    mails = inbox.fetch_envelope_and_structure([3, 7])

    fetches = [c for c in inbox.client.commands if c[0] == "fetch"]
    assert fetches == [("fetch", [3, 7], ["UID", "ENVELOPE", "BODYSTRUCTURE"])]
    assert [(m.uid, m.subject) for m in mails] == [(3, "Fotos"), (7, "")]
    assert isinstance(mails[0].structure, MimeMultipart)


def test_malformed_encoded_subject_is_kept_raw(inbox):
    structure = BodyData.create(
        (b"image", b"png", (b"name", b"=?utf-8?b?A?="), None, None, b"base64", 8, None, None, None, None)
    )
    inbox.client.fetch_responses.append({
        5: {b"UID": 5, b"ENVELOPE": SimpleNamespace(subject=b"=?utf-8?b?A?="), b"BODYSTRUCTURE": structure},
    })
    mails = inbox.fetch_envelope_and_structure([5])
    assert mails[0].subject == "=?utf-8?b?A?="
    assert mails[0].structure.params["name"] == "=?utf-8?b?A?="


def test_fetch_envelope_and_structure_empty(inbox):
    assert inbox.fetch_envelope_and_structure([]) == []
    assert not [c for c in inbox.client.commands if c[0] == "fetch"]


def test_fetch_part_peeks_section_and_decodes_base64(inbox):
    payload = b"\x89PNG\r\n\x1a\n"
    inbox.client.fetch_responses.append({5: {b"BODY[2.1]": base64.encodebytes(payload)}})
    part = AttachmentDescriptor(path=(2, 1), content_type="image/png", filename="a.png", encoding="base64")
    assert inbox.fetch_part(5, part) == payload
    assert inbox.client.commands[-1] == ("fetch", [5], ["BODY.PEEK[2.1]"])


def test_fetch_part_single_part_message_uses_section_1(inbox):
    inbox.client.fetch_responses.append({5: {b"BODY[1]": b"raw"}})
    part = AttachmentDescriptor(path=(), content_type="image/png", filename="a.png", encoding="binary")
    assert inbox.fetch_part(5, part) == b"raw"
    assert inbox.client.commands[-1] == ("fetch", [5], ["BODY.PEEK[1]"])


def test_fetch_part_quoted_printable(inbox):
    inbox.client.fetch_responses.append({5: {b"BODY[1]": b"caf=C3=A9"}})
    part = AttachmentDescriptor(path=(1,), content_type="image/svg+xml", filename="x.svg", encoding="quoted-printable")
    assert inbox.fetch_part(5, part) == "café".encode()


def test_fetch_part_without_data_returns_none(inbox):
    inbox.client.fetch_responses.append({5: {b"SEQ": 1}})
    part = AttachmentDescriptor(path=(2,), content_type="image/png", filename="a.png")
    assert inbox.fetch_part(5, part) is None


def test_fetch_part_missing_message_is_process_error(inbox):
    inbox.client.fetch_responses.append({})
    part = AttachmentDescriptor(path=(2,), content_type="image/png", filename="a.png")
    with pytest.raises(ProcessError):
        inbox.fetch_part(5, part)


def test_fetch_part_protocol_error_is_process_error(inbox):
    inbox.client.fail.add("fetch")
    part = AttachmentDescriptor(path=(2,), content_type="image/png", filename="a.png")
    with pytest.raises(ProcessError):
        inbox.fetch_part(5, part)


def test_mark_processed_is_silent_keyword(inbox):
    inbox.mark_processed(9)
    assert inbox.client.commands[-1] == ("add_flags", [9], [MARKER_FLAG], True)


def test_mark_processed_failure(inbox):
    inbox.client.fail.add("add_flags")
    with pytest.raises(ProcessError):
        inbox.mark_processed(9)


def test_delete_flags_then_expunges_uid(inbox):
    inbox.delete(9)
    assert inbox.client.commands[-2:] == [
        ("add_flags", [9], [DELETED], True),
        ("uid_expunge", [9]),
    ]


def test_move(inbox):
    inbox.move(9, "Archive/Fotos")
    assert inbox.client.commands[-1] == ("move", [9], "Archive/Fotos")


def test_move_failure(inbox):
    inbox.client.fail.add("move")
    with pytest.raises(ProcessError):
        inbox.move(9, "Nope")
