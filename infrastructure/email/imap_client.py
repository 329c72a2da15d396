from __future__ import annotations
import base64
import binascii
import logging
import quopri
import ssl
from contextlib import contextmanager
from typing import Iterator

from imapclient import IMAPClient, DELETED
from imapclient.exceptions import IMAPClientError

from domain.errors import MailConnectionError, ProcessError
from domain.models import AttachmentDescriptor, MailItem
from infrastructure.email.body_structure_mapper import decode_header_value, to_mime_node

logger = logging.getLogger(__name__)

# keyword propio: no toca \Seen (estado leído/no leído del usuario)
MARKER_FLAG = b"mailgrab-seen"

@contextmanager
def _protocol_errors(what: str) -> Iterator[None]:
    try:
        yield
    except (IMAPClientError, OSError) as e:
        raise ProcessError(f"{what}: {e}") from e

def _decode_transfer(data: bytes, encoding: str) -> bytes:
    enc = (encoding or "").lower()
    if enc == "base64":
        return base64.b64decode(data)
    if enc == "quoted-printable":
        return quopri.decodestring(data)
    return data

class IMAPInbox:
    def __init__(self, host: str, port: int, user: str, password: str, insecure: bool = False) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.insecure = insecure
        self.client: IMAPClient | None = None

    def __enter__(self) -> "IMAPInbox":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ───────── sesión ─────────
    def _ssl_context(self) -> ssl.SSLContext:
        ctx = ssl.create_default_context()
        if self.insecure:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        return ctx

    def connect(self) -> None:
        logger.debug("Conectando a %s:%s…", self.host, self.port)
        try:
            client = IMAPClient(self.host, port=self.port, ssl=True, ssl_context=self._ssl_context())
        except (IMAPClientError, OSError) as e:
            raise MailConnectionError(f"No se pudo conectar a {self.host}:{self.port}: {e}") from e

        logger.debug("Autenticando como %s…", self.user)
        try:
            client.login(self.user, self.password)
        except (IMAPClientError, OSError) as e:
            # liberar el transporte antes de devolver el error
            try:
                client.shutdown()
            except (IMAPClientError, OSError):
                logger.debug("Fallo cerrando el transporte tras login fallido", exc_info=True)
            raise MailConnectionError(f"Autenticación fallida para {self.user}: {e}") from e
        self.client = client

    def close(self) -> None:
        """Logout + cierre. Idempotente y seguro tras errores previos."""
        client, self.client = self.client, None
        if client is None:
            return
        try:
            client.logout()
        except (IMAPClientError, OSError):
            logger.warning("Error cerrando IMAP; se fuerza el cierre del socket", exc_info=True)
            try:
                client.shutdown()
            except (IMAPClientError, OSError):
                logger.debug("Socket ya cerrado", exc_info=True)

    # ───────── buzón ─────────
    def select_mailbox(self, name: str) -> None:
        assert self.client
        logger.debug("Seleccionando buzón: %s", name)
        with _protocol_errors(f"No se pudo seleccionar el buzón {name!r}"):
            self.client.select_folder(name, readonly=False)

    def search_unprocessed(self) -> list[int]:
        assert self.client
        with _protocol_errors("Fallo en SEARCH"):
            uids = self.client.search(["UNKEYWORD", MARKER_FLAG])
        return sorted(uids)

    def fetch_envelope_and_structure(self, ids: list[int]) -> list[MailItem]:
        """Un único FETCH (UID ENVELOPE BODYSTRUCTURE) para todos los mensajes."""
        assert self.client
        if not ids:
            return []
        with _protocol_errors("Fallo obteniendo ENVELOPE/BODYSTRUCTURE"):
            resp = self.client.fetch(ids, ["UID", "ENVELOPE", "BODYSTRUCTURE"])

        items: list[MailItem] = []
        for key in sorted(resp):
            data = resp[key]
            uid = int(data.get(b"UID", key))
            env = data.get(b"ENVELOPE")
            subject = decode_header_value(env.subject) if env is not None and env.subject else ""
            items.append(MailItem(uid=uid, subject=subject, structure=to_mime_node(data.get(b"BODYSTRUCTURE"))))
        return items

    def fetch_part(self, uid: int, part: AttachmentDescriptor) -> bytes | None:
        """
        Fetch parcial de exactamente la sección indicada (BODY.PEEK: no marca \\Seen).
        None si el servidor no devuelve datos para la sección.
        """
        assert self.client
        section = part.section
        with _protocol_errors(f"Fallo obteniendo la parte {section} de UID={uid}"):
            resp = self.client.fetch([uid], [f"BODY.PEEK[{section}]"])

        data = resp.get(uid)
        if data is None:
            raise ProcessError(f"Mensaje UID={uid} no encontrado al obtener la parte {section}")

        raw = data.get(f"BODY[{section}]".encode())
        if raw is None:
            raw = next((v for k, v in data.items() if k.startswith(b"BODY[")), None)
        if raw is None:
            return None
        try:
            return _decode_transfer(raw, part.encoding)
        except (binascii.Error, ValueError) as e:
            raise ProcessError(f"Parte {section} de UID={uid} con {part.encoding} inválido: {e}") from e

    # ───────── flags / post-acción ─────────
    def mark_processed(self, uid: int) -> None:
        assert self.client
        with _protocol_errors(f"No se pudo marcar UID={uid} como procesado"):
            self.client.add_flags([uid], [MARKER_FLAG], silent=True)

    def delete(self, uid: int) -> None:
        assert self.client
        with _protocol_errors(f"No se pudo marcar UID={uid} como borrado"):
            self.client.add_flags([uid], [DELETED], silent=True)
        with _protocol_errors(f"Fallo en EXPUNGE de UID={uid}"):
            self.client.uid_expunge([uid])

    def move(self, uid: int, destination: str) -> None:
        assert self.client
        with _protocol_errors(f"No se pudo mover UID={uid} a {destination}"):
            self.client.move([uid], destination)
