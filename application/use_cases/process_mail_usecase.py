from __future__ import annotations
import logging

from application.ports.mail_session import MailSession
from application.services.body_structure import filter_image_attachments, walk
from domain.errors import ConfigurationError
from domain.models import (
    Attachment,
    MailItem,
    MessageOutcome,
    MessageState,
    PostAction,
    RunSummary,
)
from infrastructure.filesystem.storage import AttachmentStorage

logger = logging.getLogger(__name__)

class ProcessMailUseCase:
    """
    Flujo por ejecución (una sesión, un buzón, una pasada):
    1. SEARCH de mensajes sin el keyword de procesado + FETCH de ENVELOPE/BODYSTRUCTURE
    2. Extracción de TODOS los mensajes (walk + fetch de partes). Un fallo aquí aborta el lote entero.
    3. Por mensaje: filtrar imágenes -> guardar -> marcar procesado -> post-acción
       (los fallos de guardado, marcado y post-acción se registran y no paran el bucle)
    """

    def __init__(
        self,
        *,
        mailbox: str,
        storage: AttachmentStorage,
        post_action: PostAction = PostAction.NONE,
        move_to: str = "",
    ) -> None:
        self.mailbox = mailbox
        self.storage = storage
        self.post_action = PostAction(post_action)
        self.move_to = move_to
        self._dir_ready = False

    # ───────────────────────── extracción ─────────────────────────
    def _extract(self, session: MailSession, mail: MailItem, outcome: MessageOutcome) -> list[Attachment]:
        parts = walk(mail.structure)
        outcome.state = MessageState.STRUCTURE_WALKED
        logger.debug("UID=%s: %d parte(s) con nombre de fichero", mail.uid, len(parts))

        attachments: list[Attachment] = []
        for part in parts:
            # ProcessError se propaga: aborta todo el lote
            data = session.fetch_part(mail.uid, part)
            if data is None:
                logger.debug("UID=%s: parte %s sin datos, se omite", mail.uid, part.section)
                continue
            attachments.append(Attachment(filename=part.filename, content=data, content_type=part.content_type))
        outcome.state = MessageState.PARTS_FETCHED
        return attachments

    # ───────────────────────── guardado ─────────────────────────
    def _ensure_output_dir(self) -> None:
        if self._dir_ready:
            return
        try:
            self.storage.ensure_dir()
        except OSError as e:
            raise ConfigurationError(f"No se pudo crear el directorio de salida {self.storage.base}: {e}") from e
        self._dir_ready = True

    def _save_images(self, attachments: list[Attachment], outcome: MessageOutcome, summary: RunSummary) -> None:
        for att in filter_image_attachments(attachments):
            self._ensure_output_dir()
            try:
                fp = self.storage.save(att)
            except (OSError, ValueError) as e:
                logger.error("Error guardando adjunto %s: %s", att.filename, e)
                outcome.errors.append(f"save {att.filename}: {e}")
                summary.errors += 1
                continue
            logger.debug("  Guardado: %s", fp)
            outcome.saved.append(att.filename)
        outcome.state = MessageState.SAVED

    # ───────────────────────── marcado / post-acción ─────────────────────────
    def _apply_post_action(self, session: MailSession, uid: int) -> None:
        if self.post_action is PostAction.DELETE:
            session.delete(uid)
        elif self.post_action is PostAction.MOVE:
            session.move(uid, self.move_to)

    def _finish(self, session: MailSession, mail: MailItem, outcome: MessageOutcome, summary: RunSummary) -> None:
        try:
            session.mark_processed(mail.uid)
        except Exception as e:
            # queda sin marcar: se reintentará en la próxima ejecución
            logger.error("Error marcando UID=%s como procesado: %s", mail.uid, e)
            outcome.errors.append(f"mark: {e}")
            summary.errors += 1
            outcome.state = MessageState.POST_ACTION_SKIPPED
            return
        outcome.state = MessageState.MARKED_PROCESSED

        if self.post_action is PostAction.NONE:
            outcome.state = MessageState.POST_ACTION_SKIPPED
            return
        try:
            self._apply_post_action(session, mail.uid)
        except Exception as e:
            logger.error("Error en post-acción %s de UID=%s: %s", self.post_action.value, mail.uid, e)
            outcome.errors.append(f"{self.post_action.value}: {e}")
            summary.errors += 1
            outcome.state = MessageState.POST_ACTION_SKIPPED
            return
        outcome.state = MessageState.POST_ACTION_APPLIED

    # ───────────────────────── ejecución ─────────────────────────
    def run(self, session: MailSession) -> RunSummary:
        summary = RunSummary()

        session.select_mailbox(self.mailbox)
        uids = session.search_unprocessed()
        if not uids:
            logger.debug("Sin correos nuevos en %s", self.mailbox)
            return summary
        logger.debug("Encontrados %d mensaje(s) nuevo(s)", len(uids))

        mails = session.fetch_envelope_and_structure(uids)

        # fase 1: extracción de todo el lote antes de tocar nada
        batch: list[tuple[MailItem, MessageOutcome, list[Attachment]]] = []
        for mail in mails:
            outcome = MessageOutcome(uid=mail.uid, subject=mail.subject)
            batch.append((mail, outcome, self._extract(session, mail, outcome)))

        # fase 2: guardar / marcar / post-acción por mensaje
        logger.debug("Procesando %d mensaje(s)…", len(batch))
        for mail, outcome, attachments in batch:
            self._save_images(attachments, outcome, summary)
            if outcome.saved:
                logger.debug("  Mensaje %s: %r - guardada(s) %d imagen(es)", mail.uid, mail.subject, len(outcome.saved))
            else:
                logger.debug("  Mensaje %s: %r - sin imágenes adjuntas", mail.uid, mail.subject)

            self._finish(session, mail, outcome, summary)
            outcome.state = MessageState.DONE

            summary.messages += 1
            summary.images_saved += len(outcome.saved)
            summary.outcomes.append(outcome)
        return summary
