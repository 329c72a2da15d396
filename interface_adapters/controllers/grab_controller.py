# interface_adapters/controllers/grab_controller.py
from __future__ import annotations
import logging
from typing import Callable

from config.settings import Settings
from application.ports.mail_session import MailSession
from application.services.report_writer import build_report_entries, write_report
from application.use_cases.process_mail_usecase import ProcessMailUseCase
from domain.errors import MailgrabError
from domain.models import RunSummary
from infrastructure.email.imap_client import IMAPInbox
from infrastructure.filesystem.storage import AttachmentStorage

logger = logging.getLogger(__name__)

EXIT_OK = 0

class GrabController:
    def __init__(self, settings: Settings, session_factory: Callable[[], MailSession] | None = None) -> None:
        self.settings = settings
        self.uc = ProcessMailUseCase(
            mailbox=settings.MAILBOX,
            storage=AttachmentStorage(settings.output_path()),
            post_action=settings.post_action(),
            move_to=settings.MOVE_TO,
        )
        self.session_factory = session_factory or self._imap_session

    def _imap_session(self) -> IMAPInbox:
        st = self.settings
        return IMAPInbox(st.SERVER, st.PORT, st.USERNAME, st.PASSWORD, insecure=st.INSECURE)

    def _write_report(self, summary: RunSummary) -> None:
        path = self.settings.json_output_path()
        if path is None:
            return
        entries = build_report_entries(summary)
        if not entries:
            return
        try:
            write_report(path, entries)
            logger.debug("Informe JSON escrito en %s", path)
        except OSError as e:
            # el informe es complementario: no cambia el código de salida
            logger.error("Error escribiendo el informe JSON %s: %s", path, e)

    def run_once(self) -> int:
        """Una pasada completa; devuelve el código de salida del proceso."""
        st = self.settings
        logger.debug("IMAP host=%s:%s buzón=%s", st.SERVER, st.PORT, st.MAILBOX)
        try:
            with self.session_factory() as session:
                summary = self.uc.run(session)
        except MailgrabError as e:
            logger.error("Error: %s", e)
            return e.exit_code

        if summary.messages == 0:
            logger.info("No new messages")
            return EXIT_OK

        logger.info(summary.summary_line())
        if summary.errors:
            logger.warning("%d error(es) no fatal(es) durante el procesado", summary.errors)
        self._write_report(summary)
        return EXIT_OK
