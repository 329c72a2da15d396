# main.py
# Punto de entrada: configuración -> una pasada IMAP -> código de salida
from __future__ import annotations
import logging
import sys
from typing import Sequence

from config.settings import load_settings
from domain.errors import ConfigurationError
from interface_adapters.controllers.grab_controller import GrabController
from utils.log_setup import configure_logging

logger = logging.getLogger(__name__)


def main(argv: Sequence[str] | None = None) -> int:
    try:
        settings = load_settings(argv)
    except ConfigurationError as e:
        configure_logging()
        logger.error("Error: %s", e)
        return e.exit_code

    configure_logging(verbose=settings.VERBOSE, quiet=settings.QUIET)
    return GrabController(settings=settings).run_once()


if __name__ == "__main__":
    sys.exit(main())
