# utils/log_setup.py

from __future__ import annotations
import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    """
    verbose -> DEBUG (detalle por mensaje), normal -> INFO (resumen), quiet -> WARNING (solo errores).
    Todo va a stderr.
    """
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr, force=True)
    # imapclient registra cada comando en DEBUG
    logging.getLogger("imapclient").setLevel(logging.WARNING)
