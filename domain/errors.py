from __future__ import annotations

class MailgrabError(Exception):
    """Error fatal: aborta la ejecución con su código de salida."""
    exit_code: int = 3

class ConfigurationError(MailgrabError):
    exit_code = 1

class MailConnectionError(MailgrabError):
    # transporte, TLS o autenticación
    exit_code = 2

class ProcessError(MailgrabError):
    # select / search / fetch de estructura o de partes
    exit_code = 3
