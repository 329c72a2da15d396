from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence
import argparse
import os

import yaml
from dotenv import load_dotenv

from domain.errors import ConfigurationError
from domain.models import PostAction

ENV_PREFIX = "MAILGRAB_"
LOCAL_CONFIG = "mailgrab.yaml"

@dataclass(frozen=True)
class Settings:
    SERVER: str = ""
    PORT: int = 993
    USERNAME: str = ""
    PASSWORD: str = ""
    MAILBOX: str = "Inbox"
    OUTPUT: str = ""
    POST_ACTION: str = "none"       # none | delete | move
    MOVE_TO: str = ""               # obligatorio si POST_ACTION=move
    INSECURE: bool = False          # sin verificación TLS
    VERBOSE: bool = False
    QUIET: bool = False
    JSON_OUTPUT: str = ""           # informe JSON opcional

    # ───────── helpers ─────────
    def post_action(self) -> PostAction:
        return PostAction((self.POST_ACTION or "none").lower())

    def output_path(self) -> Path:
        return Path(self.OUTPUT).expanduser()

    def json_output_path(self) -> Path | None:
        return Path(self.JSON_OUTPUT).expanduser() if self.JSON_OUTPUT else None

    def validate(self) -> None:
        missing = [name.lower() for name in ("SERVER", "USERNAME", "PASSWORD", "OUTPUT") if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Faltan parámetros obligatorios: {', '.join(missing)}")
        if not 0 < self.PORT < 65536:
            raise ConfigurationError(f"Puerto inválido: {self.PORT}")
        if (self.POST_ACTION or "none").lower() not in {p.value for p in PostAction}:
            raise ConfigurationError(f"post_action inválido: {self.POST_ACTION} (debe ser none, delete o move)")
        if self.post_action() is PostAction.MOVE and not self.MOVE_TO:
            raise ConfigurationError("move_to es obligatorio cuando post_action es 'move'")
        if self.VERBOSE and self.QUIET:
            raise ConfigurationError("verbose y quiet no pueden usarse a la vez")

# (campo, clave yaml/env, tipo)
_FIELDS: tuple[tuple[str, str, type], ...] = (
    ("SERVER", "server", str),
    ("PORT", "port", int),
    ("USERNAME", "username", str),
    ("PASSWORD", "password", str),
    ("MAILBOX", "mailbox", str),
    ("OUTPUT", "output", str),
    ("POST_ACTION", "post_action", str),
    ("MOVE_TO", "move_to", str),
    ("INSECURE", "insecure", bool),
    ("VERBOSE", "verbose", bool),
    ("QUIET", "quiet", bool),
    ("JSON_OUTPUT", "json_output", str),
)

class _ArgumentParser(argparse.ArgumentParser):
    # argparse sale con código 2; aquí un error de flags es de configuración (1)
    def error(self, message: str):
        raise ConfigurationError(message)

def build_parser() -> argparse.ArgumentParser:
    p = _ArgumentParser(prog="mailgrab", description="Descarga las imágenes adjuntas de correos IMAP no procesados.")
    p.add_argument("-c", "--config", dest="config", help="Fichero de configuración YAML")
    p.add_argument("-s", "--server", dest="server", help="Servidor IMAP")
    p.add_argument("-p", "--port", dest="port", help="Puerto IMAP (993)")
    p.add_argument("-u", "--username", dest="username", help="Usuario IMAP")
    p.add_argument("-P", "--password", dest="password", help="Contraseña IMAP")
    p.add_argument("-m", "--mailbox", dest="mailbox", help="Buzón a revisar (Inbox)")
    p.add_argument("-o", "--output", dest="output", help="Directorio de salida de las imágenes")
    p.add_argument("--post-action", dest="post_action", help="Acción tras procesar: none, delete, move")
    p.add_argument("--move-to", dest="move_to", help="Buzón destino para post-action=move")
    p.add_argument("--insecure", dest="insecure", action="store_true", default=None, help="Desactiva la verificación TLS")
    p.add_argument("-v", "--verbose", dest="verbose", action="store_true", default=None, help="Detalle por mensaje")
    p.add_argument("-q", "--quiet", dest="quiet", action="store_true", default=None, help="Solo errores")
    p.add_argument("-j", "--json-output", dest="json_output", help="Ruta del informe JSON")
    return p

def _coerce(key: str, value: Any, kind: type) -> Any:
    if kind is bool:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    if kind is int:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"{key} debe ser un entero: {value!r}") from None
    return "" if value is None else str(value)

def find_config_file(explicit: str | None, cwd: Path | None = None, home: Path | None = None) -> Path | None:
    """Ruta explícita (debe existir) > ./mailgrab.yaml > ~/.config/mailgrab/config.yaml."""
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"Fichero de configuración no encontrado: {explicit}")
        return path

    local = (cwd or Path.cwd()) / LOCAL_CONFIG
    if local.is_file():
        return local

    user = (home or Path.home()) / ".config" / "mailgrab" / "config.yaml"
    if user.is_file():
        return user
    return None

def load_config_file(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"YAML inválido en {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"No se pudo leer {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: se esperaba un mapa clave/valor")
    return data

def load_settings(argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None) -> Settings:
    """
    Precedencia: flags > entorno (MAILGRAB_*, .env) > fichero YAML > valores por defecto.
    Valida antes de devolver: nunca se conecta con una configuración inválida.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    args = vars(build_parser().parse_args(list(argv) if argv is not None else None))

    explicit = args.get("config") or environ.get(f"{ENV_PREFIX}CONFIG")
    cfg_file = find_config_file(explicit)
    file_values = load_config_file(cfg_file) if cfg_file else {}

    values: dict[str, Any] = {}
    for name, key, kind in _FIELDS:
        for raw in (args.get(key), environ.get(f"{ENV_PREFIX}{name}"), file_values.get(key)):
            if raw is not None and raw != "":
                values[name] = _coerce(key, raw, kind)
                break

    settings = Settings(**values)
    settings.validate()
    return settings
