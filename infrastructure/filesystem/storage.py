from __future__ import annotations
from pathlib import Path
import os
import tempfile

from domain.models import Attachment

FALLBACK_NAME = "attachment"
FILE_MODE = 0o644      # mkstemp crea 0600

def sanitize_filename(name: str) -> str:
    """
    Se queda solo con el último componente del nombre declarado (anti path traversal)
    y quita caracteres de control (NUL incluido).
    "../../etc/passwd" -> "passwd", "." -> "attachment"
    """
    base = (name or "").replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]
    base = "".join(ch for ch in base if ord(ch) >= 32 and ord(ch) != 127)
    if base in ("", ".", ".."):
        return FALLBACK_NAME
    return base

class AttachmentStorage:
    def __init__(self, base: Path) -> None:
        self.base = Path(base)

    def ensure_dir(self) -> None:
        self.base.mkdir(parents=True, exist_ok=True)

    def save(self, att: Attachment) -> Path:
        """
        Escritura todo-o-nada: temporal en el mismo directorio + os.replace.
        Si algo falla se borra el temporal y se propaga la excepción.
        """
        fp = self.base / sanitize_filename(att.filename)
        fd, tmp = tempfile.mkstemp(dir=str(self.base), prefix=".mailgrab-", suffix=".part")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(att.content)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp, FILE_MODE)
            os.replace(tmp, fp)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise
        return fp
