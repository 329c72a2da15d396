# infrastructure/email/body_structure_mapper.py
# BODYSTRUCTURE de imapclient (BodyData / tuplas anidadas) -> MimeNode del dominio
from __future__ import annotations
import logging
import re
from collections import defaultdict
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from email.utils import decode_rfc2231
from typing import Any
from urllib.parse import unquote_to_bytes

from domain.models import MimeLeaf, MimeMultipart, MimeNode

logger = logging.getLogger(__name__)

# filename*0*, filename*1, ...
_CONTINUATION = re.compile(r"^(.+)\*(\d+)(\*)?$")

def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)

def decode_header_value(value: Any) -> str:
    """Decodifica encoded-words RFC 2047 (=?utf-8?b?...?=); si no se puede, texto tal cual."""
    raw = _text(value)
    if "=?" not in raw:
        return raw
    try:
        return str(make_header(decode_header(raw)))
    except (HeaderParseError, LookupError, UnicodeDecodeError, ValueError):
        logger.debug("Cabecera no decodificable: %r", raw)
        return raw

def _decode_bytes(data: bytes, charset: str | None) -> str:
    try:
        return data.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return data.decode("utf-8", errors="replace")

def _join_continuations(segments: list[tuple[int, str, bool]]) -> str:
    # filename*0*=utf-8''na%C3 ; filename*1*=%AFve.png ; filename*2=.bak
    segments.sort(key=lambda s: s[0])
    charset: str | None = None
    chunks: list[bytes] = []
    for n, val, encoded in segments:
        if encoded:
            if n == 0:
                charset, _lang, val = decode_rfc2231(val)
            chunks.append(unquote_to_bytes(val))
        else:
            chunks.append(val.encode("utf-8"))
    return _decode_bytes(b"".join(chunks), charset)

def _params(raw: Any) -> dict[str, str]:
    # (b'CHARSET', b'utf-8', b'NAME', b'a.png') -> {"charset": "utf-8", "name": "a.png"}
    out: dict[str, str] = {}
    if not isinstance(raw, (tuple, list)):
        return out
    continued: dict[str, list[tuple[int, str, bool]]] = defaultdict(list)
    for i in range(0, len(raw) - 1, 2):
        key = _text(raw[i]).lower()
        val = _text(raw[i + 1])
        m = _CONTINUATION.match(key)
        if m:
            continued[m.group(1)].append((int(m.group(2)), val, bool(m.group(3))))
        elif key.endswith("*"):
            # filename*=utf-8''na%C3%AFve.png
            charset, _lang, encoded = decode_rfc2231(val)
            out[key[:-1]] = _decode_bytes(unquote_to_bytes(encoded), charset)
        else:
            out.setdefault(key, decode_header_value(val))
    for key, segments in continued.items():
        out[key] = _join_continuations(segments)
    return out

def _is_multipart(body: Any) -> bool:
    return isinstance(body, (tuple, list)) and len(body) > 0 and isinstance(body[0], list)

def _leaf(body: Any) -> MimeLeaf:
    mtype = _text(body[0]) if len(body) > 0 else "application"
    subtype = _text(body[1]) if len(body) > 1 else "octet-stream"
    params = _params(body[2]) if len(body) > 2 else {}
    encoding = _text(body[5]).lower() if len(body) > 5 and body[5] else "7bit"

    # extensiones: md5, disposition... tras los campos específicos del tipo
    ext = 7
    if mtype.lower() == "text":
        ext += 1                     # lines
    elif mtype.lower() == "message" and subtype.lower() == "rfc822":
        ext += 3                     # envelope, body, lines

    disposition: str | None = None
    disp_params: dict[str, str] = {}
    raw_disp = body[ext + 1] if len(body) > ext + 1 else None
    if isinstance(raw_disp, (tuple, list)) and raw_disp and isinstance(raw_disp[0], (bytes, str)):
        disposition = _text(raw_disp[0]).lower()
        disp_params = _params(raw_disp[1]) if len(raw_disp) > 1 else {}

    return MimeLeaf(
        type=mtype,
        subtype=subtype,
        params=params,
        disposition=disposition,
        disposition_params=disp_params,
        encoding=encoding,
    )

def to_mime_node(body: Any) -> MimeNode | None:
    """
    Convierte sin recursión: primero se aplana en pre-orden (índice, padre) y
    luego se construye de abajo arriba.
    """
    if not body:
        return None

    order: list[tuple[Any, int]] = []
    stack: list[tuple[Any, int]] = [(body, -1)]
    while stack:
        node, parent = stack.pop()
        idx = len(order)
        order.append((node, parent))
        if _is_multipart(node):
            for child in reversed(node[0]):
                stack.append((child, idx))

    children: dict[int, list[MimeNode]] = defaultdict(list)
    built: list[MimeNode | None] = [None] * len(order)
    for idx in range(len(order) - 1, -1, -1):
        node, parent = order[idx]
        if _is_multipart(node):
            subtype = _text(node[1]) if len(node) > 1 else "mixed"
            # los hijos se acumulan del último al primero
            built[idx] = MimeMultipart(subtype=subtype, children=tuple(reversed(children.pop(idx, []))))
        else:
            built[idx] = _leaf(node)
        if parent >= 0:
            children[parent].append(built[idx])  # type: ignore[arg-type]
    return built[0]
