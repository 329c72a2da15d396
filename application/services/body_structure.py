# application/services/body_structure.py
from __future__ import annotations
from typing import Iterable

from domain.models import Attachment, AttachmentDescriptor, MimeLeaf, MimeMultipart, MimeNode

def _leaf_filename(leaf: MimeLeaf) -> str:
    # 1) filename de Content-Disposition  2) name de Content-Type
    name = (leaf.disposition_params or {}).get("filename") or ""
    if not name:
        name = (leaf.params or {}).get("name") or ""
    return name

def walk(tree: MimeNode | None) -> list[AttachmentDescriptor]:
    """
    Recorre la BODYSTRUCTURE en pre-orden y devuelve un descriptor por cada hoja con nombre de fichero.
    - Hijo i (base 0) de un multipart en P -> P + (i+1,)
    - Hoja raíz (mensaje sin multipart) -> path ()
    Pila explícita: sin límite de recursión con anidamientos patológicos.
    """
    if tree is None:
        return []

    found: list[AttachmentDescriptor] = []
    stack: list[tuple[MimeNode, tuple[int, ...]]] = [(tree, ())]
    while stack:
        node, path = stack.pop()
        if isinstance(node, MimeMultipart):
            # en orden inverso para que el primer hijo salga primero
            for i in range(len(node.children) - 1, -1, -1):
                stack.append((node.children[i], path + (i + 1,)))
            continue

        filename = _leaf_filename(node)
        if not filename:
            continue
        found.append(AttachmentDescriptor(
            path=path,
            content_type=f"{node.type.lower()}/{node.subtype.lower()}",
            filename=filename,
            encoding=(node.encoding or "7bit").lower(),
        ))
    return found

def is_image_mime(content_type: str) -> bool:
    return (content_type or "").lower().startswith("image/")

def filter_image_attachments(attachments: Iterable[Attachment]) -> list[Attachment]:
    return [a for a in attachments if is_image_mime(a.content_type)]
