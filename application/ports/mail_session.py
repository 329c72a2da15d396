from __future__ import annotations
from typing import Protocol

from domain.models import AttachmentDescriptor, MailItem

class MailSession(Protocol):
    """Operaciones de buzón que necesita el pipeline (IMAP real o fake en tests)."""

    def __enter__(self) -> "MailSession": ...

    def __exit__(self, exc_type, exc, tb) -> None: ...

    def select_mailbox(self, name: str) -> None: ...

    def search_unprocessed(self) -> list[int]: ...

    def fetch_envelope_and_structure(self, ids: list[int]) -> list[MailItem]: ...

    def fetch_part(self, uid: int, part: AttachmentDescriptor) -> bytes | None: ...

    def mark_processed(self, uid: int) -> None: ...

    def delete(self, uid: int) -> None: ...

    def move(self, uid: int, destination: str) -> None: ...

    def close(self) -> None: ...
