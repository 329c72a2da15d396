from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

@dataclass(frozen=True)
class MimeLeaf:
    type: str
    subtype: str
    params: dict[str, str] = field(default_factory=dict)            # Content-Type (name=...)
    disposition: str | None = None                                   # inline | attachment
    disposition_params: dict[str, str] = field(default_factory=dict) # filename=...
    encoding: str = "7bit"

@dataclass(frozen=True)
class MimeMultipart:
    subtype: str
    children: tuple["MimeNode", ...] = ()

MimeNode = Union[MimeLeaf, MimeMultipart]

@dataclass(frozen=True)
class AttachmentDescriptor:
    # path 1-based en pre-orden; () = mensaje completo de una sola parte
    path: tuple[int, ...]
    content_type: str
    filename: str
    encoding: str = "7bit"

    @property
    def section(self) -> str:
        return ".".join(str(i) for i in self.path) if self.path else "1"

@dataclass
class Attachment:
    filename: str
    content: bytes
    content_type: str

@dataclass(frozen=True)
class MailItem:
    uid: int
    subject: str
    structure: MimeNode | None = None

class PostAction(str, Enum):
    NONE = "none"
    DELETE = "delete"
    MOVE = "move"

class MessageState(str, Enum):
    FETCHED = "fetched"
    STRUCTURE_WALKED = "structure_walked"
    PARTS_FETCHED = "parts_fetched"
    SAVED = "saved"
    MARKED_PROCESSED = "marked_processed"
    POST_ACTION_APPLIED = "post_action_applied"
    POST_ACTION_SKIPPED = "post_action_skipped"
    DONE = "done"

@dataclass
class MessageOutcome:
    uid: int
    subject: str
    state: MessageState = MessageState.FETCHED
    saved: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

@dataclass
class RunSummary:
    messages: int = 0
    images_saved: int = 0
    errors: int = 0
    outcomes: list[MessageOutcome] = field(default_factory=list)

    def summary_line(self) -> str:
        return f"Processed {self.messages} message(s), saved {self.images_saved} image(s)"
