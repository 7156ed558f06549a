from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


Source = Literal["api", "dom"]


def _to_text(v) -> Optional[str]:
    if v is None:
        return None
    s = " ".join(str(v).split())
    return s or None


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class TicketComment(_Record):
    author: Optional[str] = None
    time: Optional[str] = None
    text: str

    @field_validator("text", mode="before")
    @classmethod
    def _text(cls, v):
        return (_to_text(v) or "")[:4000]


class Ticket(_Record):
    source: Source
    page_url: Optional[str] = None
    page_title: Optional[str] = None
    ticket_id: Optional[str] = None
    subject: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    assignee: Optional[str] = None
    requester: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    comments: List[TicketComment] = Field(default_factory=list)

    @field_validator("subject", "status", "priority", "assignee", "requester", mode="before")
    @classmethod
    def _textify(cls, v):
        return _to_text(v)

    def is_empty(self) -> bool:
        return not (self.ticket_id or self.subject or self.comments)


class QueueTicket(_Record):
    ticket_id: Optional[str] = None
    subject: Optional[str] = None
    status: Optional[str] = None
    assignee_id: Optional[str] = None
    assignee: Optional[str] = None
    requester_id: Optional[str] = None
    requester: Optional[str] = None
    url: Optional[str] = None


class Queue(_Record):
    source: Source
    page_url: Optional[str] = None
    page_title: Optional[str] = None
    queue_name: Optional[str] = None
    full_sync: bool = False
    tickets: List[QueueTicket] = Field(default_factory=list)

    @property
    def result_count(self) -> int:
        return len(self.tickets)

    def is_empty(self) -> bool:
        return not self.tickets

    def to_record(self) -> Dict[str, Any]:
        out = super().to_record()
        out["resultCount"] = self.result_count
        return out


class SearchHit(_Record):
    ticket_id: Optional[str] = None
    title: Optional[str] = None
    snippet: Optional[str] = None
    url: Optional[str] = None


class SearchResult(_Record):
    source: Source
    page_url: Optional[str] = None
    page_title: Optional[str] = None
    query: str
    results: List[SearchHit] = Field(default_factory=list)

    @property
    def result_count(self) -> int:
        return len(self.results)

    def is_empty(self) -> bool:
        return not self.results

    def to_record(self) -> Dict[str, Any]:
        out = super().to_record()
        out["resultCount"] = self.result_count
        return out


class Identity(_Record):
    source: Source
    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return bool(self.id)

    def is_empty(self) -> bool:
        return not (self.id or self.name or self.email)


class QueueMatch(_Record):
    """How a requested queue name was resolved to a view URL."""

    id: Optional[str] = None
    score: int
    name: Optional[str] = None
    href: str
    source: Literal["id", "api", "dom", "config"]


class SessionMeta(_Record):
    launched_chrome: bool
    cdp_url: str
