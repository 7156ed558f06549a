"""Tagged result of a two-tier retrieval: ``Api(entity) | Dom(entity) | Empty``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class Api:
    entity: Any
    source = "api"

    def __post_init__(self) -> None:
        if getattr(self.entity, "source", None) != "api":
            raise ValueError("Api outcome must wrap an entity produced by the API tier")


@dataclass(frozen=True)
class Dom:
    entity: Any
    source = "dom"

    def __post_init__(self) -> None:
        if getattr(self.entity, "source", None) != "dom":
            raise ValueError("Dom outcome must wrap an entity produced by the DOM tier")


@dataclass(frozen=True)
class Empty:
    kind: str
    entity = None
    source = None


Outcome = Union[Api, Dom, Empty]


def found(outcome: Outcome) -> bool:
    return not isinstance(outcome, Empty)
