"""
Result contract shared by all stock operations.

An operation either succeeds with a message and some data, or fails with a
`StockGuardError`. Views turn either variant into the JSON body the storefront
expects: a ``success`` flag, a ``message`` and the operation's own fields.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Union

from .exceptions import StockGuardError


@dataclass(frozen=True)
class Success:
    message: str
    data: Mapping[str, Any] = field(default_factory=dict)
    ok: Literal[True] = True

    @property
    def status(self) -> int:
        return 200

    def payload(self) -> dict[str, Any]:
        return {"success": True, "message": self.message, **self.data}


@dataclass(frozen=True)
class Failure:
    error: StockGuardError
    ok: Literal[False] = False

    @property
    def status(self) -> int:
        return self.error.status

    @property
    def message(self) -> str:
        return self.error.message

    def payload(self) -> dict[str, Any]:
        return {"success": False, "message": self.message, "code": self.error.code}


StockResult = Union[Success, Failure]
