"""Interfaces for TCC components and the transaction log store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sharddoc.tcc.models import Transaction


class TCCError(Exception):
    """Raised when a TCC operation cannot be carried out."""


@dataclass
class TCCRequest:
    """Arguments of a component's try phase."""

    component_id: str = ""
    tx_id: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"componentID": self.component_id, "txID": self.tx_id, "data": self.data}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TCCRequest:
        return cls(
            component_id=raw.get("componentID", ""),
            tx_id=raw.get("txID", ""),
            data=dict(raw.get("data") or {}),
        )


@dataclass
class TCCResponse:
    """A component's answer to a try, confirm or cancel call."""

    component_id: str = ""
    ack: bool = False
    tx_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"componentID": self.component_id, "ack": self.ack, "txID": self.tx_id}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TCCResponse:
        return cls(
            component_id=raw.get("componentID", ""),
            ack=bool(raw.get("ack", False)),
            tx_id=raw.get("txID", ""),
        )


class TccComponent(ABC):
    """A participant in a try-confirm-cancel transaction."""

    @property
    @abstractmethod
    def component_id(self) -> str:
        """Unique identifier of the component."""

    @abstractmethod
    def try_(self, request: TCCRequest) -> TCCResponse:
        """Run the first phase."""

    @abstractmethod
    def confirm(self, tx_id: str) -> TCCResponse:
        """Commit the second phase."""

    @abstractmethod
    def cancel(self, tx_id: str) -> TCCResponse:
        """Roll back the second phase."""


class TXStore(ABC):
    """Persistent log of distributed transactions."""

    @abstractmethod
    def create_tx(self, components: list[TccComponent]) -> str:
        """Create a transaction record and return its unique id."""

    @abstractmethod
    def tx_update(self, tx_id: str, component_id: str, accept: bool) -> None:
        """Record the outcome of one component's try phase."""

    @abstractmethod
    def tx_submit(self, tx_id: str, success: bool) -> None:
        """Record the final outcome of a transaction."""

    @abstractmethod
    def get_hanging_txs(self) -> list[Transaction]:
        """Return every transaction not yet finished."""

    @abstractmethod
    def get_tx(self, tx_id: str) -> Transaction:
        """Return one transaction."""

    @abstractmethod
    def lock(self, expire: float) -> None:
        """Take the distributed lock over the log for ``expire`` seconds."""

    @abstractmethod
    def unlock(self) -> None:
        """Release the distributed lock over the log."""