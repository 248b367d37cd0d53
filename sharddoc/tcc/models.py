"""Transaction records, statuses and manager options."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sharddoc.tcc.component import TccComponent

DEFAULT_TIMEOUT = 5.0
DEFAULT_MONITOR_TICK = 10.0


class TXStatus(str, Enum):
    """Overall state of a transaction."""

    HANGING = "hanging"
    SUCCESSFUL = "successful"
    FAILURE = "failure"

    def __str__(self) -> str:
        return self.value


class ComponentTryStatus(str, Enum):
    """Outcome of one component's try phase."""

    HANGING = "hanging"
    SUCCESSFUL = "successful"
    FAILURE = "failure"

    def __str__(self) -> str:
        return self.value


@dataclass
class RequestEntity:
    """A component named in a transaction together with its try arguments."""

    component_id: str
    request: dict[str, Any] = field(default_factory=dict)


@dataclass
class ComponentEntity:
    """A registered component paired with its try arguments."""

    request: dict[str, Any]
    component: TccComponent


@dataclass
class ComponentTryEntity:
    """Try-phase status of one component inside a transaction."""

    component_id: str
    try_status: ComponentTryStatus = ComponentTryStatus.HANGING


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Transaction:
    """A distributed transaction as kept in the transaction log."""

    tx_id: str
    components: list[ComponentTryEntity] = field(default_factory=list)
    status: TXStatus = TXStatus.HANGING
    created_at: datetime = field(default_factory=_utc_now)

    def resolve_status(self, created_before: datetime) -> TXStatus:
        """Infer the state from the components' try outcomes.

        Any failed try makes the transaction fail; a pending try on a
        transaction created before ``created_before`` counts as a timeout.
        """
        hanging = False
        for component in self.components:
            if component.try_status == ComponentTryStatus.FAILURE:
                return TXStatus.FAILURE
            hanging = hanging or component.try_status != ComponentTryStatus.SUCCESSFUL
        if hanging and self.created_at < created_before:
            return TXStatus.FAILURE
        if hanging:
            return TXStatus.HANGING
        return TXStatus.SUCCESSFUL


@dataclass
class Options:
    """Transaction manager settings, in seconds; non-positive values use defaults."""

    timeout: float = DEFAULT_TIMEOUT
    monitor_tick: float = DEFAULT_MONITOR_TICK

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            self.timeout = DEFAULT_TIMEOUT
        if self.monitor_tick <= 0:
            self.monitor_tick = DEFAULT_MONITOR_TICK