"""Key names used by the example components in the key-value store."""

from __future__ import annotations


def build_tx_key(component_id: str, tx_id: str) -> str:
    """Key holding a component's state for one transaction, used for deduplication."""
    return f"txKey:{component_id}:{tx_id}"


def build_tx_detail_key(component_id: str, tx_id: str) -> str:
    """Key holding the business id a transaction works on."""
    return f"txDetailKey:{component_id}:{tx_id}"


def build_data_key(component_id: str, tx_id: str, biz_id: str) -> str:
    """Key holding the state of the business data touched by a transaction."""
    return f"txKey:{component_id}:{tx_id}:{biz_id}"


def build_tx_lock_key(component_id: str, tx_id: str) -> str:
    """Key of the lock serialising one component's work on one transaction."""
    return f"txLockKey:{component_id}:{tx_id}"


def build_tx_record_lock_key() -> str:
    """Key of the lock over the whole transaction log."""
    return "gotcc:txRecord:lock"