"""Coordinator that drives try-confirm-cancel transactions to completion."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta, timezone
from typing import Callable

from sharddoc.tcc.component import TCCError, TCCRequest, TCCResponse, TccComponent, TXStore
from sharddoc.tcc.models import (
    ComponentEntity,
    Options,
    RequestEntity,
    Transaction,
    TXStatus,
)
from sharddoc.tcc.registry import RegistryCenter
from sharddoc.tcc.tcclog import get_default_logger

_BACKOFF_LIMIT = 8  # the monitor interval grows up to this multiple of the tick


class TXManager:
    """Runs distributed transactions over registered TCC components.

    A background monitor periodically picks up transactions still hanging in
    the store and pushes them to their confirm or cancel phase.
    """

    def __init__(
        self,
        tx_store: TXStore,
        options: Options | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.options = options or Options()
        self._store = tx_store
        self._registry = RegistryCenter()
        self._log = logger if logger is not None else get_default_logger()
        self._stopped = threading.Event()
        self._monitor = threading.Thread(target=self._run, name="tcc-monitor", daemon=True)
        self._monitor.start()

    def __enter__(self) -> TXManager:
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()

    def stop(self) -> None:
        """Stop the background monitor."""
        self._stopped.set()

    def register(self, component: TccComponent) -> None:
        """Make a component available to transactions."""
        self._registry.register(component)

    def transaction(self, *requests: RequestEntity) -> tuple[str, bool]:
        """Run one transaction over the named components.

        Returns the transaction id and whether every try phase succeeded.
        Invalid requests raise ``TCCError``; if the store cannot create the
        record the result is ``("", False)``.
        """
        entities = self._component_entities(requests)
        try:
            tx_id = self._store.create_tx([entity.component for entity in entities])
        except Exception as exc:
            self._log.error("create tx failed, err: %s", exc)
            return "", False
        return tx_id, self._two_phase_commit(tx_id, entities)

    def advance_progress(self, tx: Transaction) -> None:
        """Confirm or cancel a transaction according to its components' tries.

        A transaction that is still hanging and has not timed out is left alone.
        """
        deadline = datetime.now(timezone.utc) - timedelta(seconds=self.options.timeout)
        status = tx.resolve_status(deadline)
        if status == TXStatus.HANGING:
            return

        success = status == TXStatus.SUCCESSFUL
        second_phase: Callable[[TccComponent], TCCResponse]
        if success:
            second_phase = lambda component: component.confirm(tx.tx_id)  # noqa: E731
        else:
            second_phase = lambda component: component.cancel(tx.tx_id)  # noqa: E731

        for entry in tx.components:
            try:
                (component,) = self._registry.get_components(entry.component_id)
            except (TCCError, ValueError) as exc:
                raise TCCError("get tcc component failed") from exc
            response = second_phase(component)
            if not response.ack:
                raise TCCError(f"component: {entry.component_id} ack failed")

        self._store.tx_submit(tx.tx_id, success)

    def _advance_progress_by_tx_id(self, tx_id: str) -> None:
        self.advance_progress(self._store.get_tx(tx_id))

    def _component_entities(self, requests: tuple[RequestEntity, ...]) -> list[ComponentEntity]:
        if not requests:
            raise TCCError("empty task")
        by_id: dict[str, RequestEntity] = {}
        for request in requests:
            if request.component_id in by_id:
                raise TCCError(f"repeat component: {request.component_id}")
            by_id[request.component_id] = request

        components = self._registry.get_components(*by_id)
        if len(components) != len(by_id):
            raise TCCError("invalid componentIDs")
        return [
            ComponentEntity(request=by_id[component.component_id].request, component=component)
            for component in components
        ]

    def _two_phase_commit(self, tx_id: str, entities: list[ComponentEntity]) -> bool:
        pool = ThreadPoolExecutor(max_workers=len(entities), thread_name_prefix="tcc-try")
        futures = [pool.submit(self._try_component, tx_id, entity) for entity in entities]
        successful = True
        try:
            for future in as_completed(futures):
                if future.exception() is not None:
                    # One failed try decides the outcome; the rest are not awaited.
                    successful = False
                    break
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        # A failure here is left for the background monitor to retry.
        try:
            self._advance_progress_by_tx_id(tx_id)
        except Exception as exc:
            self._log.error("advance tx progress fail, txid: %s, err: %s", tx_id, exc)
        return successful

    def _try_component(self, tx_id: str, entity: ComponentEntity) -> None:
        component = entity.component
        component_id = component.component_id
        error: Exception | None = None
        try:
            response = component.try_(
                TCCRequest(component_id=component_id, tx_id=tx_id, data=entity.request)
            )
            accepted = response.ack
        except Exception as exc:
            error = exc
            accepted = False

        if not accepted:
            self._log.error(
                "tx try failed, tx id: %s, component id: %s, err: %s", tx_id, component_id, error
            )
            try:
                self._store.tx_update(tx_id, component_id, False)
            except Exception as exc:
                self._log.error(
                    "tx updated failed, tx id: %s, component id: %s, err: %s",
                    tx_id,
                    component_id,
                    exc,
                )
            raise TCCError(f"component: {component_id} try failed")

        try:
            self._store.tx_update(tx_id, component_id, True)
        except Exception as exc:
            self._log.error(
                "tx updated failed, tx id: %s, component id: %s, err: %s", tx_id, component_id, exc
            )
            raise

    def _back_off_tick(self, tick: float) -> float:
        return min(tick * 2, self.options.monitor_tick * _BACKOFF_LIMIT)

    def _run(self) -> None:
        # Start so that the first wait lasts one monitor tick.
        tick = self.options.monitor_tick / 2
        failed = False
        while True:
            tick = self.options.monitor_tick if failed else self._back_off_tick(tick)
            if self._stopped.wait(tick):
                return
            try:
                self._store.lock(self.options.monitor_tick)
            except Exception:
                # Most likely another node holds the lock.
                continue
            try:
                txs = self._store.get_hanging_txs()
            except Exception:
                failed = True
                self._safe_unlock()
                continue
            failed = self._batch_advance_progress(txs) is not None
            self._safe_unlock()

    def _safe_unlock(self) -> None:
        try:
            self._store.unlock()
        except Exception as exc:
            self._log.error("unlock tx store failed, err: %s", exc)

    def _batch_advance_progress(self, txs: list[Transaction]) -> Exception | None:
        """Advance every transaction concurrently; return the first error seen."""
        if not txs:
            return None
        first_error: Exception | None = None
        with ThreadPoolExecutor(max_workers=len(txs), thread_name_prefix="tcc-advance") as pool:
            futures = [pool.submit(self.advance_progress, tx) for tx in txs]
            for future in as_completed(futures):
                error = future.exception()
                if error is not None and first_error is None:
                    first_error = error  # type: ignore[assignment]
        return first_error