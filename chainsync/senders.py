"""Workers that broadcast signed withdrawals and internal transfers."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, ClassVar

import tenacity

from chainsync.models import TxRecord, TxStatus

log = logging.getLogger(__name__)

RETRY_ATTEMPTS = 10
DEFAULT_BACKOFF = (1.0, 20.0, 0.25)


def _hex_to_fixed(value: str, size: int) -> str:
    text = value[2:] if value[:2] in ("0x", "0X") else value
    if len(text) % 2:
        text = "0" + text
    try:
        raw = bytes.fromhex(text)
    except ValueError:
        raw = b""
    return "0x" + raw[-size:].rjust(size, b"\0").hex()


class PendingSender:
    """Periodically sends every signed but unsent transaction of each business.

    Subclasses name the table they work on and its two queries. ``db`` offers
    ``business.query_business_list()``, that table, and a ``transaction()``
    context manager whose handle exposes ``balances`` and the same table.
    """

    name: ClassVar[str] = "pending"
    table_name: ClassVar[str] = ""
    list_query: ClassVar[str] = ""
    update_query: ClassVar[str] = ""

    def __init__(
        self,
        db: Any,
        rpc_client: Any,
        shutdown: Callable[[BaseException], None] | None = None,
        *,
        worker_interval: float,
        backoff: tuple[float, float, float] = DEFAULT_BACKOFF,
    ) -> None:
        self.db = db
        self.rpc_client = rpc_client
        self.worker_interval = worker_interval
        self._shutdown = shutdown
        self._backoff = backoff
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._error: BaseException | None = None

    def start(self) -> None:
        """Start sending in the background."""
        if self._thread is not None:
            raise RuntimeError(f"{self.name} already started")
        log.info("start %s", self.name)
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def close(self) -> None:
        """Stop the loop and wait for it; re-raise what made it fail, if anything."""
        self._stop_event.set()
        log.info("stop %s", self.name)
        if self._thread is not None:
            self._thread.join()
        if self._error is not None:
            raise RuntimeError(f"failed to await {self.name}: {self._error}") from self._error
        log.info("stop %s success", self.name)

    def _run(self) -> None:
        try:
            while not self._stop_event.wait(self.worker_interval):
                self._tick()
        except Exception as exc:
            log.error("%s loop failed: %s", self.name, exc)
            self._error = exc
            if self._shutdown is not None:
                self._shutdown(RuntimeError(f"critical error in {self.name}: {exc}"))
        else:
            log.info("stop %s in worker", self.name)

    def _tick(self) -> None:
        try:
            businesses = self.db.business.query_business_list()
        except Exception as exc:
            log.error("query business list failed: %s", exc)
            return
        for business in businesses:
            self.send_pending(business.business_uid)

    def send_pending(self, business_id: str) -> int:
        """Broadcast the unsent transactions of one business; return how many went out.

        Transactions that fail to send are left as they were; all of them are
        written back together with the locked balances of those that were sent.
        """
        table = getattr(self.db, self.table_name)
        try:
            pending: list[TxRecord] = list(getattr(table, self.list_query)(business_id))
        except Exception as exc:
            log.error("query unsent %s list failed: %s", self.name, exc)
            return 0
        if not pending:
            log.info("no unsent %s transactions for business %s", self.name, business_id)
            return 0

        balances: list[dict[str, Any]] = []
        for record in pending:
            try:
                tx_hash = self.rpc_client.send_tx(record.tx_sign_hex)
            except Exception as exc:
                log.error("send transaction failed: %s", exc)
                continue
            balances.append(
                {
                    "token_address": record.token_address,
                    "address": record.from_address,
                    "lock_balance": record.amount,
                }
            )
            record.tx_hash = _hex_to_fixed(tx_hash, 32)
            record.status = TxStatus.BROADCASTED

        for attempt in self._retrying():
            with attempt:
                try:
                    with self.db.transaction() as store:
                        if balances:
                            log.info("update %d address balances", len(balances))
                            store.balances.update_balance_list_by_two_address(business_id, balances)
                        getattr(getattr(store, self.table_name), self.update_query)(business_id, pending)
                except Exception as exc:
                    log.error("unable to persist batch: %s", exc)
                    raise
        return len(balances)

    def _retrying(self) -> tenacity.Retrying:
        low, high, jitter = self._backoff
        return tenacity.Retrying(
            stop=tenacity.stop_after_attempt(RETRY_ATTEMPTS)
            | tenacity.stop_when_event_set(self._stop_event),
            wait=tenacity.wait_exponential(multiplier=low, min=low, max=high)
            + tenacity.wait_random(0, jitter),
            reraise=True,
        )


class Withdraw(PendingSender):
    """Sends signed withdrawals."""

    name = "withdraw"
    table_name = "withdraws"
    list_query = "un_send_withdraws_list"
    update_query = "update_withdraw_list_by_id"


class Internal(PendingSender):
    """Sends signed collections and hot/cold transfers."""

    name = "internal"
    table_name = "internals"
    list_query = "un_send_internals_list"
    update_query = "update_internal_list_by_id"