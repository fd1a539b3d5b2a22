"""Reports finished transactions to the businesses that own them."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from typing import Any

import requests
import tenacity

from chainsync.models import NotifyRequest, NotifyTransaction, TxRecord, TxStatus

log = logging.getLogger(__name__)

NOTIFY_PATH = "/dapplink/notify"
RETRY_ATTEMPTS = 10
DEFAULT_BACKOFF = (1.0, 20.0, 0.25)


class NotifyHTTPError(Exception):
    """The business endpoint answered with an HTTP error status."""

    def __init__(self, status_code: int, method: str, url: str) -> None:
        super().__init__(f"{status_code} cannot {method} {url}: blockchain http error")
        self.status_code = status_code
        self.method = method
        self.url = url


class NotifyClient:
    """Posts notification batches to one business callback endpoint."""

    def __init__(
        self,
        base_url: str,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("blockchain URL cannot be empty")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def business_notify(self, request: NotifyRequest) -> bool:
        """Send ``request``; return whether the business acknowledged it."""
        response = self._session.post(
            self.base_url + NOTIFY_PATH,
            data=request.to_json().encode("utf-8"),
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            raise NotifyHTTPError(response.status_code, "POST", response.url)
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("notify response is not an object")
        return bool(payload.get("success", False))


def _notify_item(record: TxRecord, confirms: int) -> NotifyTransaction:
    return NotifyTransaction(
        block_hash=record.block_hash,
        block_number=record.block_number,
        hash=record.tx_hash,
        from_address=record.from_address,
        to_address=record.to_address,
        value=str(record.amount),
        fee=record.max_fee_per_gas,
        tx_type=record.tx_type,
        confirms=confirms,
        token_address=record.token_address,
        token_id=record.token_id,
        token_meta=record.token_meta,
    )


def build_notify_request(
    deposits: Iterable[TxRecord],
    withdraws: Iterable[TxRecord],
    internals: Iterable[TxRecord],
) -> NotifyRequest:
    """Collect deposits, withdrawals and internal transfers into one request.

    Only deposits carry their confirmation count; the others report zero.
    """
    items = [_notify_item(record, record.confirms) for record in deposits]
    items += [_notify_item(record, 0) for record in withdraws]
    items += [_notify_item(record, 0) for record in internals]
    return NotifyRequest(txn=items)


def notify_status(is_before: bool, notify_success: bool) -> TxStatus:
    """Status to store before a notification, or after it succeeded or failed."""
    if is_before:
        return TxStatus.NOTIFIED
    return TxStatus.SUCCESS if notify_success else TxStatus.WALLET_DONE


class Notifier:
    """Periodically notifies every registered business of its settled transactions.

    ``db`` offers ``business.query_business_list()``, the pending queries
    ``deposits.query_notify_deposits``, ``withdraws.query_notify_withdraws`` and
    ``internals.query_notify_internals``, and a ``transaction()`` context manager
    whose handle updates statuses through ``update_status_by_tx_hash``.
    """

    def __init__(
        self,
        db: Any,
        shutdown: Callable[[BaseException], None] | None = None,
        *,
        interval: float = 5.0,
        backoff: tuple[float, float, float] = DEFAULT_BACKOFF,
        session: requests.Session | None = None,
    ) -> None:
        self.db = db
        self.interval = interval
        self.business_ids: list[str] = []
        self.clients: dict[str, NotifyClient] = {}
        for business in db.business.query_business_list():
            log.info("handle business id %s", business.business_uid)
            self.business_ids.append(business.business_uid)
            self.clients[business.business_uid] = NotifyClient(business.notify_url, session=session)
        self._shutdown = shutdown
        self._backoff = backoff
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._error: BaseException | None = None
        self._stopped = False

    def start(self) -> None:
        """Start the notification loop in the background."""
        if self._thread is not None:
            raise RuntimeError("notifier already started")
        log.info("start notifier")
        self._thread = threading.Thread(target=self._run, name="notifier", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the loop and wait for it; re-raise what made it fail, if anything."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
        self._stopped = True
        if self._error is not None:
            raise RuntimeError(f"failed to await notify: {self._error}") from self._error
        log.info("stop notify success")

    def stopped(self) -> bool:
        """Whether :meth:`stop` has completed."""
        return self._stopped

    def _run(self) -> None:
        try:
            while not self._stop_event.wait(self.interval):
                for business_id in self.business_ids:
                    self.notify_business(business_id)
        except Exception as exc:
            log.error("notifier loop failed: %s", exc)
            self._error = exc
            if self._shutdown is not None:
                self._shutdown(RuntimeError(f"critical error in notifier: {exc}"))
        else:
            log.info("stop notifier worker")

    def notify_business(self, business_id: str) -> bool:
        """Notify one business of its pending transactions and record the outcome."""
        deposits = list(self.db.deposits.query_notify_deposits(business_id))
        withdraws = list(self.db.withdraws.query_notify_withdraws(business_id))
        internals = list(self.db.internals.query_notify_internals(business_id))
        request = build_notify_request(deposits, withdraws, internals)

        self.before_after_notify(business_id, True, False, deposits, withdraws, internals)
        success = self.clients[business_id].business_notify(request)
        self.before_after_notify(business_id, False, success, deposits, withdraws, internals)
        return success

    def _retrying(self) -> tenacity.Retrying:
        low, high, jitter = self._backoff
        return tenacity.Retrying(
            stop=tenacity.stop_after_attempt(RETRY_ATTEMPTS)
            | tenacity.stop_when_event_set(self._stop_event),
            wait=tenacity.wait_exponential(multiplier=low, min=low, max=high)
            + tenacity.wait_random(0, jitter),
            reraise=True,
        )

    def before_after_notify(
        self,
        business_id: str,
        is_before: bool,
        notify_success: bool,
        deposits: Sequence[TxRecord],
        withdraws: Sequence[TxRecord],
        internals: Sequence[TxRecord],
    ) -> None:
        """Store the status that goes with this stage of a notification, with retries.

        Deposits still waiting to be signed keep their status.
        """
        status = notify_status(is_before, notify_success)
        signed_deposits = [d for d in deposits if d.status != TxStatus.CREATE_UNSIGNED]
        for attempt in self._retrying():
            with attempt:
                try:
                    with self.db.transaction() as tx:
                        if deposits:
                            tx.deposits.update_status_by_tx_hash(business_id, status, signed_deposits)
                        if withdraws:
                            tx.withdraws.update_status_by_tx_hash(business_id, status, withdraws)
                        if internals:
                            tx.internals.update_status_by_tx_hash(business_id, status, internals)
                except Exception as exc:
                    log.error("unable to persist batch: %s", exc)
                    raise