"""Records the transfers found by the synchronizer for each business."""

from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any

import tenacity

from chainsync.batch_block import BatchBlock
from chainsync.models import TransactionType, TxRecord, TxStatus
from chainsync.rpcclient import ChainAccountError
from chainsync.synchronizer import CHANNEL_CLOSED, BaseSynchronizer, Transaction, TransactionsChannel

log = logging.getLogger(__name__)

RETRY_ATTEMPTS = 10
DEFAULT_BACKOFF = (1.0, 20.0, 0.25)
TOKEN_PLACEHOLDER = "0x00"

_DECIMAL = re.compile(r"[+-]?[0-9]+")
_INTERNAL_TYPES = frozenset(
    {TransactionType.COLLECTION, TransactionType.HOT2COLD, TransactionType.COLD2HOT}
)


def _hex_to_fixed(value: str, size: int) -> str:
    text = value[2:] if value[:2] in ("0x", "0X") else value
    if len(text) % 2:
        text = "0" + text
    try:
        raw = bytes.fromhex(text)
    except ValueError:
        raw = b""
    return "0x" + raw[-size:].rjust(size, b"\0").hex()


def _decimal_or_none(text: Any) -> int | None:
    text = str(text if text is not None else "")
    return int(text) if _DECIMAL.fullmatch(text) else None


def _first(tx_msg: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    items = tx_msg.get(key) or []
    if not items:
        raise ChainAccountError(f"transaction message has no {key}")
    return items[0]


def _amount(tx_msg: Mapping[str, Any]) -> int | None:
    return _decimal_or_none(_first(tx_msg, "values").get("value"))


class Deposit(BaseSynchronizer):
    """Synchronizer plus the consumer that stores what it finds.

    ``db`` additionally offers ``blocks.latest_blocks()`` and a
    ``transaction()`` context manager whose handle exposes ``deposits``,
    ``withdraws``, ``internals``, ``balances`` and ``transactions``.
    """

    def __init__(
        self,
        db: Any,
        rpc_client: Any,
        shutdown: Callable[[BaseException], None] | None = None,
        *,
        confirmations: int,
        blocks_step: int,
        synchronizer_interval: float,
        starting_height: int = 0,
        backoff: tuple[float, float, float] = DEFAULT_BACKOFF,
    ) -> None:
        latest = db.blocks.latest_blocks()
        if latest is not None:
            log.info("sync block from stored height %d", latest.number)
            from_header = latest
        elif starting_height > 0:
            from_header = rpc_client.get_block_header(starting_height)
        else:
            from_header = rpc_client.get_block_header(None)
        super().__init__(
            rpc_client,
            BatchBlock(rpc_client, from_header, confirmations),
            db,
            loop_interval=synchronizer_interval,
            header_buffer_size=blocks_step,
        )
        self.confirms = confirmations & 0xFF
        self._shutdown = shutdown
        self._backoff = backoff
        self._resource_stop = threading.Event()
        self._handler: threading.Thread | None = None
        self._error: BaseException | None = None

    def start(self) -> None:
        """Start the synchronizer and the batch handler."""
        log.info("starting deposit")
        try:
            super().start()
        except RuntimeError as exc:
            raise RuntimeError(f"failed to start internal synchronizer: {exc}") from exc
        self._handler = threading.Thread(target=self._consume, name="deposit", daemon=True)
        self._handler.start()

    def close(self) -> None:
        """Stop both loops; raise if either reported a failure."""
        problems: list[str] = []
        first: BaseException | None = None
        try:
            super().close()
        except Exception as exc:
            problems.append(f"failed to close internal base synchronizer: {exc}")
            first = exc
        self._resource_stop.set()
        if self._handler is not None:
            self._handler.join()
        if self._error is not None:
            problems.append(f"failed to await batch handler completion: {self._error}")
            first = first or self._error
        if problems:
            raise RuntimeError("\n".join(problems)) from first

    def _consume(self) -> None:
        log.info("handle deposit task start")
        for batch in iter(self.business_channels.get, CHANNEL_CLOSED):
            log.info("deposit batch for %d businesses", len(batch))
            try:
                self.handle_batch(batch)
            except Exception as exc:
                log.error("failed to handle batch, stopping synchronizer: %s", exc)
                self._error = exc
                if self._shutdown is not None:
                    self._shutdown(RuntimeError(f"critical error in deposit: {exc}"))
                return

    def build_record(self, tx: Transaction, tx_msg: Mapping[str, Any]) -> TxRecord:
        """Stored form of a broadcast deposit, withdrawal or internal transfer."""
        return TxRecord(
            timestamp=int(time.time()),
            status=TxStatus.BROADCASTED,
            block_number=tx.block_number,
            tx_hash=_hex_to_fixed(tx.hash, 32),
            tx_type=tx.tx_type,
            from_address=_hex_to_fixed(tx.from_address, 20),
            to_address=_hex_to_fixed(tx.to_address, 20),
            token_address=_hex_to_fixed(tx.token_address, 20),
            token_id=TOKEN_PLACEHOLDER,
            token_meta=TOKEN_PLACEHOLDER,
            max_fee_per_gas=str(tx_msg.get("fee", "")),
            amount=_amount(tx_msg) or 0,
        )

    def build_transaction(self, tx: Transaction, tx_msg: Mapping[str, Any]) -> dict[str, Any]:
        """Row for the transaction flow table."""
        import uuid

        return {
            "guid": str(uuid.uuid4()),
            "block_hash": _hex_to_fixed("", 32),
            "block_number": tx.block_number,
            "hash": _hex_to_fixed(tx.hash, 32),
            "from_address": _hex_to_fixed(tx.from_address, 20),
            "to_address": _hex_to_fixed(tx.to_address, 20),
            "token_address": _hex_to_fixed(tx.token_address, 20),
            "token_id": TOKEN_PLACEHOLDER,
            "token_meta": TOKEN_PLACEHOLDER,
            "fee": _decimal_or_none(tx_msg.get("fee")),
            "status": tx_msg.get("status"),
            "amount": _amount(tx_msg),
            "tx_type": tx.tx_type,
            "timestamp": int(time.time()),
        }

    def handle_batch(self, batch: Mapping[str, TransactionsChannel]) -> None:
        """Fetch the details of every transfer in ``batch`` and store them."""
        businesses = self.database.business.query_business_list()
        if not businesses:
            raise ValueError("QueryBusinessList businessList is nil")
        for business in businesses:
            channel = batch.get(business.business_uid)
            if channel is not None:
                self._handle_business(business.business_uid, channel)

    def _handle_business(self, business_id: str, channel: TransactionsChannel) -> None:
        log.info(
            "handle business %s up to block %d with %d transactions",
            business_id,
            channel.block_height,
            len(channel.transactions),
        )
        flows: list[dict[str, Any]] = []
        deposits: list[TxRecord] = []
        withdraws: list[TxRecord] = []
        internals: list[TxRecord] = []
        balances: list[dict[str, Any]] = []

        for tx in channel.transactions:
            tx_msg = self.rpc_client.get_transaction_by_hash(tx.hash)
            if tx_msg is None:
                raise ChainAccountError(f"GetTransactionByHash txItem is nil: TxHash = {tx.hash}")
            balances.append(
                {
                    "from_address": _hex_to_fixed(tx.from_address, 20),
                    "to_address": _hex_to_fixed(str(_first(tx_msg, "tos").get("address", "")), 20),
                    "token_address": _hex_to_fixed(str(tx_msg.get("contract_address", "")), 20),
                    "balance": _amount(tx_msg),
                    "tx_type": tx.tx_type,
                }
            )
            flows.append(self.build_transaction(tx, tx_msg))
            if tx.tx_type is TransactionType.DEPOSIT:
                deposits.append(self.build_record(tx, tx_msg))
            elif tx.tx_type is TransactionType.WITHDRAW:
                withdraws.append(self.build_record(tx, tx_msg))
            elif tx.tx_type in _INTERNAL_TYPES:
                internals.append(self.build_record(tx, tx_msg))

        for attempt in self._retrying():
            with attempt:
                try:
                    with self.database.transaction() as store:
                        if deposits:
                            store.deposits.store_deposits(business_id, deposits)
                        store.deposits.update_deposits_confirms(
                            business_id, channel.block_height, self.confirms
                        )
                        if balances:
                            store.balances.update_or_create(business_id, balances)
                        if withdraws:
                            store.withdraws.update_status_by_tx_hash(
                                business_id, TxStatus.WALLET_DONE, withdraws
                            )
                        if internals:
                            store.internals.update_status_by_tx_hash(
                                business_id, TxStatus.WALLET_DONE, internals
                            )
                        if flows:
                            store.transactions.store_transactions(business_id, flows, len(flows))
                except Exception as exc:
                    log.error("unable to persist batch: %s", exc)
                    raise

    def _retrying(self) -> tenacity.Retrying:
        low, high, jitter = self._backoff
        return tenacity.Retrying(
            stop=tenacity.stop_after_attempt(RETRY_ATTEMPTS)
            | tenacity.stop_when_event_set(self._resource_stop),
            wait=tenacity.wait_exponential(multiplier=low, min=low, max=high)
            + tenacity.wait_random(0, jitter),
            reraise=True,
        )