"""Turns confirmed blocks into per-business batches of relevant transfers."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from chainsync.batch_block import BatchBlock
from chainsync.models import AddressType, BlockHeader, TransactionType

log = logging.getLogger(__name__)

CHANNEL_CLOSED = object()
"""Placed on the business channel once the producer loop has shut down."""


def _to_address(value: str) -> str:
    text = value[2:] if value[:2] in ("0x", "0X") else value
    if len(text) % 2:
        text = "0" + text
    try:
        raw = bytes.fromhex(text)
    except ValueError:
        raw = b""
    return "0x" + raw[-20:].rjust(20, b"\0").hex()


@dataclass
class Transaction:
    """A transfer in a block that touches an address owned by a business."""

    business_id: str
    block_number: int
    from_address: str
    to_address: str
    hash: str
    token_address: str = ""
    contract_wallet: str = ""
    tx_type: TransactionType = TransactionType.UNKNOWN


@dataclass
class TransactionsChannel:
    """The transfers found for one business, up to ``block_height``."""

    block_height: int
    channel_id: str = ""
    transactions: list[Transaction] = field(default_factory=list)


def classify_transaction(
    from_exists: bool,
    from_type: AddressType | None,
    to_exists: bool,
    to_type: AddressType | None,
) -> TransactionType:
    """Name a transfer by the roles of its two ends.

    External to user is a deposit, hot to external a withdrawal, user to hot a
    collection, and hot/cold transfers in either direction are named for
    their direction. Anything else is unknown.
    """
    from_hot = from_exists and from_type == AddressType.HOT
    from_eoa = from_exists and from_type == AddressType.EOA
    from_cold = from_exists and from_type == AddressType.COLD
    to_hot = to_exists and to_type == AddressType.HOT
    to_eoa = to_exists and to_type == AddressType.EOA
    to_cold = to_exists and to_type == AddressType.COLD

    if not from_exists and to_eoa:
        return TransactionType.DEPOSIT
    if from_hot and not to_exists:
        return TransactionType.WITHDRAW
    if from_eoa and to_hot:
        return TransactionType.COLLECTION
    if from_hot and to_cold:
        return TransactionType.HOT2COLD
    if from_cold and to_hot:
        return TransactionType.COLD2HOT
    return TransactionType.UNKNOWN


class BaseSynchronizer:
    """Periodically pulls confirmed headers and publishes the relevant transfers.

    Batches go onto ``business_channels`` as mappings from business id to
    :class:`TransactionsChannel`; :data:`CHANNEL_CLOSED` follows the last one.
    ``database`` offers ``business.query_business_list()``,
    ``addresses.address_exist(business_id, address)`` and
    ``blocks.store_blocks(headers)``.
    """

    def __init__(
        self,
        rpc_client: Any,
        block_batch: BatchBlock,
        database: Any,
        *,
        loop_interval: float,
        header_buffer_size: int,
        business_channels: queue.Queue | None = None,
    ) -> None:
        self.rpc_client = rpc_client
        self.block_batch = block_batch
        self.database = database
        self.loop_interval = loop_interval
        self.header_buffer_size = header_buffer_size
        self.business_channels: queue.Queue = business_channels or queue.Queue()
        self._headers: list[BlockHeader] = []
        self._loop_stop = threading.Event()
        self._loop_thread: threading.Thread | None = None

    @property
    def pending_headers(self) -> tuple[BlockHeader, ...]:
        """Headers fetched but not yet processed successfully."""
        return tuple(self._headers)

    def start(self) -> None:
        """Start ticking in the background."""
        if self._loop_thread is not None:
            raise RuntimeError("already started")
        self._loop_thread = threading.Thread(target=self._loop, name="synchronizer", daemon=True)
        self._loop_thread.start()

    def close(self) -> None:
        """Stop ticking and wait for the loop to finish."""
        if self._loop_thread is None:
            return
        self._loop_stop.set()
        self._loop_thread.join()

    def _loop(self) -> None:
        try:
            while not self._loop_stop.wait(self.loop_interval):
                self.tick()
        finally:
            log.info("shutting down batch producer")
            self.business_channels.put(CHANNEL_CLOSED)

    def tick(self) -> None:
        """Process the pending batch, fetching a new one when none is pending."""
        if self._headers:
            log.info("retrying previous batch")
        else:
            try:
                new_headers = self.block_batch.next_headers(self.header_buffer_size)
            except Exception as exc:
                log.error("error querying for headers: %s", exc)
            else:
                if not new_headers:
                    log.warning("no new headers. syncer at head?")
                else:
                    self._headers = list(new_headers)
        try:
            self.process_batch(self._headers)
        except Exception as exc:
            log.error("process batch failed: %s", exc)
        else:
            self._headers = []

    def process_batch(self, headers: Sequence[BlockHeader]) -> None:
        """Store ``headers`` and publish the transfers in them that businesses care about."""
        if not headers:
            return
        channels: dict[str, TransactionsChannel] = {}
        blocks: list[BlockHeader] = []
        for header in headers:
            log.info("sync block data at height %d", header.number)
            blocks.append(header)
            tx_list: list[Mapping[str, Any]] = self.rpc_client.get_block_info(header.number)
            businesses = self.database.business.query_business_list()
            for business in businesses:
                uid = business.business_uid
                found = [
                    item
                    for item in (self._match(uid, header, tx) for tx in tx_list)
                    if item is not None
                ]
                if not found:
                    continue
                channel = channels.get(uid)
                if channel is None:
                    channels[uid] = TransactionsChannel(block_height=header.number, transactions=found)
                else:
                    channel.block_height = header.number
                    channel.transactions.extend(found)

        log.info("store %d block headers", len(blocks))
        self.database.blocks.store_blocks(blocks)
        if channels:
            self.business_channels.put(channels)

    def _match(self, business_id: str, header: BlockHeader, tx: Mapping[str, Any]) -> Transaction | None:
        to_raw = str(tx.get("to", ""))
        from_raw = str(tx.get("from", ""))
        addresses = self.database.addresses
        to_exists, to_type = addresses.address_exist(business_id, _to_address(to_raw))
        from_exists, from_type = addresses.address_exist(business_id, _to_address(from_raw))
        if not to_exists and not from_exists:
            return None
        tx_type = classify_transaction(from_exists, from_type, to_exists, to_type)
        log.info("found %s transaction %s", tx_type.value, tx.get("hash", ""))
        return Transaction(
            business_id=business_id,
            block_number=header.number,
            from_address=from_raw,
            to_address=to_raw,
            hash=str(tx.get("hash", "")),
            token_address=str(tx.get("token_address", "")),
            contract_wallet=str(tx.get("contract_wallet", "")),
            tx_type=tx_type,
        )