import threading
import time
from contextlib import contextmanager
from types import SimpleNamespace

import pytest

from chainsync.models import BlockHeader, TxRecord, TxStatus
from chainsync.multichainsync import MultiChainSync

NO_BACKOFF = (0.0, 0.0, 0.0)
BUSINESS_ID = "1"


def _header(number):
    return BlockHeader(hash="0x" + "00" * 32, parent_hash="0x" + "00" * 32, number=number)


class FakeBlocks:
    def __init__(self, latest):
        self.latest = latest
        self.stored = []

    def latest_blocks(self):
        return self.latest

    def store_blocks(self, headers):
        self.stored.extend(headers)


class FakeTable:
    def __init__(self, pending=None):
        self.pending = pending or {}
        self.updated = []

    def _unsent(self, business_id):
        return self.pending.get(business_id, [])

    def _update(self, business_id, records):
        self.updated.append((business_id, list(records)))

    un_send_withdraws_list = _unsent
    un_send_internals_list = _unsent
    update_withdraw_list_by_id = _update
    update_internal_list_by_id = _update


class FakeBalances:
    def update_balance_list_by_two_address(self, business_id, balances):
        pass


class FakeDB:
    def __init__(self, latest=None, business_ids=(), withdraws=None, fail_transaction=None):
        self.blocks = FakeBlocks(latest)
        self.business = SimpleNamespace(
            query_business_list=lambda: [SimpleNamespace(business_uid=uid) for uid in business_ids]
        )
        self.withdraws = withdraws or FakeTable()
        self.internals = FakeTable()
        self.balances = FakeBalances()
        self.fail_transaction = fail_transaction

    @contextmanager
    def transaction(self):
        if self.fail_transaction is not None:
            raise self.fail_transaction
        yield self


class FakeRpc:
    def __init__(self, head):
        self.head = head
        self.requested = []

    def get_block_header(self, number):
        self.requested.append(number)
        return _header(self.head if number is None else number)

    def get_block_info(self, number):
        return []

    def send_tx(self, raw_tx):
        return "0x" + "cd" * 32


def _make(db, rpc, shutdown=None, starting_height=0):
    return MultiChainSync(
        db,
        rpc,
        shutdown,
        confirmations=0,
        blocks_step=1,
        synchronizer_interval=0.01,
        worker_interval=0.01,
        starting_height=starting_height,
        backoff=NO_BACKOFF,
    )


def test_start_and_stop_round_trip():
    stored = _header(100)
    mcs = _make(FakeDB(latest=stored), FakeRpc(head=100))
    assert mcs.stopped() is False

    mcs.start()
    time.sleep(0.05)
    mcs.stop()

    assert mcs.stopped() is True
    assert mcs.deposit.block_batch.last_traversed_header == stored


def test_stored_block_takes_precedence_over_starting_height():
    stored = _header(100)
    rpc = FakeRpc(head=100)
    mcs = _make(FakeDB(latest=stored), rpc, starting_height=90)
    assert mcs.deposit.block_batch.last_traversed_header == stored
    assert rpc.requested == []


def test_starting_height_used_without_stored_blocks():
    rpc = FakeRpc(head=100)
    mcs = _make(FakeDB(latest=None), rpc, starting_height=90)
    assert mcs.deposit.block_batch.last_traversed_header.number == 90
    assert rpc.requested == [90]


def test_latest_header_used_without_starting_height():
    rpc = FakeRpc(head=100)
    mcs = _make(FakeDB(latest=None), rpc)
    assert mcs.deposit.block_batch.last_traversed_header.number == 100
    assert rpc.requested == [None]


def test_second_start_is_rejected():
    mcs = _make(FakeDB(latest=_header(100)), FakeRpc(head=100))
    mcs.start()
    try:
        with pytest.raises(RuntimeError):
            mcs.start()
    finally:
        mcs.stop()
    assert mcs.stopped() is True


def test_worker_failure_surfaces_on_stop():
    record = TxRecord(tx_sign_hex="0xsigned", status=TxStatus.SIGNED)
    db = FakeDB(
        latest=_header(100),
        business_ids=[BUSINESS_ID],
        withdraws=FakeTable({BUSINESS_ID: [record]}),
        fail_transaction=RuntimeError("db down"),
    )
    causes = []
    called = threading.Event()

    def shutdown(cause):
        causes.append(cause)
        called.set()

    mcs = _make(db, FakeRpc(head=100), shutdown)
    mcs.start()
    try:
        assert called.wait(5.0)
        with pytest.raises(RuntimeError, match="failed to await withdraw"):
            mcs.stop()
    finally:
        mcs.internal.close()
    assert mcs.stopped() is False
    assert any("critical error in withdraw" in str(cause) for cause in causes)