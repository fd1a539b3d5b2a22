import json

import pytest

from chainsync.models import (
    AddressType,
    BlockHeader,
    Eip1559DynamicFeeTx,
    NotifyRequest,
    NotifyTransaction,
    TransactionType,
    TxRecord,
    TxStatus,
    parse_address_type,
    parse_transaction_type,
)


@pytest.mark.parametrize("name", ["deposit", "withdraw", "collection", "hot2cold", "cold2hot"])
def test_parse_transaction_type_known(name):
    assert parse_transaction_type(name).value == name


def test_parse_transaction_type_unknown_raises():
    with pytest.raises(ValueError):
        parse_transaction_type("teleport")


@pytest.mark.parametrize("name", ["eoa", "hot", "cold"])
def test_parse_address_type_known(name):
    assert parse_address_type(name) == AddressType(name)


def test_parse_address_type_unknown_raises():
    with pytest.raises(ValueError):
        parse_address_type("warm")


def _notify_tx():
    return NotifyTransaction(
        block_hash="0xaa",
        block_number=2880690,
        hash="0x21f43c1eb3970e4d9c1ded367b440131af56dc09fedaadb8a2d8475a53d52741",
        from_address="0xDf894d39f6b33763bf55582Bb7A8b5515bccD982",
        to_address="0xDBbd037428E2ae9D540F09253b2EcCc6F60079a8",
        value="1000000000000000",
        fee="21000",
        tx_type=TransactionType.WITHDRAW,
        confirms=0,
        token_address="0x00",
        token_id="0x00",
        token_meta="0x00",
    )


def test_notify_request_field_names_and_order():
    body = json.loads(NotifyRequest(txn=[_notify_tx()]).to_json())
    assert list(body) == ["txn"]
    assert list(body["txn"][0]) == [
        "block_hash",
        "block_number",
        "hash",
        "from_address",
        "to_address",
        "value",
        "fee",
        "tx_type",
        "confirms",
        "token_address",
        "token_id",
        "token_meta",
    ]


def test_notify_request_values_round_trip():
    tx = _notify_tx()
    item = json.loads(NotifyRequest(txn=[tx]).to_json())["txn"][0]
    assert item["tx_type"] == "withdraw"
    assert item["block_number"] == tx.block_number
    assert item["value"] == tx.value
    assert item["hash"] == tx.hash


def test_notify_request_is_compact():
    text = NotifyRequest(txn=[_notify_tx()]).to_json()
    assert ": " not in text and ", " not in text


def test_empty_notify_request_sends_null():
    assert json.loads(NotifyRequest().to_json()) == {"txn": None}


def test_dynamic_fee_tx_round_trip():
    tx = Eip1559DynamicFeeTx(
        chain_id="17000",
        nonce=3,
        from_address="0xD79053a14BC465d9C1434d4A4fAbdeA7b6a2A94b",
        to_address="0xDf894d39f6b33763bf55582Bb7A8b5515bccD982",
        gas_limit=60000,
        max_fee_per_gas="200",
        max_priority_fee_per_gas="50",
        amount="10000000000000000",
        contract_address="0x00",
    )
    decoded = json.loads(tx.to_json())
    assert Eip1559DynamicFeeTx(**decoded) == tx
    assert list(decoded)[0] == "chain_id"


def test_tx_record_defaults_are_unsigned_and_unique():
    first, second = TxRecord(), TxRecord()
    assert first.status is TxStatus.CREATE_UNSIGNED
    assert first.tx_type is TransactionType.UNKNOWN
    assert first.guid != second.guid and len(first.guid) == 36


def test_block_header_is_immutable():
    header = BlockHeader(hash="0x1", parent_hash="0x0", number=1, timestamp=2)
    with pytest.raises(AttributeError):
        header.number = 5
    assert header.number == 1