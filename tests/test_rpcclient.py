import pytest

from chainsync.models import BlockHeader
from chainsync.rpcclient import ChainAccountError, ReturnCode, WalletChainAccountClient

FULL_HASH = "0x21f43c1eb3970e4d9c1ded367b440131af56dc09fedaadb8a2d8475a53d52741"
PARENT_HASH = "0x967f6cf1a29562cfafb9a8cbd7cd3aa3e191a92922eaf1c2588fa418feab0c01"


class FakeAccountService:
    def __init__(self, **replies):
        self.replies = replies
        self.requests = []

    def _reply(self, name, request):
        self.requests.append((name, request))
        reply = self.replies[name]
        if isinstance(reply, Exception):
            raise reply
        return reply

    def convert_address(self, request):
        return self._reply("convert_address", request)

    def get_block_header_by_number(self, request):
        return self._reply("get_block_header_by_number", request)

    def get_block_by_number(self, request):
        return self._reply("get_block_by_number", request)

    def get_tx_by_hash(self, request):
        return self._reply("get_tx_by_hash", request)

    def get_account(self, request):
        return self._reply("get_account", request)

    def send_tx(self, request):
        return self._reply("send_tx", request)


def make_client(**replies):
    service = FakeAccountService(**replies)
    return WalletChainAccountClient(service, "Ethereum"), service


def test_export_address_returns_address_and_sends_request():
    address = "0xD79053a14BC465d9C1434d4A4fAbdeA7b6a2A94b"
    client, service = make_client(convert_address={"code": ReturnCode.SUCCESS, "address": address})
    assert client.export_address_by_pub_key("", "04abcd") == address
    assert service.requests == [
        ("convert_address", {"chain": "Ethereum", "type": "", "public_key": "04abcd"})
    ]


def test_export_address_error_code_gives_empty_string():
    client, _ = make_client(convert_address={"code": ReturnCode.ERROR, "msg": "bad key"})
    assert client.export_address_by_pub_key("", "04abcd") == ""


def test_export_address_rpc_failure_gives_empty_string():
    client, _ = make_client(convert_address=ConnectionError("down"))
    assert client.export_address_by_pub_key("", "04abcd") == ""


def _header_reply(number="2880690", block_hash=FULL_HASH):
    return {
        "code": ReturnCode.SUCCESS,
        "block_header": {
            "hash": block_hash,
            "parent_hash": PARENT_HASH,
            "number": number,
            "time": 1700000000,
        },
    }


def test_get_latest_block_header_uses_height_zero():
    client, service = make_client(get_block_header_by_number=_header_reply())
    header = client.get_block_header(None)
    assert header == BlockHeader(
        hash=FULL_HASH, parent_hash=PARENT_HASH, number=2880690, timestamp=1700000000
    )
    assert service.requests[0][1] == {"chain": "Ethereum", "network": "mainnet", "height": 0}


def test_get_block_header_passes_height():
    client, service = make_client(get_block_header_by_number=_header_reply())
    client.get_block_header(2849348)
    assert service.requests[0][1]["height"] == 2849348


def test_get_block_header_pads_short_hash():
    client, _ = make_client(get_block_header_by_number=_header_reply(block_hash="0xab"))
    assert client.get_block_header(1).hash == "0x" + "0" * 62 + "ab"


def test_get_block_header_normalises_case():
    client, _ = make_client(get_block_header_by_number=_header_reply(block_hash=FULL_HASH.upper()[2:]))
    assert client.get_block_header(1).hash == FULL_HASH


def test_get_block_header_error_code_raises():
    client, _ = make_client(get_block_header_by_number={"code": ReturnCode.ERROR, "msg": "no"})
    with pytest.raises(ChainAccountError):
        client.get_block_header(None)


def test_get_block_header_bad_number_raises():
    client, _ = make_client(get_block_header_by_number=_header_reply(number="12x"))
    with pytest.raises(ChainAccountError):
        client.get_block_header(None)


def test_get_block_info_returns_transactions():
    txs = [{"from": "0x1", "to": "0x2", "hash": FULL_HASH}]
    client, service = make_client(get_block_by_number={"code": ReturnCode.SUCCESS, "transactions": txs})
    assert client.get_block_info(2880690) == txs
    assert service.requests[0][1] == {"chain": "Ethereum", "height": 2880690, "view_tx": True}


def test_get_block_info_error_raises():
    client, _ = make_client(get_block_by_number={"code": ReturnCode.ERROR})
    with pytest.raises(ChainAccountError):
        client.get_block_info(1)


def test_get_transaction_by_hash():
    tx = {"hash": FULL_HASH, "fee": "21000"}
    client, service = make_client(get_tx_by_hash={"code": ReturnCode.SUCCESS, "tx": tx})
    assert client.get_transaction_by_hash(FULL_HASH) == tx
    assert service.requests[0][1]["hash"] == FULL_HASH


def test_get_transaction_by_hash_error_raises():
    client, _ = make_client(get_tx_by_hash={"code": ReturnCode.ERROR})
    with pytest.raises(ChainAccountError):
        client.get_transaction_by_hash(FULL_HASH)


def test_get_account_number():
    client, _ = make_client(get_account={"code": ReturnCode.SUCCESS, "account_number": "42"})
    assert client.get_account_number("0x1") == 42


def test_get_account_number_invalid_raises():
    client, _ = make_client(get_account={"code": ReturnCode.SUCCESS, "account_number": "4 2"})
    with pytest.raises(ChainAccountError):
        client.get_account_number("0x1")


def test_get_account_returns_three_values():
    reply = {"code": ReturnCode.SUCCESS, "account_number": "7", "sequence": "3", "balance": "1000"}
    client, service = make_client(get_account=reply)
    assert client.get_account("0x1") == (7, 3, 1000)
    assert service.requests[0][1]["contract_address"] == "0x00"


@pytest.mark.parametrize(
    "reply",
    [
        {"code": ReturnCode.ERROR, "msg": "no"},
        {"code": ReturnCode.SUCCESS, "account_number": "7", "sequence": "3", "balance": "1.5"},
        ConnectionError("down"),
    ],
)
def test_get_account_failures_give_zeroes(reply):
    client, _ = make_client(get_account=reply)
    assert client.get_account("0x1") == (0, 0, 0)


def test_send_tx_returns_hash():
    client, service = make_client(send_tx={"code": ReturnCode.SUCCESS, "tx_hash": FULL_HASH})
    assert client.send_tx("0xf86c") == FULL_HASH
    assert service.requests[0][1] == {"chain": "Ethereum", "network": "mainnet", "raw_tx": "0xf86c"}


def test_send_tx_error_code_raises():
    client, _ = make_client(send_tx={"code": ReturnCode.ERROR, "msg": "nonce too low"})
    with pytest.raises(ChainAccountError):
        client.send_tx("0xf86c")


def test_send_tx_rpc_failure_propagates():
    client, _ = make_client(send_tx=ConnectionError("down"))
    with pytest.raises(ConnectionError):
        client.send_tx("0xf86c")