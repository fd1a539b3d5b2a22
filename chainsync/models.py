"""Records shared by the chain client, the workers and the notification path."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum

ZERO_HASH = "0x" + "00" * 32
ZERO_ADDRESS = "0x" + "00" * 20


class TransactionType(str, Enum):
    """Business meaning of a transfer seen on chain."""

    UNKNOWN = "unknow"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    COLLECTION = "collection"
    HOT2COLD = "hot2cold"
    COLD2HOT = "cold2hot"


class TxStatus(str, Enum):
    """Lifecycle state of a stored transaction."""

    CREATE_UNSIGNED = "create_unsigned"
    SIGNED = "signed"
    BROADCASTED = "broadcasted"
    WALLET_DONE = "wallet_done"
    NOTIFIED = "notified"
    SUCCESS = "success"


class AddressType(str, Enum):
    """Role of a wallet address owned by a business."""

    EOA = "eoa"
    HOT = "hot"
    COLD = "cold"


class TokenType(str, Enum):
    """Kind of asset a transaction moves."""

    ETH = "eth"
    ERC20 = "erc20"
    ERC721 = "erc721"
    ERC1155 = "erc1155"


def parse_transaction_type(value: str) -> TransactionType:
    """Return the transaction type named by ``value``; raise ValueError otherwise."""
    try:
        return TransactionType(value)
    except ValueError:
        raise ValueError(f"unknown transaction type: {value!r}") from None


def parse_address_type(value: str) -> AddressType:
    """Return the address type named by ``value``; raise ValueError otherwise."""
    try:
        return AddressType(value)
    except ValueError:
        raise ValueError(f"unknown address type: {value!r}") from None


@dataclass(frozen=True)
class BlockHeader:
    """Header fields of one block as reported by the chain account service."""

    hash: str
    parent_hash: str
    number: int
    timestamp: int = 0


@dataclass
class TxRecord:
    """A stored deposit, withdrawal or internal transfer."""

    guid: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: int = 0
    status: TxStatus = TxStatus.CREATE_UNSIGNED
    confirms: int = 0
    block_hash: str = ZERO_HASH
    block_number: int = 0
    tx_hash: str = ZERO_HASH
    tx_type: TransactionType = TransactionType.UNKNOWN
    from_address: str = ZERO_ADDRESS
    to_address: str = ZERO_ADDRESS
    amount: int = 0
    gas_limit: int = 0
    max_fee_per_gas: str = ""
    max_priority_fee_per_gas: str = ""
    token_type: TokenType = TokenType.ETH
    token_address: str = ZERO_ADDRESS
    token_id: str = ""
    token_meta: str = ""
    tx_sign_hex: str = ""


def _dumps(payload: object) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


@dataclass
class NotifyTransaction:
    """One transaction as sent to a business callback."""

    block_hash: str
    block_number: int
    hash: str
    from_address: str
    to_address: str
    value: str
    fee: str
    tx_type: TransactionType
    confirms: int
    token_address: str
    token_id: str
    token_meta: str

    def _as_dict(self) -> dict:
        data = asdict(self)
        data["tx_type"] = TransactionType(self.tx_type).value
        return data


@dataclass
class NotifyRequest:
    """Body of a business notification."""

    txn: list[NotifyTransaction] = field(default_factory=list)

    def to_json(self) -> str:
        """Serialise compactly; an empty batch is sent as ``null``."""
        items = [tx._as_dict() for tx in self.txn] if self.txn else None
        return _dumps({"txn": items})


@dataclass
class Eip1559DynamicFeeTx:
    """Parameters of a dynamic-fee transfer handed to the signing service."""

    chain_id: str
    nonce: int
    from_address: str
    to_address: str
    gas_limit: int
    max_fee_per_gas: str
    max_priority_fee_per_gas: str
    amount: str
    contract_address: str

    def to_json(self) -> str:
        """Serialise compactly with the wire field names."""
        return _dumps(asdict(self))