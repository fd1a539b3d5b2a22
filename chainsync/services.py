"""Business-facing operations: registration, address export and transaction building."""

from __future__ import annotations

import base64
import logging
import re
import time
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from chainsync.fees import FeeInfo, determine_token_type, gas_and_contract_info, parse_fast_fee
from chainsync.models import (
    ZERO_ADDRESS,
    Eip1559DynamicFeeTx,
    TransactionType,
    TxRecord,
    TxStatus,
    parse_address_type,
    parse_transaction_type,
)
from chainsync.rpcclient import ReturnCode, WalletChainAccountClient

log = logging.getLogger(__name__)

CHAIN_NAME = "Ethereum"
NETWORK = "mainnet"
NATIVE_CONTRACT = "0x00"
MAX_RECV_MESSAGE_SIZE = 1024 * 1024 * 300
UNSUPPORTED_TX = "0x00"

_DECIMAL = re.compile(r"[+-]?[0-9]+")
_INTERNAL_TYPES = frozenset(
    {TransactionType.COLLECTION, TransactionType.HOT2COLD, TransactionType.COLD2HOT}
)


class ServiceError(Exception):
    """A request could not be carried out."""


@dataclass(frozen=True)
class PublicKeyEntry:
    """A public key and the role its address will play."""

    type: str
    public_key: str


@dataclass(frozen=True)
class TokenEntry:
    """A token a business wants tracked, with its collection thresholds."""

    address: str
    decimals: int
    token_name: str
    collect_amount: str
    cold_amount: str


@dataclass
class UnsignedTransactionRequest:
    """Parameters of a transfer to prepare for signing."""

    request_id: str
    chain_id: str
    from_address: str
    to_address: str
    value: str
    tx_type: str
    contract_address: str = NATIVE_CONTRACT
    token_id: str = ""
    token_meta: str = ""
    chain: str = ""


@dataclass
class SignedTransactionRequest:
    """A signature to combine with a previously prepared transfer."""

    request_id: str
    chain_id: str
    transaction_id: str
    signature: str
    tx_type: str
    chain: str = ""


@dataclass
class ServiceResponse:
    """Outcome of a service call."""

    code: ReturnCode
    msg: str = ""
    addresses: list[dict[str, str]] = field(default_factory=list)
    transaction_id: str = ""
    unsigned_tx: str = ""
    signed_tx: str = ""


def validate_request(request: UnsignedTransactionRequest | None) -> None:
    """Raise ValueError when a required field of ``request`` is missing."""
    if request is None:
        raise ValueError("request cannot be nil")
    if not request.from_address:
        raise ValueError("from address cannot be empty")
    if not request.to_address:
        raise ValueError("to address cannot be empty")
    if not request.value:
        raise ValueError("value cannot be empty")


def _to_address(value: str) -> str:
    text = value[2:] if value[:2] in ("0x", "0X") else value
    if len(text) % 2:
        text = "0" + text
    try:
        raw = bytes.fromhex(text)
    except ValueError:
        raw = b""
    return "0x" + raw[-20:].rjust(20, b"\0").hex()


def _decimal_or_none(text: str) -> int | None:
    return int(text) if _DECIMAL.fullmatch(text or "") else None


def _now() -> int:
    return int(time.time())


def _encode(tx: Eip1559DynamicFeeTx) -> str:
    return base64.b64encode(tx.to_json().encode("utf-8")).decode("ascii")


class BusinessMiddlewareService:
    """Serves business requests against the store and the chain account service.

    ``db`` offers the ``business``, ``addresses``, ``balances``, ``tokens``,
    ``deposits``, ``withdraws`` and ``internals`` tables and
    ``create_business_tables(request_id)``.
    """

    def __init__(
        self,
        db: Any,
        account_client: WalletChainAccountClient,
        *,
        grpc_hostname: str = "",
        grpc_port: int = 0,
    ) -> None:
        self.db = db
        self.account_client = account_client
        self.grpc_hostname = grpc_hostname
        self.grpc_port = grpc_port
        self._stopped = False

    @property
    def _rpc(self) -> Any:
        return self.account_client.rpc

    def stop(self) -> None:
        """Mark the service as stopped."""
        self._stopped = True

    def stopped(self) -> bool:
        """Whether :meth:`stop` has been called."""
        return self._stopped

    def business_register(self, request_id: str, notify_url: str) -> ServiceResponse:
        """Register a business and create its tables."""
        if not request_id or not notify_url:
            return ServiceResponse(ReturnCode.ERROR, "invalid params")
        business = {
            "guid": str(uuid.uuid4()),
            "business_uid": request_id,
            "notify_url": notify_url,
            "timestamp": _now(),
        }
        try:
            self.db.business.store_business(business)
        except Exception as exc:
            log.error("store business failed: %s", exc)
            return ServiceResponse(ReturnCode.ERROR, "store db fail")
        self.db.create_business_tables(request_id)
        return ServiceResponse(ReturnCode.SUCCESS, "config business success")

    def export_addresses_by_public_keys(
        self, request_id: str, public_keys: Iterable[PublicKeyEntry]
    ) -> ServiceResponse:
        """Derive, store and return the address of each public key with its opening balance.

        Raises ValueError for an unknown address type.
        """
        exported: list[dict[str, str]] = []
        address_rows: list[dict[str, Any]] = []
        balance_rows: list[dict[str, Any]] = []
        for entry in public_keys:
            address = self.account_client.export_address_by_pub_key("", entry.public_key)
            address_type = parse_address_type(entry.type)
            _, _, balance = self.account_client.get_account(address)
            timestamp = _now()
            address_rows.append(
                {
                    "guid": str(uuid.uuid4()),
                    "address": _to_address(address),
                    "address_type": address_type,
                    "public_key": entry.public_key,
                    "timestamp": timestamp,
                }
            )
            balance_rows.append(
                {
                    "guid": str(uuid.uuid4()),
                    "address": _to_address(address),
                    "token_address": ZERO_ADDRESS,
                    "address_type": address_type,
                    "balance": balance,
                    "lock_balance": 0,
                    "timestamp": timestamp,
                }
            )
            exported.append({"type": entry.type, "address": address})

        try:
            self.db.addresses.store_addresses(request_id, address_rows)
        except Exception as exc:
            log.error("store addresses failed: %s", exc)
            return ServiceResponse(ReturnCode.ERROR, "store address to db fail")
        try:
            self.db.balances.store_balances(request_id, balance_rows)
        except Exception as exc:
            log.error("store balances failed: %s", exc)
            return ServiceResponse(ReturnCode.ERROR, "store balance to db fail")
        return ServiceResponse(ReturnCode.SUCCESS, "generate address success", addresses=exported)

    def _account_nonce(self, address: str) -> int:
        request = {
            "chain": CHAIN_NAME,
            "network": NETWORK,
            "address": address,
            "contract_address": NATIVE_CONTRACT,
        }
        try:
            response = self._rpc.get_account(request)
        except Exception as exc:
            raise ServiceError(f"get account nonce failed: get account info failed: {exc}") from exc
        sequence = str(response.get("sequence", ""))
        if not _DECIMAL.fullmatch(sequence):
            raise ServiceError(f"get account nonce failed: invalid sequence {sequence!r}")
        return int(sequence)

    def _fee_info(self, address: str) -> FeeInfo:
        request = {"chain": CHAIN_NAME, "network": NETWORK, "raw_tx": "", "address": address}
        try:
            response = self._rpc.get_fee(request)
            return parse_fast_fee(str(response.get("fast_fee", "")))
        except Exception as exc:
            raise ServiceError(f"get fee info failed: {exc}") from exc

    def _store_unsigned(
        self,
        request: UnsignedTransactionRequest,
        record: TxRecord,
        tx_type: TransactionType,
    ) -> bool:
        try:
            if tx_type is TransactionType.DEPOSIT:
                self.db.deposits.store_deposits(request.request_id, [record])
            elif tx_type is TransactionType.WITHDRAW:
                self.db.withdraws.store_withdraw(request.request_id, record)
            elif tx_type in _INTERNAL_TYPES:
                self.db.internals.store_internal(request.request_id, record)
            else:
                return False
        except Exception as exc:
            kind = {TransactionType.DEPOSIT: "deposit", TransactionType.WITHDRAW: "withdraw"}
            raise ServiceError(f"store {kind.get(tx_type, 'internal')} failed: {exc}") from exc
        return True

    def create_unsigned_transaction(self, request: UnsignedTransactionRequest) -> ServiceResponse:
        """Record a new transfer and have the chain service build its unsigned form."""
        response = ServiceResponse(ReturnCode.ERROR, unsigned_tx=UNSUPPORTED_TX)
        try:
            validate_request(request)
        except ValueError as exc:
            raise ServiceError(f"invalid request: {exc}") from exc
        try:
            tx_type = parse_transaction_type(request.tx_type)
        except ValueError as exc:
            raise ServiceError(f"invalid request TxType: {exc}") from exc
        if not _DECIMAL.fullmatch(request.value):
            raise ServiceError(f"invalid amount value: {request.value}")
        amount = int(request.value)
        guid = str(uuid.uuid4())

        nonce = self._account_nonce(request.from_address)
        fee = self._fee_info(request.from_address)
        gas_limit, contract_address = gas_and_contract_info(request.contract_address)

        record = TxRecord(
            guid=guid,
            timestamp=_now(),
            status=TxStatus.CREATE_UNSIGNED,
            confirms=0,
            block_number=1,
            tx_type=tx_type,
            from_address=_to_address(request.from_address),
            to_address=_to_address(request.to_address),
            amount=amount,
            gas_limit=gas_limit,
            max_fee_per_gas=str(fee.max_priority_fee),
            max_priority_fee_per_gas=str(fee.multiplied_tip),
            token_type=determine_token_type(request.contract_address),
            token_address=_to_address(request.contract_address),
            token_id=request.token_id,
            token_meta=request.token_meta,
            tx_sign_hex="",
        )
        if not self._store_unsigned(request, record, tx_type):
            response.msg = "Unsupported transaction type"
            return response

        dynamic_fee_tx = Eip1559DynamicFeeTx(
            chain_id=request.chain_id,
            nonce=nonce,
            from_address=request.from_address,
            to_address=request.to_address,
            gas_limit=gas_limit,
            max_fee_per_gas=str(fee.max_priority_fee),
            max_priority_fee_per_gas=str(fee.multiplied_tip),
            amount=request.value,
            contract_address=contract_address,
        )
        log.info("create unsigned transaction %s", dynamic_fee_tx.to_json())
        unsigned_request = {"chain": CHAIN_NAME, "network": NETWORK, "base64_tx": _encode(dynamic_fee_tx)}
        try:
            returned = self._rpc.create_unsign_transaction(unsigned_request)
        except Exception as exc:
            log.error("create unsigned transaction failed: %s", exc)
            raise ServiceError(f"create unsigned transaction failed: {exc}") from exc

        response.code = ReturnCode.SUCCESS
        response.msg = "submit withdraw and build un sign tranaction success"
        response.transaction_id = guid
        response.unsigned_tx = str(returned.get("un_sign_tx", ""))
        return response

    def _query_record(self, request: SignedTransactionRequest, tx_type: TransactionType) -> TxRecord | None:
        if tx_type is TransactionType.DEPOSIT:
            table, query, kind = self.db.deposits, "query_deposits_by_id", "deposit"
        elif tx_type is TransactionType.WITHDRAW:
            table, query, kind = self.db.withdraws, "query_withdraws_by_id", "withdraw"
        else:
            table, query, kind = self.db.internals, "query_internals_by_id", "internal"
        try:
            return getattr(table, query)(request.request_id, request.transaction_id)
        except Exception as exc:
            raise ServiceError(f"query {kind} failed: {exc}") from exc

    def _update_signed(self, request: SignedTransactionRequest, tx_type: TransactionType, signed_tx: str) -> None:
        args = (request.request_id, request.transaction_id, signed_tx, TxStatus.SIGNED)
        try:
            if tx_type is TransactionType.DEPOSIT:
                self.db.deposits.update_deposit_by_id(*args)
            elif tx_type is TransactionType.WITHDRAW:
                self.db.withdraws.update_withdraw_by_id(*args)
            else:
                self.db.internals.update_internal_by_id(*args)
        except Exception as exc:
            raise ServiceError(f"update transaction status failed: {exc}") from exc

    def build_signed_transaction(self, request: SignedTransactionRequest) -> ServiceResponse:
        """Combine a stored transfer with its signature and mark it signed."""
        response = ServiceResponse(ReturnCode.ERROR)
        try:
            tx_type = parse_transaction_type(request.tx_type)
        except ValueError as exc:
            raise ServiceError(f"invalid request TxType: {exc}") from exc

        if tx_type is not TransactionType.DEPOSIT and tx_type is not TransactionType.WITHDRAW \
                and tx_type not in _INTERNAL_TYPES:
            response.msg = "Unsupported transaction type"
            response.signed_tx = UNSUPPORTED_TX
            return response

        record = self._query_record(request, tx_type)
        if record is None:
            label = {TransactionType.DEPOSIT: "Deposit", TransactionType.WITHDRAW: "Withdraw"}
            response.msg = f"{label.get(tx_type, 'Internal')} transaction not found"
            return response

        nonce = self._account_nonce(record.from_address)
        dynamic_fee_tx = Eip1559DynamicFeeTx(
            chain_id=request.chain_id,
            nonce=nonce,
            from_address=record.from_address,
            to_address=record.to_address,
            gas_limit=record.gas_limit,
            max_fee_per_gas=record.max_fee_per_gas,
            max_priority_fee_per_gas=record.max_priority_fee_per_gas,
            amount=str(record.amount),
            contract_address=record.token_address,
        )
        signed_request = {
            "chain": CHAIN_NAME,
            "network": NETWORK,
            "signature": request.signature,
            "base64_tx": _encode(dynamic_fee_tx),
        }
        log.info("build signed transaction %s", dynamic_fee_tx.to_json())
        try:
            returned: Mapping[str, Any] = self._rpc.build_signed_transaction(signed_request)
        except Exception as exc:
            raise ServiceError(f"build signed transaction failed: {exc}") from exc
        signed_tx = str(returned.get("signed_tx", ""))

        self._update_signed(request, tx_type, signed_tx)

        response.signed_tx = signed_tx
        response.msg = "build signed tx success"
        response.code = ReturnCode.SUCCESS
        return response

    def set_token_address(self, request_id: str, tokens: Iterable[TokenEntry]) -> ServiceResponse:
        """Store the tokens a business wants tracked."""
        rows = [
            {
                "guid": str(uuid.uuid4()),
                "token_address": _to_address(token.address),
                "decimals": token.decimals & 0xFF,
                "token_name": token.token_name,
                "collect_amount": _decimal_or_none(token.collect_amount),
                "cold_amount": _decimal_or_none(token.cold_amount),
                "timestamp": _now(),
            }
            for token in tokens
        ]
        try:
            self.db.tokens.store_tokens(request_id, rows)
        except Exception:
            log.error("set token address failed")
            raise
        return ServiceResponse(ReturnCode.SUCCESS, "set token address success")