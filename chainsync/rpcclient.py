"""Client for the chain account service."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from enum import IntEnum
from typing import Any

from chainsync.models import BlockHeader

log = logging.getLogger(__name__)

NETWORK = "mainnet"
_INTEGER = re.compile(r"[+-]?[0-9]+")


class ReturnCode(IntEnum):
    """Result code carried by every service response."""

    ERROR = 0
    SUCCESS = 1


class ChainAccountError(Exception):
    """The chain account service reported a failure or sent unusable data."""


def _hex_to_fixed(value: str, size: int) -> str:
    text = value[2:] if value[:2] in ("0x", "0X") else value
    if len(text) % 2:
        text = "0" + text
    try:
        raw = bytes.fromhex(text)
    except ValueError:
        raw = b""
    return "0x" + raw[-size:].rjust(size, b"\0").hex()


def _atoi(text: str) -> int:
    if not _INTEGER.fullmatch(text or ""):
        raise ValueError(f"invalid integer: {text!r}")
    return int(text)


def _failed(response: Mapping[str, Any]) -> bool:
    return response.get("code", ReturnCode.ERROR) == ReturnCode.ERROR


class WalletChainAccountClient:
    """Typed calls against a chain account service stub.

    The stub exposes one method per service call; each takes a request
    mapping and returns a response mapping.
    """

    def __init__(self, rpc: Any, chain_name: str) -> None:
        log.info("new account chain rpc client for %s", chain_name)
        self.rpc = rpc
        self.chain_name = chain_name

    def _checked(self, response: Mapping[str, Any], what: str) -> Mapping[str, Any]:
        if _failed(response):
            raise ChainAccountError(f"{what} failed: {response.get('msg', '')}")
        return response

    def export_address_by_pub_key(self, type_or_version: str, public_key: str) -> str:
        """Return the address for ``public_key``, or "" when conversion fails."""
        request = {"chain": self.chain_name, "type": type_or_version, "public_key": public_key}
        try:
            response = self.rpc.convert_address(request)
        except Exception as exc:  # the service call failing is reported as no address
            log.error("convert address failed: %s", exc)
            return ""
        if _failed(response):
            log.error("convert address failed: %s", response.get("msg", ""))
            return ""
        return response.get("address", "")

    def get_block_header(self, number: int | None) -> BlockHeader:
        """Fetch the header at ``number``, or the latest header when None."""
        request = {
            "chain": self.chain_name,
            "network": NETWORK,
            "height": 0 if number is None else number,
        }
        response = self._checked(self.rpc.get_block_header_by_number(request), "get block header")
        raw = response.get("block_header") or {}
        try:
            block_number = int(str(raw.get("number", "")), 10)
        except ValueError:
            raise ChainAccountError(f"invalid block number: {raw.get('number')!r}") from None
        return BlockHeader(
            hash=_hex_to_fixed(raw.get("hash", ""), 32),
            parent_hash=_hex_to_fixed(raw.get("parent_hash", ""), 32),
            number=block_number,
            timestamp=int(raw.get("time", 0)),
        )

    def get_block_info(self, block_number: int) -> list[Mapping[str, Any]]:
        """Return the transactions of the block at ``block_number``."""
        request = {"chain": self.chain_name, "height": block_number, "view_tx": True}
        response = self._checked(self.rpc.get_block_by_number(request), "get block info")
        return list(response.get("transactions") or [])

    def get_transaction_by_hash(self, tx_hash: str) -> Mapping[str, Any] | None:
        """Return the transaction message for ``tx_hash``."""
        request = {"chain": self.chain_name, "network": NETWORK, "hash": tx_hash}
        response = self._checked(self.rpc.get_tx_by_hash(request), "get transaction")
        return response.get("tx")

    def get_account_number(self, address: str) -> int:
        """Return the account number of ``address``."""
        request = {"chain": self.chain_name, "network": NETWORK, "address": address}
        response = self._checked(self.rpc.get_account(request), "get account")
        try:
            return _atoi(response.get("account_number", ""))
        except ValueError as exc:
            raise ChainAccountError(str(exc)) from exc

    def get_account(self, address: str) -> tuple[int, int, int]:
        """Return (account number, sequence, balance); all zero on any failure."""
        request = {
            "chain": self.chain_name,
            "network": NETWORK,
            "address": address,
            "contract_address": "0x00",
        }
        try:
            response = self.rpc.get_account(request)
        except Exception as exc:  # any failure yields zeroes
            log.info("get account failed: %s", exc)
            return 0, 0, 0
        if _failed(response):
            log.info("get account info failed: %s", response.get("msg", ""))
            return 0, 0, 0
        try:
            return (
                _atoi(response.get("account_number", "")),
                _atoi(response.get("sequence", "")),
                _atoi(response.get("balance", "")),
            )
        except ValueError as exc:
            log.info("failed to convert account fields: %s", exc)
            return 0, 0, 0

    def send_tx(self, raw_tx: str) -> str:
        """Broadcast a signed transaction and return its hash."""
        log.info("send transaction %s on %s", raw_tx, self.chain_name)
        request = {"chain": self.chain_name, "network": NETWORK, "raw_tx": raw_tx}
        response = self.rpc.send_tx(request)
        if response is None:
            raise ChainAccountError("send transaction returned nothing")
        return self._checked(response, "send transaction").get("tx_hash", "")