"""Fee quotes and gas parameters for outgoing transfers."""

from __future__ import annotations

import re
from dataclasses import dataclass

from chainsync.models import TokenType

NATIVE_CONTRACT = "0x00"
ETH_GAS_LIMIT = 60_000
TOKEN_GAS_LIMIT = 120_000
MIN_1_GWEI = 1_000_000_000

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_DECIMAL = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class FeeInfo:
    """A fast fee quote and the fee caps derived from it."""

    gas_price: int
    gas_tip_cap: int
    multiplier: int
    multiplied_tip: int
    max_priority_fee: int


def _decimal(text: str, what: str) -> int:
    if not _DECIMAL.fullmatch(text):
        raise ValueError(f"invalid {what}: {text}")
    return int(text)


def parse_fast_fee(fast_fee: str) -> FeeInfo:
    """Parse a ``base|tip|*multiplier`` quote and derive the fee caps.

    The multiplied tip is ``tip * multiplier``; the maximum fee is twice the
    multiplied tip plus the base gas price.
    """
    parts = fast_fee.split("|")
    if len(parts) != 3:
        raise ValueError(f"invalid fast fee format: {fast_fee}")
    gas_price = _decimal(parts[0], "gas price")
    gas_tip_cap = _decimal(parts[1], "gas tip cap")

    multiplier_text = parts[2].removeprefix("*")
    if not _DECIMAL.fullmatch(multiplier_text):
        raise ValueError(f"invalid multiplier: {parts[2]}")
    multiplier = int(multiplier_text)
    if not _INT64_MIN <= multiplier <= _INT64_MAX:
        raise ValueError(f"invalid multiplier: {parts[2]}")

    multiplied_tip = gas_tip_cap * multiplier
    max_priority_fee = multiplied_tip * 2 + gas_price
    return FeeInfo(
        gas_price=gas_price,
        gas_tip_cap=gas_tip_cap,
        multiplier=multiplier,
        multiplied_tip=multiplied_tip,
        max_priority_fee=max_priority_fee,
    )


def determine_token_type(contract_address: str) -> TokenType:
    """Native transfers use the ``0x00`` contract marker; anything else is a token."""
    if contract_address == NATIVE_CONTRACT:
        return TokenType.ETH
    return TokenType.ERC20


def gas_and_contract_info(contract_address: str) -> tuple[int, str]:
    """Return the gas limit and contract address to use for a transfer."""
    if contract_address == NATIVE_CONTRACT:
        return ETH_GAS_LIMIT, NATIVE_CONTRACT
    return TOKEN_GAS_LIMIT, contract_address