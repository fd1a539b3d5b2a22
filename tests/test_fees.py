import pytest

from chainsync.fees import (
    ETH_GAS_LIMIT,
    TOKEN_GAS_LIMIT,
    FeeInfo,
    determine_token_type,
    gas_and_contract_info,
    parse_fast_fee,
)
from chainsync.models import TokenType


def test_parse_fast_fee_keeps_quoted_parts():
    info = parse_fast_fee("135177480|535177480|*2")
    assert info.gas_price == 135177480
    assert info.gas_tip_cap == 535177480
    assert info.multiplier == 2


def test_parse_fast_fee_worked_example():
    info = parse_fast_fee("100|2|*3")
    assert info == FeeInfo(
        gas_price=100, gas_tip_cap=2, multiplier=3, multiplied_tip=6, max_priority_fee=112
    )


@pytest.mark.parametrize("quote", ["135177480|535177480|*2", "7|0|*5", "0|9|*1"])
def test_parse_fast_fee_derived_caps_are_consistent(quote):
    info = parse_fast_fee(quote)
    assert info.multiplied_tip == info.gas_tip_cap * info.multiplier
    assert info.max_priority_fee - info.gas_price == 2 * info.multiplied_tip


def test_multiplier_star_is_optional():
    assert parse_fast_fee("10|4|3") == parse_fast_fee("10|4|*3")


@pytest.mark.parametrize(
    "quote, message",
    [
        ("1|2", "invalid fast fee format"),
        ("1|2|*3|4", "invalid fast fee format"),
        ("a|2|*3", "invalid gas price"),
        ("1|b|*3", "invalid gas tip cap"),
        ("1|2|*x", "invalid multiplier"),
        ("1|2|*", "invalid multiplier"),
        ("1_0|2|*3", "invalid gas price"),
        ("1|2|*99999999999999999999", "invalid multiplier"),
    ],
)
def test_parse_fast_fee_rejects_bad_quotes(quote, message):
    with pytest.raises(ValueError, match=message):
        parse_fast_fee(quote)


def test_determine_token_type():
    assert determine_token_type("0x00") is TokenType.ETH
    assert determine_token_type("0xDf894d39f6b33763bf55582Bb7A8b5515bccD982") is TokenType.ERC20


def test_gas_and_contract_info_native():
    assert gas_and_contract_info("0x00") == (ETH_GAS_LIMIT, "0x00")
    assert ETH_GAS_LIMIT == 60000


def test_gas_and_contract_info_token():
    address = "0xDf894d39f6b33763bf55582Bb7A8b5515bccD982"
    assert gas_and_contract_info(address) == (TOKEN_GAS_LIMIT, address)
    assert TOKEN_GAS_LIMIT == 120000