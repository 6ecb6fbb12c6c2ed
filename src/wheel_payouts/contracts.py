"""
Call data for the two contracts settlement talks to.

Token (ERC-20): balanceOf, allowance, approve, decimals.
Payout: batchTransfer(token, recipients[], amounts[]), all-or-nothing.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Sequence

from eth_abi import decode, encode
from eth_utils import decode_hex, function_signature_to_4byte_selector, to_checksum_address

BALANCE_OF = "balanceOf(address)"
ALLOWANCE = "allowance(address,address)"
APPROVE = "approve(address,uint256)"
DECIMALS = "decimals()"
BATCH_TRANSFER = "batchTransfer(address,address[],uint256[])"


def _call_data(signature: str, types: Sequence[str], args: Sequence[Any]) -> str:
    selector = function_signature_to_4byte_selector(signature)
    return "0x" + (selector + encode(list(types), list(args))).hex()


def encode_balance_of(owner: str) -> str:
    return _call_data(BALANCE_OF, ["address"], [to_checksum_address(owner)])


def encode_allowance(owner: str, spender: str) -> str:
    return _call_data(
        ALLOWANCE,
        ["address", "address"],
        [to_checksum_address(owner), to_checksum_address(spender)],
    )


def encode_approve(spender: str, amount: int) -> str:
    return _call_data(APPROVE, ["address", "uint256"], [to_checksum_address(spender), int(amount)])


def encode_decimals() -> str:
    return _call_data(DECIMALS, [], [])


def encode_batch_transfer(token: str, recipients: Sequence[str], amounts: Sequence[int]) -> str:
    if len(recipients) != len(amounts):
        raise ValueError("recipients and amounts must have the same length")
    return _call_data(
        BATCH_TRANSFER,
        ["address", "address[]", "uint256[]"],
        [
            to_checksum_address(token),
            [to_checksum_address(r) for r in recipients],
            [int(a) for a in amounts],
        ],
    )


def decode_uint(result: str) -> int:
    raw = decode_hex(result)
    if not raw:
        raise ValueError("Empty eth_call result (is the address a contract?)")
    (value,) = decode(["uint256"], raw)
    return int(value)


def to_raw(amount: Decimal, decimals: int) -> int:
    scaled = Decimal(amount).scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{amount} has more precision than the token's {decimals} decimals")
    return int(scaled)


def from_raw(raw: int, decimals: int) -> Decimal:
    return Decimal(raw).scaleb(-decimals)