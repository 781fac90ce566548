"""
Decoder for the SPL token-swap ``Swap`` instruction payload.

Layout (17 bytes):
    [0]      u8   instruction tag (1 = Swap)
    [1..9)   u64  amount_in, little-endian
    [9..17)  u64  minimum_amount_out, little-endian

Anything else (other tags, short payloads, undecodable base58) is reported as
"not a swap instruction" by returning None.
"""

import struct
from dataclasses import dataclass
from typing import Optional

import base58


SWAP_INSTRUCTION_TAG = 1

_SWAP_LAYOUT = struct.Struct("<BQQ")
SWAP_INSTRUCTION_SIZE = _SWAP_LAYOUT.size


@dataclass(frozen=True)
class SwapInstruction:
    """Decoded Swap instruction arguments (native token units)."""
    amount_in: int
    minimum_amount_out: int


def decode_swap_instruction(payload: bytes) -> Optional[SwapInstruction]:
    """Decode a raw instruction payload.

    Args:
        payload: Raw instruction data bytes.

    Returns:
        SwapInstruction, or None if the payload is too short or the tag is not Swap.
    """
    if len(payload) < SWAP_INSTRUCTION_SIZE:
        return None
    tag, amount_in, minimum_amount_out = _SWAP_LAYOUT.unpack_from(payload, 0)
    if tag != SWAP_INSTRUCTION_TAG:
        return None
    return SwapInstruction(amount_in=amount_in, minimum_amount_out=minimum_amount_out)


def decode_swap_instruction_b58(data: str) -> Optional[SwapInstruction]:
    """Decode a base58 payload as returned by jsonParsed RPC responses."""
    try:
        payload = base58.b58decode(data)
    except ValueError:
        return None
    return decode_swap_instruction(payload)
