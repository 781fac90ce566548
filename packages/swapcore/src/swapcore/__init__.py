"""
swapcore - Pure swap reconstruction logic with zero network dependencies.

Decodes SPL token-swap instructions, resolves their accounts and turns
pre/post token balance snapshots into normalized SwapEvents. Used by the
live indexer and by tests with hand-built transactions.
"""

from swapcore.events import SwapEvent
from swapcore.instruction import (
    SWAP_INSTRUCTION_TAG,
    SwapInstruction,
    decode_swap_instruction,
    decode_swap_instruction_b58,
)
from swapcore.transaction import TokenBalance, InstructionData, LedgerTransaction
from swapcore.accounts import SwapAccountPosition, SwapAccountRoles, index_of, resolve_account_keys, resolve_swap_roles
from swapcore.balances import MintPrecisionCache, balance_delta, find_balance, to_decimal
from swapcore.config import TOKEN_SWAP_PROGRAM_ID, PoolConfig, RoleStrategy
from swapcore.reconstructor import (
    ReconstructionResult,
    ReconstructionState,
    Rejection,
    RejectReason,
    SwapReconstructor,
)
from swapcore.seen_cache import SeenSignatureCache

__version__ = "0.1.0"

__all__ = [
    "SwapEvent",
    "SWAP_INSTRUCTION_TAG",
    "SwapInstruction",
    "decode_swap_instruction",
    "decode_swap_instruction_b58",
    "TokenBalance",
    "InstructionData",
    "LedgerTransaction",
    "SwapAccountPosition",
    "SwapAccountRoles",
    "index_of",
    "resolve_account_keys",
    "resolve_swap_roles",
    "MintPrecisionCache",
    "balance_delta",
    "find_balance",
    "to_decimal",
    "TOKEN_SWAP_PROGRAM_ID",
    "PoolConfig",
    "RoleStrategy",
    "ReconstructionResult",
    "ReconstructionState",
    "Rejection",
    "RejectReason",
    "SwapReconstructor",
    "SeenSignatureCache",
]
