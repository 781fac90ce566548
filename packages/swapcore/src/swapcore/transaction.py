"""
Read-only view of a ledger transaction as consumed by the reconstructor.

Produced by solana_adapter.normalizer from getTransaction responses; tests
build these directly.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union


# Legacy messages list plain base58 strings, jsonParsed/v0 messages list
# {"pubkey": ..., "signer": ..., "writable": ..., "source": ...} dicts.
RawAccountKey = Union[str, dict[str, Any]]


@dataclass(frozen=True)
class TokenBalance:
    """Token account balance snapshot (pre or post execution)."""
    account_index: int
    mint: str
    amount: int  # Native units
    decimals: Optional[int] = None
    owner: Optional[str] = None


@dataclass(frozen=True)
class InstructionData:
    """A top-level instruction: target program, referenced accounts, raw payload."""
    program_id: str
    accounts: tuple[str, ...] = ()
    data: bytes = b""


@dataclass(frozen=True)
class LedgerTransaction:
    """Confirmed transaction with balance snapshots."""
    signature: str
    slot: int
    block_time: Optional[int]
    account_keys: tuple[RawAccountKey, ...]
    instructions: tuple[InstructionData, ...]
    pre_token_balances: tuple[TokenBalance, ...] = field(default_factory=tuple)
    post_token_balances: tuple[TokenBalance, ...] = field(default_factory=tuple)
    err: Any = None

    @property
    def failed(self) -> bool:
        return self.err is not None

    @property
    def has_token_balances(self) -> bool:
        return bool(self.pre_token_balances) and bool(self.post_token_balances)
