"""
Pool configuration for swap reconstruction.

Addresses here are already resolved (files read, keys validated) by the
application's configuration layer.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Optional


# SPL token-swap program (mainnet/devnet deployment)
TOKEN_SWAP_PROGRAM_ID = "SwapsVeCiPHMUAtzQWZw7RjsKjgCjhwU55QGu4U1Szw"


class RoleStrategy(StrEnum):
    """How input/output accounts are identified."""
    POSITIONAL = "positional"  # Swap instruction account convention
    LARGEST_DELTA = "largest-delta"  # Opt-in fallback heuristic


@dataclass(frozen=True)
class PoolConfig:
    """
    Addresses of the pool being indexed.

    Attributes:
        program_id: Swap program whose instructions are candidates.
        swap_account: Pool state account. When set, swap instructions for other
            pools of the same program are rejected.
        mint_a / mint_b: The pool's two token mints. When set, swaps between any
            other pair of mints are rejected.
        vault_a / vault_b: Pool reserve accounts holding mint_a / mint_b.
        role_strategy: Positional (default) or the largest-delta fallback.
    """
    program_id: str = TOKEN_SWAP_PROGRAM_ID
    swap_account: Optional[str] = None
    mint_a: Optional[str] = None
    mint_b: Optional[str] = None
    vault_a: Optional[str] = None
    vault_b: Optional[str] = None
    role_strategy: RoleStrategy = RoleStrategy.POSITIONAL

    def __post_init__(self):
        if not self.program_id:
            raise ValueError("program_id must be non-empty")
        if (self.mint_a is None) != (self.mint_b is None):
            raise ValueError("mint_a and mint_b must be configured together")
        if (self.vault_a is None) != (self.vault_b is None):
            raise ValueError("vault_a and vault_b must be configured together")
