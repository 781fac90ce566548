"""
Normalized swap event model.

A SwapEvent is the durable record produced for every validated swap
instruction. Events are immutable (frozen dataclasses) so the same value can
be shared between the in-memory query view and the write buffer.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class SwapEvent:
    """
    One reconstructed swap.

    Amounts are token units (already divided by each mint's precision).
    price is amount_out / amount_in; pool_price is the post-trade reserve
    ratio of the pool in the same orientation, None when reserves are unknown.

    (signature, instruction_index) identifies the event; a transaction with a
    single swap instruction is keyed by its signature alone in practice.
    """
    timestamp: int  # Unix seconds (block time)
    signature: str
    source_mint: str
    dest_mint: str
    amount_in: Decimal
    amount_out: Decimal
    price: Decimal
    pool_price: Optional[Decimal] = None
    instruction_index: int = 0
    slot: Optional[int] = None

    def __post_init__(self):
        if self.amount_in <= 0:
            raise ValueError(f"SwapEvent amount_in must be positive, got {self.amount_in}")
        if self.amount_out <= 0:
            raise ValueError(f"SwapEvent amount_out must be positive, got {self.amount_out}")

    @property
    def key(self) -> tuple[str, int]:
        """Deduplication key."""
        return (self.signature, self.instruction_index)
