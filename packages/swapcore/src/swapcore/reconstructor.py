"""
Swap reconstruction from decoded instructions and balance snapshots.

Each candidate instruction (one whose program is the configured swap program)
moves through DECODING -> ROLE_RESOLVED -> DELTA_COMPUTED and ends VALIDATED
(one SwapEvent) or REJECTED (one Rejection). Instructions are independent: a
transaction may yield zero, one or several events.

Pure with respect to I/O except for mint precision lookups, which go through
the injected MintPrecisionCache.
"""

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, StrEnum
from typing import Callable, Optional, Sequence, Union

from solders.pubkey import Pubkey

from swapcore.accounts import (
    SwapAccountRoles,
    index_of,
    resolve_account_keys,
    resolve_swap_roles,
)
from swapcore.balances import MintPrecisionCache, balance_delta, find_balance, to_decimal
from swapcore.config import PoolConfig, RoleStrategy
from swapcore.events import SwapEvent
from swapcore.instruction import decode_swap_instruction
from swapcore.transaction import InstructionData, LedgerTransaction


logger = logging.getLogger(__name__)


class ReconstructionState(Enum):
    DECODING = "decoding"
    ROLE_RESOLVED = "role_resolved"
    DELTA_COMPUTED = "delta_computed"
    VALIDATED = "validated"
    REJECTED = "rejected"


class RejectReason(StrEnum):
    NOT_SWAP_TAG = "not-swap-tag"
    UNKNOWN_ACCOUNT = "unknown-account"
    NOT_A_SWAP_SHAPE = "not-a-swap-shape"
    MISSING_BALANCE = "missing-balance"
    FOREIGN_POOL = "foreign-pool"
    FOREIGN_MINT = "foreign-mint"
    FAILED_TRANSACTION = "failed-transaction"
    NO_TOKEN_BALANCES = "no-token-balances"


@dataclass(frozen=True)
class Rejection:
    """Why a transaction or one of its instructions produced no event.

    instruction_index is None for transaction-level rejections.
    """
    signature: str
    reason: RejectReason
    instruction_index: Optional[int] = None
    detail: str = ""


@dataclass
class ReconstructionResult:
    """Outcome of reconstructing one transaction."""
    signature: str
    events: list[SwapEvent] = field(default_factory=list)
    rejections: list[Rejection] = field(default_factory=list)
    candidates: int = 0  # Instructions targeting the swap program


@dataclass(frozen=True)
class _Legs:
    """Input/output token accounts resolved for one instruction."""
    source_index: int
    destination_index: int
    roles: Optional[SwapAccountRoles]


class SwapReconstructor:
    """
    Builds SwapEvents from LedgerTransactions.

    Example:
        reconstructor = SwapReconstructor(
            pool=PoolConfig(vault_a="...", vault_b="..."),
            precision=MintPrecisionCache(fetcher=rpc.get_token_decimals),
        )
        result = reconstructor.reconstruct(tx)
        for event in result.events:
            sink.append(event)
    """

    def __init__(
        self,
        pool: PoolConfig,
        precision: MintPrecisionCache,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            pool: Pool addresses and role strategy.
            precision: Mint precision cache (primed from snapshots, fetched otherwise).
            clock: Time source used when a transaction has no block time.
        """
        self._pool = pool
        self._precision = precision
        self._clock = clock
        self._program_id = Pubkey.from_string(pool.program_id)
        self._swap_account = (
            Pubkey.from_string(pool.swap_account) if pool.swap_account else None
        )
        self._mints = {pool.mint_a, pool.mint_b} if pool.mint_a else None

    @property
    def pool(self) -> PoolConfig:
        return self._pool

    def reconstruct(self, tx: LedgerTransaction) -> ReconstructionResult:
        """Evaluate every swap-program instruction of tx independently."""
        result = ReconstructionResult(signature=tx.signature)

        if tx.failed:
            result.rejections.append(
                Rejection(tx.signature, RejectReason.FAILED_TRANSACTION, detail=str(tx.err))
            )
            return result

        if not tx.has_token_balances:
            result.rejections.append(Rejection(tx.signature, RejectReason.NO_TOKEN_BALANCES))
            return result

        for snapshot in (*tx.pre_token_balances, *tx.post_token_balances):
            self._precision.prime(snapshot.mint, snapshot.decimals)

        try:
            keys = resolve_account_keys(tx.account_keys)
        except (ValueError, KeyError) as e:
            result.rejections.append(
                Rejection(tx.signature, RejectReason.UNKNOWN_ACCOUNT, detail=f"bad account key: {e}")
            )
            return result

        for index, instruction in enumerate(tx.instructions):
            if not self._targets_swap_program(instruction):
                continue
            result.candidates += 1
            outcome = self._reconstruct_instruction(tx, keys, index, instruction)
            if isinstance(outcome, SwapEvent):
                result.events.append(outcome)
            else:
                logger.debug(
                    f"Rejected {tx.signature}#{index}: {outcome.reason}"
                    + (f" ({outcome.detail})" if outcome.detail else "")
                )
                result.rejections.append(outcome)

        return result

    def _targets_swap_program(self, instruction: InstructionData) -> bool:
        try:
            return bytes(Pubkey.from_string(instruction.program_id)) == bytes(self._program_id)
        except ValueError:
            return False

    def _reconstruct_instruction(
        self,
        tx: LedgerTransaction,
        keys: Sequence[Pubkey],
        index: int,
        instruction: InstructionData,
    ) -> Union[SwapEvent, Rejection]:
        state = ReconstructionState.DECODING

        def reject(reason: RejectReason, detail: str = "") -> Rejection:
            logger.debug(f"{tx.signature}#{index}: {state.value} -> {ReconstructionState.REJECTED.value}")
            return Rejection(tx.signature, reason, instruction_index=index, detail=detail)

        if decode_swap_instruction(instruction.data) is None:
            return reject(RejectReason.NOT_SWAP_TAG)

        legs = self._resolve_legs(tx, keys, instruction)
        if legs is None:
            return reject(RejectReason.UNKNOWN_ACCOUNT)
        if (
            self._swap_account is not None
            and legs.roles is not None
            and bytes(legs.roles.swap_account) != bytes(self._swap_account)
        ):
            return reject(RejectReason.FOREIGN_POOL, detail=str(legs.roles.swap_account))
        state = ReconstructionState.ROLE_RESOLVED

        source_snapshot = self._snapshot(tx, legs.source_index)
        destination_snapshot = self._snapshot(tx, legs.destination_index)
        if source_snapshot is None or destination_snapshot is None:
            return reject(RejectReason.MISSING_BALANCE)

        source_delta = balance_delta(tx.pre_token_balances, tx.post_token_balances, legs.source_index)
        destination_delta = balance_delta(
            tx.pre_token_balances, tx.post_token_balances, legs.destination_index
        )
        state = ReconstructionState.DELTA_COMPUTED

        if source_delta >= 0 or destination_delta <= 0:
            return reject(
                RejectReason.NOT_A_SWAP_SHAPE,
                detail=f"source={source_delta} destination={destination_delta}",
            )

        source_mint = source_snapshot.mint
        dest_mint = destination_snapshot.mint
        if self._mints is not None and {source_mint, dest_mint} != self._mints:
            return reject(RejectReason.FOREIGN_MINT, detail=f"{source_mint} -> {dest_mint}")
        amount_in = to_decimal(-source_delta, self._precision.get(source_mint))
        amount_out = to_decimal(destination_delta, self._precision.get(dest_mint))

        state = ReconstructionState.VALIDATED
        return SwapEvent(
            timestamp=tx.block_time if tx.block_time is not None else int(self._clock()),
            signature=tx.signature,
            source_mint=source_mint,
            dest_mint=dest_mint,
            amount_in=amount_in,
            amount_out=amount_out,
            price=amount_out / amount_in,
            pool_price=self._pool_price(tx, legs.roles, source_mint, dest_mint),
            instruction_index=index,
            slot=tx.slot,
        )

    def _resolve_legs(
        self,
        tx: LedgerTransaction,
        keys: Sequence[Pubkey],
        instruction: InstructionData,
    ) -> Optional[_Legs]:
        roles = resolve_swap_roles(
            keys, instruction.accounts, self._pool.vault_a, self._pool.vault_b
        )
        if self._pool.role_strategy == RoleStrategy.POSITIONAL:
            if roles is None:
                return None
            return _Legs(roles.user_source, roles.user_destination, roles)
        return self._largest_delta_legs(tx, keys, roles)

    def _largest_delta_legs(
        self,
        tx: LedgerTransaction,
        keys: Sequence[Pubkey],
        roles: Optional[SwapAccountRoles],
    ) -> Optional[_Legs]:
        """Pick the largest outflow and largest inflow of different mints.

        Pool vaults are excluded, otherwise the pool's side of the trade would
        mirror the user's.
        """
        excluded = set()
        for vault in (self._pool.vault_a, self._pool.vault_b):
            if vault is not None:
                excluded.add(index_of(keys, vault))
        if roles is not None:
            excluded.update(i for i in (roles.pool_source, roles.pool_destination) if i is not None)

        indices = {
            s.account_index for s in (*tx.pre_token_balances, *tx.post_token_balances)
        } - excluded

        outflows = []
        inflows = []
        for account_index in sorted(indices):
            delta = balance_delta(tx.pre_token_balances, tx.post_token_balances, account_index)
            if delta < 0:
                outflows.append((delta, account_index))
            elif delta > 0:
                inflows.append((delta, account_index))

        for _, source_index in sorted(outflows):
            source_mint = self._snapshot(tx, source_index).mint
            for _, destination_index in sorted(inflows, reverse=True):
                if self._snapshot(tx, destination_index).mint != source_mint:
                    return _Legs(source_index, destination_index, roles)
        return None

    @staticmethod
    def _snapshot(tx: LedgerTransaction, account_index: int):
        return find_balance(tx.post_token_balances, account_index) or find_balance(
            tx.pre_token_balances, account_index
        )

    def _pool_price(
        self,
        tx: LedgerTransaction,
        roles: Optional[SwapAccountRoles],
        source_mint: str,
        dest_mint: str,
    ) -> Optional[Decimal]:
        """Post-trade reserve ratio dest/source, in token units."""
        if roles is None:
            return None

        # Configured vaults take precedence over the instruction's pool accounts
        reserves = {}
        for account_index in (roles.vault_a, roles.vault_b, roles.pool_source, roles.pool_destination):
            if account_index is None:
                continue
            snapshot = find_balance(tx.post_token_balances, account_index)
            if snapshot is not None and snapshot.mint not in reserves:
                reserves[snapshot.mint] = snapshot.amount

        source_reserve = reserves.get(source_mint)
        dest_reserve = reserves.get(dest_mint)
        if not source_reserve or dest_reserve is None:
            return None

        return to_decimal(dest_reserve, self._precision.get(dest_mint)) / to_decimal(
            source_reserve, self._precision.get(source_mint)
        )
