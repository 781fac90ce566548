"""
Unit tests for SwapReconstructor.

Transactions are built with the make_swap_tx fixture: mint_a (9 decimals) is
swapped into mint_b (6 decimals) through a pool whose vaults sit at account
indices 5 and 6.
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from solders.pubkey import Pubkey

from swapcore.balances import MintPrecisionCache
from swapcore.config import PoolConfig, RoleStrategy
from swapcore.reconstructor import RejectReason, SwapReconstructor
from swapcore.transaction import InstructionData, LedgerTransaction, TokenBalance


@pytest.fixture
def reconstructor():
    return SwapReconstructor(pool=PoolConfig(), precision=MintPrecisionCache())


class TestValidSwap:
    """Happy path: one swap instruction yields one event."""

    def test_reconstructs_amounts_and_price(self, reconstructor, make_swap_tx, accounts):
        result = reconstructor.reconstruct(make_swap_tx())

        assert result.rejections == []
        assert len(result.events) == 1
        event = result.events[0]
        assert event.signature == "sig-1"
        assert event.source_mint == accounts.mint_a
        assert event.dest_mint == accounts.mint_b
        assert event.amount_in == Decimal("1")
        assert event.amount_out == Decimal("2")
        assert event.price == Decimal("2")
        assert event.timestamp == 1_700_000_000
        assert event.slot == 100
        assert event.instruction_index == 0

    def test_pool_price_from_post_reserves(self, reconstructor, make_swap_tx):
        """Reserve ratio dest/source after the trade: 198 / 101."""
        event = reconstructor.reconstruct(make_swap_tx()).events[0]
        assert event.pool_price == Decimal(198) / Decimal(101)

    def test_configured_vaults_are_used_for_pool_price(self, make_swap_tx, accounts):
        pool = PoolConfig(vault_a=accounts.pool_source, vault_b=accounts.pool_destination)
        reconstructor = SwapReconstructor(pool=pool, precision=MintPrecisionCache())

        event = reconstructor.reconstruct(make_swap_tx()).events[0]
        assert event.pool_price == Decimal(198) / Decimal(101)

    def test_pool_price_none_when_reserves_unknown(self, reconstructor, make_swap_tx, accounts):
        pre = (
            TokenBalance(1, accounts.mint_a, 5_000_000_000, decimals=9),
            TokenBalance(2, accounts.mint_b, 0, decimals=6),
        )
        post = (
            TokenBalance(1, accounts.mint_a, 4_000_000_000, decimals=9),
            TokenBalance(2, accounts.mint_b, 2_000_000, decimals=6),
        )
        event = reconstructor.reconstruct(make_swap_tx(pre_balances=pre, post_balances=post)).events[0]

        assert event.price == Decimal("2")
        assert event.pool_price is None

    def test_missing_block_time_uses_clock(self, make_swap_tx):
        reconstructor = SwapReconstructor(
            pool=PoolConfig(), precision=MintPrecisionCache(), clock=lambda: 1_234.9
        )
        event = reconstructor.reconstruct(make_swap_tx(block_time=None)).events[0]
        assert event.timestamp == 1_234

    def test_destination_account_created_in_transaction(self, reconstructor, make_swap_tx, accounts):
        """No pre snapshot for the destination counts as a zero balance."""
        pre = (
            TokenBalance(1, accounts.mint_a, 5_000_000_000, decimals=9),
            TokenBalance(5, accounts.mint_a, 100_000_000_000, decimals=9),
            TokenBalance(6, accounts.mint_b, 200_000_000, decimals=6),
        )
        event = reconstructor.reconstruct(make_swap_tx(pre_balances=pre)).events[0]
        assert event.amount_out == Decimal("2")

    def test_precision_fetched_when_snapshot_lacks_decimals(self, make_swap_tx, accounts):
        fetcher = MagicMock(side_effect=lambda mint: 9 if mint == accounts.mint_a else 6)
        reconstructor = SwapReconstructor(pool=PoolConfig(), precision=MintPrecisionCache(fetcher=fetcher))
        pre = (
            TokenBalance(1, accounts.mint_a, 5_000_000_000),
            TokenBalance(2, accounts.mint_b, 0),
        )
        post = (
            TokenBalance(1, accounts.mint_a, 4_000_000_000),
            TokenBalance(2, accounts.mint_b, 2_000_000),
        )
        event = reconstructor.reconstruct(make_swap_tx(pre_balances=pre, post_balances=post)).events[0]

        assert event.amount_in == Decimal("1")
        assert event.amount_out == Decimal("2")
        assert fetcher.call_count == 2

    def test_two_swaps_in_one_transaction(self, reconstructor, make_swap_tx):
        """Each swap instruction is evaluated independently."""
        tx = make_swap_tx()
        doubled = LedgerTransaction(
            signature=tx.signature,
            slot=tx.slot,
            block_time=tx.block_time,
            account_keys=tx.account_keys,
            instructions=(tx.instructions[0], tx.instructions[0]),
            pre_token_balances=tx.pre_token_balances,
            post_token_balances=tx.post_token_balances,
        )
        result = reconstructor.reconstruct(doubled)

        assert [e.instruction_index for e in result.events] == [0, 1]
        assert len({e.key for e in result.events}) == 2


class TestRejections:
    """Each failure mode rejects with its reason and produces no event."""

    def test_not_swap_tag(self, reconstructor, make_swap_tx, swap_payload):
        result = reconstructor.reconstruct(make_swap_tx(data=swap_payload(10, tag=2)))

        assert result.events == []
        assert result.rejections[0].reason == RejectReason.NOT_SWAP_TAG
        assert result.rejections[0].instruction_index == 0

    def test_short_payload(self, reconstructor, make_swap_tx):
        result = reconstructor.reconstruct(make_swap_tx(data=b"\x01\x00"))
        assert result.rejections[0].reason == RejectReason.NOT_SWAP_TAG

    def test_unknown_account(self, reconstructor, make_swap_tx):
        tx = make_swap_tx()
        instruction = tx.instructions[0]
        accounts = list(instruction.accounts)
        accounts[3] = str(Pubkey.new_unique())
        broken = LedgerTransaction(
            signature=tx.signature,
            slot=tx.slot,
            block_time=tx.block_time,
            account_keys=tx.account_keys,
            instructions=(InstructionData(instruction.program_id, tuple(accounts), instruction.data),),
            pre_token_balances=tx.pre_token_balances,
            post_token_balances=tx.post_token_balances,
        )
        result = reconstructor.reconstruct(broken)

        assert result.events == []
        assert result.rejections[0].reason == RejectReason.UNKNOWN_ACCOUNT

    def test_not_a_swap_shape_when_source_increases(self, reconstructor, make_swap_tx, accounts):
        post = (
            TokenBalance(1, accounts.mint_a, 6_000_000_000, decimals=9),
            TokenBalance(2, accounts.mint_b, 2_000_000, decimals=6),
        )
        result = reconstructor.reconstruct(make_swap_tx(post_balances=post))

        assert result.events == []
        assert result.rejections[0].reason == RejectReason.NOT_A_SWAP_SHAPE

    def test_not_a_swap_shape_when_destination_unchanged(self, reconstructor, make_swap_tx):
        result = reconstructor.reconstruct(make_swap_tx(amount_out=0))
        assert result.rejections[0].reason == RejectReason.NOT_A_SWAP_SHAPE

    def test_missing_balance(self, reconstructor, make_swap_tx, accounts):
        """The user destination has no snapshot at all."""
        pre = (TokenBalance(1, accounts.mint_a, 5_000_000_000, decimals=9),)
        post = (TokenBalance(1, accounts.mint_a, 4_000_000_000, decimals=9),)
        result = reconstructor.reconstruct(make_swap_tx(pre_balances=pre, post_balances=post))

        assert result.rejections[0].reason == RejectReason.MISSING_BALANCE

    def test_failed_transaction(self, reconstructor, make_swap_tx):
        result = reconstructor.reconstruct(make_swap_tx(err={"InstructionError": [0, "Custom"]}))

        assert result.events == []
        assert result.rejections[0].reason == RejectReason.FAILED_TRANSACTION
        assert result.rejections[0].instruction_index is None

    def test_no_token_balances(self, reconstructor, make_swap_tx):
        result = reconstructor.reconstruct(make_swap_tx(pre_balances=()))
        assert result.rejections[0].reason == RejectReason.NO_TOKEN_BALANCES

    def test_foreign_pool(self, make_swap_tx, accounts):
        pool = PoolConfig(swap_account=accounts.swap)
        reconstructor = SwapReconstructor(pool=pool, precision=MintPrecisionCache())

        other_pool = str(Pubkey.new_unique())
        result = reconstructor.reconstruct(make_swap_tx(swap_account=other_pool))

        assert result.events == []
        assert result.rejections[0].reason == RejectReason.FOREIGN_POOL

    def test_matching_pool_accepted(self, make_swap_tx, accounts):
        pool = PoolConfig(swap_account=accounts.swap)
        reconstructor = SwapReconstructor(pool=pool, precision=MintPrecisionCache())

        assert len(reconstructor.reconstruct(make_swap_tx()).events) == 1

    def test_foreign_mint_pair(self, make_swap_tx, accounts):
        other_mint = str(Pubkey.new_unique())
        pool = PoolConfig(swap_account=accounts.swap, mint_a=accounts.mint_a, mint_b=other_mint)
        reconstructor = SwapReconstructor(pool=pool, precision=MintPrecisionCache())

        result = reconstructor.reconstruct(make_swap_tx())

        assert result.events == []
        assert result.rejections[0].reason == RejectReason.FOREIGN_MINT
        assert result.rejections[0].instruction_index == 0
        assert accounts.mint_b in result.rejections[0].detail

    @pytest.mark.parametrize("reverse", [False, True])
    def test_configured_mint_pair_accepted_in_either_order(self, make_swap_tx, accounts, reverse):
        mints = (accounts.mint_b, accounts.mint_a) if reverse else (accounts.mint_a, accounts.mint_b)
        pool = PoolConfig(mint_a=mints[0], mint_b=mints[1])
        reconstructor = SwapReconstructor(pool=pool, precision=MintPrecisionCache())

        assert len(reconstructor.reconstruct(make_swap_tx()).events) == 1

    def test_single_mint_config_rejected(self, accounts):
        with pytest.raises(ValueError, match="mint_a and mint_b"):
            PoolConfig(mint_a=accounts.mint_a)

    def test_other_program_is_not_a_candidate(self, reconstructor, make_swap_tx):
        result = reconstructor.reconstruct(make_swap_tx(program_id=str(Pubkey.new_unique())))

        assert result.candidates == 0
        assert result.events == []
        assert result.rejections == []


class TestLargestDeltaStrategy:
    """Opt-in heuristic when account positions cannot be trusted."""

    def test_picks_user_legs_excluding_vaults(self, make_swap_tx, accounts):
        pool = PoolConfig(
            vault_a=accounts.pool_source,
            vault_b=accounts.pool_destination,
            role_strategy=RoleStrategy.LARGEST_DELTA,
        )
        reconstructor = SwapReconstructor(pool=pool, precision=MintPrecisionCache())

        event = reconstructor.reconstruct(make_swap_tx()).events[0]

        assert event.source_mint == accounts.mint_a
        assert event.dest_mint == accounts.mint_b
        assert event.amount_in == Decimal("1")
        assert event.amount_out == Decimal("2")

    def test_no_opposite_legs(self, make_swap_tx, accounts):
        pool = PoolConfig(role_strategy=RoleStrategy.LARGEST_DELTA)
        reconstructor = SwapReconstructor(pool=pool, precision=MintPrecisionCache())
        pre = (TokenBalance(1, accounts.mint_a, 5, decimals=9),)
        post = (TokenBalance(1, accounts.mint_a, 4, decimals=9),)

        result = reconstructor.reconstruct(make_swap_tx(pre_balances=pre, post_balances=post))
        assert result.rejections[0].reason == RejectReason.UNKNOWN_ACCOUNT
