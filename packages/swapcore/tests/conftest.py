"""Shared fixtures for swapcore tests."""

import struct
from dataclasses import dataclass

import pytest
from solders.pubkey import Pubkey

from swapcore.config import TOKEN_SWAP_PROGRAM_ID
from swapcore.transaction import InstructionData, LedgerTransaction, TokenBalance


@dataclass(frozen=True)
class PoolAccounts:
    """Addresses of a single test pool and one trader."""
    swap: str
    authority: str
    user: str
    user_source: str
    user_destination: str
    pool_source: str
    pool_destination: str
    pool_mint: str
    fee_account: str
    mint_a: str
    mint_b: str


def _new_address() -> str:
    return str(Pubkey.new_unique())


def _swap_payload(amount_in: int, minimum_amount_out: int = 1, tag: int = 1) -> bytes:
    return struct.pack("<BQQ", tag, amount_in, minimum_amount_out)


@pytest.fixture
def accounts():
    return PoolAccounts(
        swap=_new_address(),
        authority=_new_address(),
        user=_new_address(),
        user_source=_new_address(),
        user_destination=_new_address(),
        pool_source=_new_address(),
        pool_destination=_new_address(),
        pool_mint=_new_address(),
        fee_account=_new_address(),
        mint_a=_new_address(),
        mint_b=_new_address(),
    )


@pytest.fixture
def make_swap_tx(accounts):
    """Factory for a transaction swapping mint_a (9 decimals) into mint_b (6 decimals).

    Account key order:
        0 user, 1 user_source, 2 user_destination, 3 swap, 4 authority,
        5 pool_source, 6 pool_destination, 7 pool_mint, 8 fee_account, 9 program
    """
    def _make(
        signature="sig-1",
        amount_in=1_000_000_000,
        amount_out=2_000_000,
        data=None,
        block_time=1_700_000_000,
        slot=100,
        swap_account=None,
        err=None,
        program_id=TOKEN_SWAP_PROGRAM_ID,
        pre_balances=None,
        post_balances=None,
    ) -> LedgerTransaction:
        keys = (
            accounts.user,
            accounts.user_source,
            accounts.user_destination,
            swap_account or accounts.swap,
            accounts.authority,
            accounts.pool_source,
            accounts.pool_destination,
            accounts.pool_mint,
            accounts.fee_account,
            program_id,
        )
        instruction = InstructionData(
            program_id=program_id,
            accounts=(
                swap_account or accounts.swap,
                accounts.authority,
                accounts.user,
                accounts.user_source,
                accounts.pool_source,
                accounts.pool_destination,
                accounts.user_destination,
                accounts.pool_mint,
                accounts.fee_account,
            ),
            data=_swap_payload(amount_in) if data is None else data,
        )
        if pre_balances is None:
            pre_balances = (
                TokenBalance(1, accounts.mint_a, 5_000_000_000, decimals=9, owner=accounts.user),
                TokenBalance(2, accounts.mint_b, 0, decimals=6, owner=accounts.user),
                TokenBalance(5, accounts.mint_a, 100_000_000_000, decimals=9),
                TokenBalance(6, accounts.mint_b, 200_000_000, decimals=6),
            )
        if post_balances is None:
            post_balances = (
                TokenBalance(1, accounts.mint_a, 5_000_000_000 - amount_in, decimals=9, owner=accounts.user),
                TokenBalance(2, accounts.mint_b, amount_out, decimals=6, owner=accounts.user),
                TokenBalance(5, accounts.mint_a, 100_000_000_000 + amount_in, decimals=9),
                TokenBalance(6, accounts.mint_b, 200_000_000 - amount_out, decimals=6),
            )
        return LedgerTransaction(
            signature=signature,
            slot=slot,
            block_time=block_time,
            account_keys=keys,
            instructions=(instruction,),
            pre_token_balances=tuple(pre_balances),
            post_token_balances=tuple(post_balances),
            err=err,
        )

    return _make


@pytest.fixture
def swap_payload():
    """Builds a raw Swap instruction payload: swap_payload(amount_in, minimum_amount_out=1, tag=1)."""
    return _swap_payload
