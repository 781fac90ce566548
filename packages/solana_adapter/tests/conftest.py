"""Test fixtures for solana_adapter tests."""

import struct

import base58
import pytest
from solders.pubkey import Pubkey

from swapcore.config import TOKEN_SWAP_PROGRAM_ID


TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


@pytest.fixture
def addresses():
    """Named addresses for one pool and trader."""
    names = [
        "user", "user_source", "user_destination", "swap", "authority",
        "pool_source", "pool_destination", "pool_mint", "fee_account",
        "mint_a", "mint_b",
    ]
    return {name: str(Pubkey.new_unique()) for name in names}


@pytest.fixture
def sample_transaction(addresses):
    """jsonParsed getTransaction result for a 1 A -> 2 B swap."""
    a = addresses
    swap_data = base58.b58encode(struct.pack("<BQQ", 1, 1_000_000_000, 1_900_000)).decode()
    return {
        "slot": 312345678,
        "blockTime": 1717000000,
        "version": 0,
        "meta": {
            "err": None,
            "fee": 5000,
            "preTokenBalances": [
                {
                    "accountIndex": 1,
                    "mint": a["mint_a"],
                    "owner": a["user"],
                    "programId": TOKEN_PROGRAM_ID,
                    "uiTokenAmount": {"amount": "5000000000", "decimals": 9, "uiAmount": 5.0, "uiAmountString": "5"},
                },
                {
                    "accountIndex": 2,
                    "mint": a["mint_b"],
                    "owner": a["user"],
                    "programId": TOKEN_PROGRAM_ID,
                    "uiTokenAmount": {"amount": "0", "decimals": 6, "uiAmount": None, "uiAmountString": "0"},
                },
                {
                    "accountIndex": 5,
                    "mint": a["mint_a"],
                    "owner": a["authority"],
                    "programId": TOKEN_PROGRAM_ID,
                    "uiTokenAmount": {"amount": "100000000000", "decimals": 9, "uiAmount": 100.0, "uiAmountString": "100"},
                },
                {
                    "accountIndex": 6,
                    "mint": a["mint_b"],
                    "owner": a["authority"],
                    "programId": TOKEN_PROGRAM_ID,
                    "uiTokenAmount": {"amount": "200000000", "decimals": 6, "uiAmount": 200.0, "uiAmountString": "200"},
                },
            ],
            "postTokenBalances": [
                {
                    "accountIndex": 1,
                    "mint": a["mint_a"],
                    "owner": a["user"],
                    "programId": TOKEN_PROGRAM_ID,
                    "uiTokenAmount": {"amount": "4000000000", "decimals": 9, "uiAmount": 4.0, "uiAmountString": "4"},
                },
                {
                    "accountIndex": 2,
                    "mint": a["mint_b"],
                    "owner": a["user"],
                    "programId": TOKEN_PROGRAM_ID,
                    "uiTokenAmount": {"amount": "2000000", "decimals": 6, "uiAmount": 2.0, "uiAmountString": "2"},
                },
                {
                    "accountIndex": 5,
                    "mint": a["mint_a"],
                    "owner": a["authority"],
                    "programId": TOKEN_PROGRAM_ID,
                    "uiTokenAmount": {"amount": "101000000000", "decimals": 9, "uiAmount": 101.0, "uiAmountString": "101"},
                },
                {
                    "accountIndex": 6,
                    "mint": a["mint_b"],
                    "owner": a["authority"],
                    "programId": TOKEN_PROGRAM_ID,
                    "uiTokenAmount": {"amount": "198000000", "decimals": 6, "uiAmount": 198.0, "uiAmountString": "198"},
                },
            ],
        },
        "transaction": {
            "signatures": ["sig-swap-1"],
            "message": {
                "accountKeys": [
                    {"pubkey": a["user"], "signer": True, "writable": True, "source": "transaction"},
                    {"pubkey": a["user_source"], "signer": False, "writable": True, "source": "transaction"},
                    {"pubkey": a["user_destination"], "signer": False, "writable": True, "source": "transaction"},
                    {"pubkey": a["swap"], "signer": False, "writable": False, "source": "transaction"},
                    {"pubkey": a["authority"], "signer": False, "writable": False, "source": "transaction"},
                    {"pubkey": a["pool_source"], "signer": False, "writable": True, "source": "lookupTable"},
                    {"pubkey": a["pool_destination"], "signer": False, "writable": True, "source": "lookupTable"},
                    {"pubkey": a["pool_mint"], "signer": False, "writable": True, "source": "transaction"},
                    {"pubkey": a["fee_account"], "signer": False, "writable": True, "source": "transaction"},
                    {"pubkey": TOKEN_SWAP_PROGRAM_ID, "signer": False, "writable": False, "source": "transaction"},
                    {"pubkey": TOKEN_PROGRAM_ID, "signer": False, "writable": False, "source": "transaction"},
                ],
                "instructions": [
                    {
                        "program": "spl-token",
                        "programId": TOKEN_PROGRAM_ID,
                        "parsed": {"type": "approve", "info": {}},
                        "stackHeight": None,
                    },
                    {
                        "programId": TOKEN_SWAP_PROGRAM_ID,
                        "accounts": [
                            a["swap"], a["authority"], a["user"], a["user_source"],
                            a["pool_source"], a["pool_destination"], a["user_destination"],
                            a["pool_mint"], a["fee_account"], TOKEN_PROGRAM_ID,
                        ],
                        "data": swap_data,
                        "stackHeight": None,
                    },
                ],
                "recentBlockhash": "11111111111111111111111111111111",
            },
        },
    }


@pytest.fixture
def sample_log_notification():
    """logsNotification frame."""
    return {
        "jsonrpc": "2.0",
        "method": "logsNotification",
        "params": {
            "result": {
                "context": {"slot": 5208469},
                "value": {
                    "signature": "sig-live-1",
                    "err": None,
                    "logs": ["Program SwapsVeCiPHMUAtzQWZw7RjsKjgCjhwU55QGu4U1Szw invoke [1]"],
                },
            },
            "subscription": 24040,
        },
    }
