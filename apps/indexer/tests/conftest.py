"""Shared fixtures for swap indexer tests."""

import json
import struct
from decimal import Decimal

import base58
import httpx
import pytest
from solders.pubkey import Pubkey

from solana_adapter.rate_limiter import RateLimitConfig
from solana_adapter.rpc_client import SolanaRpcClient
from swap_db import DatabaseFactory, DatabaseSettings
from swapcore.balances import MintPrecisionCache
from swapcore.config import TOKEN_SWAP_PROGRAM_ID, PoolConfig
from swapcore.events import SwapEvent
from swapcore.reconstructor import SwapReconstructor

from swap_indexer.controller import ReconciliationController
from swap_indexer.sink import EventSink


TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


class FakeLedger:
    """In-memory Solana node for one pool, served through httpx.MockTransport.

    Transactions are kept oldest first; getSignaturesForAddress answers newest
    first with the node's before/until/limit semantics. Every swap moves
    1 A (9 decimals) into the pool for 2 B (6 decimals) unless told otherwise.
    """

    def __init__(self, pool: dict):
        self.pool = pool
        self.transactions: list[str] = []
        self._payloads: dict[str, dict] = {}
        self._errors: dict[str, object] = {}
        self.unavailable: set[str] = set()
        self.requests: list[dict] = []
        self.reserve_a = 100_000_000_000
        self.reserve_b = 200_000_000
        self._next_time = 1_700_000_000

    # -- building history ---------------------------------------------------

    def add_swap(self, signature, amount_in=1_000_000_000, amount_out=2_000_000, tag=1, err=None):
        """Append a swap transaction (or a non-swap one, via tag)."""
        pre_a, pre_b = self.reserve_a, self.reserve_b
        moves = tag == 1 and err is None
        if moves:
            self.reserve_a += amount_in
            self.reserve_b -= amount_out
        self._append(signature, self._transaction(
            signature,
            data=struct.pack("<BQQ", tag, amount_in, 1),
            pre=(5_000_000_000, 0, pre_a, pre_b),
            post=(
                5_000_000_000 - amount_in if moves else 5_000_000_000,
                amount_out if moves else 0,
                self.reserve_a,
                self.reserve_b,
            ),
            err=err,
        ))

    def add_transfer(self, signature):
        """Append a transaction mentioning the pool with no swap instruction."""
        payload = self._transaction(
            signature,
            data=struct.pack("<BQQ", 1, 1, 1),
            pre=(5_000_000_000, 0, self.reserve_a, self.reserve_b),
            post=(5_000_000_000, 0, self.reserve_a, self.reserve_b),
            err=None,
        )
        payload["transaction"]["message"]["instructions"][0]["programId"] = TOKEN_PROGRAM_ID
        self._append(signature, payload)

    def _append(self, signature, payload):
        self.transactions.append(signature)
        self._payloads[signature] = payload
        self._errors[signature] = payload["meta"]["err"]

    def _transaction(self, signature, data, pre, post, err):
        p = self.pool
        block_time = self._next_time
        self._next_time += 10
        mints = (p["mint_a"], p["mint_b"], p["mint_a"], p["mint_b"])
        decimals = (9, 6, 9, 6)
        indices = (1, 2, 5, 6)

        def balances(amounts):
            return [
                {
                    "accountIndex": index,
                    "mint": mint,
                    "owner": p["user"],
                    "programId": TOKEN_PROGRAM_ID,
                    "uiTokenAmount": {"amount": str(amount), "decimals": dec},
                }
                for index, mint, dec, amount in zip(indices, mints, decimals, amounts)
            ]

        keys = [
            p["user"], p["user_source"], p["user_destination"], p["swap"], p["authority"],
            p["pool_source"], p["pool_destination"], p["pool_mint"], p["fee_account"],
            TOKEN_SWAP_PROGRAM_ID, TOKEN_PROGRAM_ID,
        ]
        return {
            "slot": 1000 + len(self.transactions),
            "blockTime": block_time,
            "meta": {
                "err": err,
                "preTokenBalances": balances(pre),
                "postTokenBalances": balances(post),
            },
            "transaction": {
                "signatures": [signature],
                "message": {
                    "accountKeys": [{"pubkey": k, "signer": i == 0, "writable": True} for i, k in enumerate(keys)],
                    "instructions": [
                        {
                            "programId": TOKEN_SWAP_PROGRAM_ID,
                            "accounts": [
                                p["swap"], p["authority"], p["user"], p["user_source"],
                                p["pool_source"], p["pool_destination"], p["user_destination"],
                                p["pool_mint"], p["fee_account"], TOKEN_PROGRAM_ID,
                            ],
                            "data": base58.b58encode(data).decode(),
                        },
                    ],
                },
            },
        }

    def notification(self, signature):
        """logsNotification frame for a stored transaction."""
        return {
            "jsonrpc": "2.0",
            "method": "logsNotification",
            "params": {
                "result": {
                    "context": {"slot": self._payloads[signature]["slot"]},
                    "value": {"signature": signature, "err": self._errors[signature], "logs": []},
                },
                "subscription": 1,
            },
        }

    def methods(self) -> list[str]:
        return [r["method"] for r in self.requests]

    # -- JSON-RPC -----------------------------------------------------------

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        method, params = body["method"], body["params"]

        if method == "getSignaturesForAddress":
            result = self._signatures(params[0], params[1])
        elif method == "getTransaction":
            signature = params[0]
            result = None if signature in self.unavailable else self._payloads.get(signature)
        elif method == "getTokenSupply":
            decimals = {self.pool["mint_a"]: 9, self.pool["mint_b"]: 6}.get(params[0])
            result = {"context": {"slot": 1}, "value": {"amount": "0", "decimals": decimals}}
        else:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"],
                                             "error": {"code": -32601, "message": "Method not found"}})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    def _signatures(self, address, options):
        if address != self.pool["swap"]:
            return []
        newest_first = list(reversed(self.transactions))
        before, until = options.get("before"), options.get("until")
        if before is not None:
            newest_first = newest_first[newest_first.index(before) + 1:]
        page = []
        for signature in newest_first:
            if signature == until or len(page) >= options["limit"]:
                break
            page.append({
                "signature": signature,
                "slot": self._payloads[signature]["slot"],
                "blockTime": self._payloads[signature]["blockTime"],
                "err": self._errors[signature],
                "confirmationStatus": "confirmed",
            })
        return page


@pytest.fixture
def pool():
    """Named addresses for one pool and trader."""
    names = [
        "user", "user_source", "user_destination", "swap", "authority",
        "pool_source", "pool_destination", "pool_mint", "fee_account",
        "mint_a", "mint_b",
    ]
    return {name: str(Pubkey.new_unique()) for name in names}


@pytest.fixture
def ledger(pool):
    return FakeLedger(pool)


@pytest.fixture
def rpc(ledger):
    client = SolanaRpcClient(
        rpc_url="http://ledger.test",
        max_retries=1,
        retry_backoff=0,
        rate_limit_config=RateLimitConfig(max_requests=100_000, backoff_base=0),
        transport=httpx.MockTransport(ledger),
    )
    yield client
    client.close()


@pytest.fixture
def db():
    """Fresh in-memory store for each test."""
    database = DatabaseFactory(DatabaseSettings(database_url="sqlite:///:memory:"))
    database.create_tables()
    yield database
    database.drop_tables()
    database.dispose()


@pytest.fixture
def sink(db):
    return EventSink(db, batch_size=100, flush_interval=60.0)


@pytest.fixture
def reconstructor(pool, rpc):
    return SwapReconstructor(
        pool=PoolConfig(swap_account=pool["swap"]),
        precision=MintPrecisionCache(fetcher=rpc.get_token_decimals),
    )


@pytest.fixture
def make_controller(rpc, reconstructor, sink, pool):
    """Factory for a controller over the fake ledger; page_size 2 forces paging."""
    def _make(**kwargs):
        options = dict(sink=sink, page_size=2, retry_delay=0.01, max_retry_attempts=100)
        options.update(kwargs)
        return ReconciliationController(
            rpc=rpc,
            reconstructor=reconstructor,
            pool_address=pool["swap"],
            **options,
        )

    return _make


@pytest.fixture
def make_event():
    """Factory for SwapEvent instances."""
    def _make(signature="sig-1", instruction_index=0, timestamp=1_700_000_000, **overrides):
        fields = dict(
            timestamp=timestamp,
            signature=signature,
            source_mint="MintA",
            dest_mint="MintB",
            amount_in=Decimal("1"),
            amount_out=Decimal("2"),
            price=Decimal("2"),
            pool_price=Decimal("1.96"),
            instruction_index=instruction_index,
            slot=100,
        )
        fields.update(overrides)
        return SwapEvent(**fields)

    return _make
