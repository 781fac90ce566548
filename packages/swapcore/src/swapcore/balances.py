"""
Balance delta engine.

All arithmetic on raw token amounts is done with Python ints (arbitrary
precision); conversion to Decimal happens once, at the edge, using the mint's
declared precision.
"""

import logging
import threading
from decimal import Decimal
from typing import Callable, Iterable, Optional

from swapcore.transaction import TokenBalance


logger = logging.getLogger(__name__)


def find_balance(
    snapshots: Iterable[TokenBalance], account_index: int
) -> Optional[TokenBalance]:
    """Return the snapshot for account_index, if any."""
    for snapshot in snapshots:
        if snapshot.account_index == account_index:
            return snapshot
    return None


def balance_delta(
    pre: Iterable[TokenBalance],
    post: Iterable[TokenBalance],
    account_index: int,
) -> int:
    """Signed post - pre amount for one account, in native units.

    A missing snapshot on either side counts as zero.
    """
    before = find_balance(pre, account_index)
    after = find_balance(post, account_index)
    pre_amount = before.amount if before else 0
    post_amount = after.amount if after else 0
    return post_amount - pre_amount


def to_decimal(raw: int, decimals: int) -> Decimal:
    """Convert native units to token units: raw / 10**decimals, exactly."""
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    return Decimal(raw).scaleb(-decimals)


class MintPrecisionCache:
    """Per-mint decimal precision, fetched once and kept for the process lifetime.

    Mints are immutable once created, so entries never expire. Safe to use
    from worker threads (RPC lookups run via asyncio.to_thread).

    Example:
        cache = MintPrecisionCache(fetcher=rpc_client.get_token_decimals)
        decimals = cache.get("So11111111111111111111111111111111111111112")
    """

    def __init__(self, fetcher: Optional[Callable[[str], int]] = None):
        self._fetcher = fetcher
        self._decimals: dict[str, int] = {}
        self._lock = threading.Lock()
        self._fetch_count = 0

    def prime(self, mint: str, decimals: Optional[int]) -> None:
        """Record a precision observed elsewhere (e.g. in a balance snapshot)."""
        if decimals is None:
            return
        with self._lock:
            self._decimals.setdefault(mint, decimals)

    def get(self, mint: str) -> int:
        """Return precision for mint, fetching it on first use.

        Raises:
            LookupError: If the mint is unknown and no fetcher is configured.
        """
        with self._lock:
            if mint in self._decimals:
                return self._decimals[mint]

        if self._fetcher is None:
            raise LookupError(f"No precision known for mint {mint}")

        decimals = int(self._fetcher(mint))
        logger.debug(f"Fetched precision for mint {mint}: {decimals}")
        with self._lock:
            self._fetch_count += 1
            return self._decimals.setdefault(mint, decimals)

    def __contains__(self, mint: str) -> bool:
        with self._lock:
            return mint in self._decimals

    @property
    def fetch_count(self) -> int:
        return self._fetch_count
