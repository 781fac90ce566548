"""JSON-RPC client for Solana ledger queries used by reconciliation.

This module provides the HTTP methods the indexer needs:
- Signature history for an address (backfill and cursor paging)
- Full transactions with token balance snapshots
- Mint precision lookups

Reference:
- getSignaturesForAddress: https://solana.com/docs/rpc/http/getsignaturesforaddress
- getTransaction: https://solana.com/docs/rpc/http/gettransaction
- getTokenSupply: https://solana.com/docs/rpc/http/gettokensupply
"""

import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Optional
import logging

import httpx

from solana_adapter.rate_limiter import RateLimiter, RateLimitConfig


logger = logging.getLogger(__name__)


# getSignaturesForAddress page size limit
MAX_SIGNATURES_LIMIT = 1000

# JSON-RPC error codes worth retrying (node lagging or data not yet available)
RETRYABLE_RPC_CODES = frozenset({-32004, -32005, -32014, -32016})


class RpcError(Exception):
    """JSON-RPC or transport failure.

    Attributes:
        method: RPC method that failed
        message: Error message from the node or transport
        code: JSON-RPC error code or HTTP status, when known
    """

    def __init__(self, method: str, message: str, code: Optional[int] = None):
        self.method = method
        self.message = message
        self.code = code
        super().__init__(f"{method} failed: [{code}] {message}" if code is not None else f"{method} failed: {message}")


class TransactionNotAvailable(RpcError):
    """getTransaction returned null for a signature the node has listed.

    Usually the node has not caught up to the requested commitment yet.
    """


@dataclass
class SolanaRpcClient:
    """HTTP JSON-RPC client for one Solana endpoint.

    Blocking (httpx.Client); async callers wrap calls in asyncio.to_thread.
    Transport errors, HTTP 429/5xx and retryable JSON-RPC codes are retried
    with exponential backoff, up to max_retries extra attempts.

    Example:
        client = SolanaRpcClient(rpc_url="https://api.devnet.solana.com")

        page = client.get_signatures_for_address(pool, until=cursor, limit=40)
        tx = client.get_transaction(page[0]["signature"])
        decimals = client.get_token_decimals(mint)

        client.close()
    """

    rpc_url: str
    commitment: str = "confirmed"
    timeout: float = 30.0
    max_retries: int = 3
    retry_backoff: float = 0.5
    rate_limit_config: RateLimitConfig = field(default_factory=RateLimitConfig)
    transport: Optional[httpx.BaseTransport] = field(default=None, repr=False)

    _client: Optional[httpx.Client] = field(default=None, init=False, repr=False)
    _rate_limiter: RateLimiter = field(default=None, init=False, repr=False)
    _ids: Any = field(default=None, init=False, repr=False)
    _request_count: int = field(default=0, init=False)
    _retry_count: int = field(default=0, init=False)
    _error_count: int = field(default=0, init=False)

    def __post_init__(self):
        """Initialize HTTP session and rate limiter."""
        self._client = httpx.Client(
            timeout=self.timeout,
            transport=self.transport,
            headers={"Content-Type": "application/json"},
        )
        self._rate_limiter = RateLimiter(config=self.rate_limit_config)
        self._ids = itertools.count(1)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "SolanaRpcClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def get_rate_limit_status(self) -> dict[str, int | float]:
        return {
            "available": self._rate_limiter.get_available_capacity(),
            "backoff_remaining": self._rate_limiter.get_backoff_remaining(),
        }

    def get_stats(self) -> dict:
        return {
            "requests": self._request_count,
            "retries": self._retry_count,
            "errors": self._error_count,
        }

    def get_signatures_for_address(
        self,
        address: str,
        before: Optional[str] = None,
        until: Optional[str] = None,
        limit: int = MAX_SIGNATURES_LIMIT,
    ) -> list[dict]:
        """Fetch one page of signatures for an address, newest first.

        Args:
            address: Account whose history is listed
            before: Start searching backwards from this signature (exclusive)
            until: Stop when this signature is reached (exclusive)
            limit: Page size (1-1000)

        Returns:
            List of signature info dicts with keys: signature, slot, err, blockTime, ...

        Raises:
            RpcError: If the call fails after retries
        """
        options: dict[str, Any] = {
            "limit": max(1, min(limit, MAX_SIGNATURES_LIMIT)),
            "commitment": self.commitment,
        }
        if before:
            options["before"] = before
        if until:
            options["until"] = until

        result = self._call("getSignaturesForAddress", [address, options])
        signatures = result or []
        logger.debug(f"Fetched {len(signatures)} signatures for {address} (before={before}, until={until})")
        return signatures

    def get_signatures_all(
        self,
        address: str,
        until: Optional[str] = None,
        limit: int = MAX_SIGNATURES_LIMIT,
        max_pages: Optional[int] = None,
    ) -> tuple[list[dict], bool]:
        """Fetch every signature newer than until, paging backwards.

        Args:
            address: Account whose history is listed
            until: Oldest signature to stop at (exclusive); None walks the full history
            limit: Page size
            max_pages: Safety limit on pages (None = unlimited)

        Returns:
            Tuple of (signature info dicts newest first, truncated flag)

        Raises:
            RpcError: If any page fails after retries
        """
        all_signatures: list[dict] = []
        before = None
        page = 0
        truncated = False

        while True:
            if max_pages is not None and page >= max_pages:
                truncated = True
                break

            signatures = self.get_signatures_for_address(address, before=before, until=until, limit=limit)
            page += 1
            if not signatures:
                break

            all_signatures.extend(signatures)
            if len(signatures) < limit:
                break
            before = signatures[-1]["signature"]

        if truncated:
            logger.warning(f"Signature history for {address} truncated at {page} pages")
        logger.debug(f"Fetched {len(all_signatures)} total signatures across {page} pages (truncated={truncated})")
        return all_signatures, truncated

    def get_transaction(self, signature: str) -> dict:
        """Fetch a confirmed transaction in jsonParsed encoding.

        Raises:
            TransactionNotAvailable: If the node returns null for the signature
            RpcError: If the call fails after retries
        """
        result = self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if result is None:
            raise TransactionNotAvailable("getTransaction", f"transaction {signature} not available")
        return result

    def get_token_decimals(self, mint: str) -> int:
        """Return the decimal precision of a mint.

        Raises:
            RpcError: If the call fails or the response has no decimals
        """
        result = self._call("getTokenSupply", [mint, {"commitment": self.commitment}])
        try:
            return int(result["value"]["decimals"])
        except (TypeError, KeyError, ValueError) as e:
            raise RpcError("getTokenSupply", f"no decimals for mint {mint}: {e}") from e

    def _wait_for_rate_limit(self) -> None:
        """Block until a request slot is available, then record the request."""
        wait = self._rate_limiter.wait_time()
        if wait > 0:
            logger.debug(f"Rate limit: waiting {wait:.3f}s before RPC request")
            time.sleep(wait)
        self._rate_limiter.record_request()

    def _call(self, method: str, params: list) -> Any:
        """POST one JSON-RPC request, retrying transient failures.

        Raises:
            RpcError: On a non-retryable error or once retries are exhausted
        """
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        last_error: Optional[RpcError] = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = self.retry_backoff * (2 ** (attempt - 1))
                self._retry_count += 1
                logger.warning(f"{method} attempt {attempt} failed ({last_error}), retrying in {delay:.2f}s")
                time.sleep(delay)

            self._wait_for_rate_limit()
            self._request_count += 1
            try:
                response = self._client.post(self.rpc_url, json=body)
            except httpx.HTTPError as e:
                last_error = RpcError(method, f"{type(e).__name__}: {e}")
                continue

            if response.status_code == 429:
                self._rate_limiter.record_rate_limit_hit(_retry_after(response))
                last_error = RpcError(method, "rate limited", 429)
                continue
            self._rate_limiter.record_success()

            if response.status_code >= 500:
                last_error = RpcError(method, response.reason_phrase or "server error", response.status_code)
                continue
            if response.status_code >= 400:
                self._error_count += 1
                raise RpcError(method, response.reason_phrase or "client error", response.status_code)

            try:
                payload = response.json()
            except ValueError as e:
                last_error = RpcError(method, f"invalid JSON response: {e}")
                continue

            error = self._check_response(payload, method)
            if error is None:
                return payload.get("result")
            if error.code not in RETRYABLE_RPC_CODES:
                self._error_count += 1
                logger.error(str(error))
                raise error
            last_error = error

        self._error_count += 1
        logger.error(f"{method} giving up after {self.max_retries + 1} attempts: {last_error}")
        raise last_error

    @staticmethod
    def _check_response(payload: dict, method: str) -> Optional[RpcError]:
        """Return an RpcError if the JSON-RPC payload carries an error object."""
        error = payload.get("error")
        if not error:
            return None
        if isinstance(error, dict):
            return RpcError(method, error.get("message", "Unknown error"), error.get("code"))
        return RpcError(method, str(error))


def _retry_after(response: httpx.Response) -> Optional[float]:
    """Seconds from a Retry-After header; HTTP-date values are ignored."""
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None
