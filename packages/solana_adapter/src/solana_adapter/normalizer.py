"""Convert Solana RPC payloads to swapcore objects.

This module normalizes raw JSON-RPC results (getTransaction,
getSignaturesForAddress, logsNotification) into structured values that the
reconstructor and the reconciliation controller consume.

Solana RPC Reference:
- getTransaction: https://solana.com/docs/rpc/http/gettransaction
- logsSubscribe: https://solana.com/docs/rpc/websocket/logssubscribe
"""

from dataclasses import dataclass, field
from typing import Any, Optional
import logging

import base58

from swapcore.transaction import InstructionData, LedgerTransaction, TokenBalance


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignatureInfo:
    """One entry of getSignaturesForAddress."""
    signature: str
    slot: int
    block_time: Optional[int] = None
    err: Any = None


@dataclass(frozen=True)
class LogNotification:
    """A logsSubscribe notification: a transaction mentioning the watched address."""
    signature: str
    slot: int
    err: Any = None
    logs: tuple[str, ...] = field(default_factory=tuple)


class SolanaNormalizer:
    """Converts raw Solana RPC results to swapcore objects.

    Responsibilities:
    - Flatten legacy and v0 account key lists
    - Decode base58 instruction payloads
    - Map index-based (json) and address-based (jsonParsed) instructions alike
    - Parse token balance snapshots into native integer amounts
    """

    def normalize_transaction(self, result: dict, signature: Optional[str] = None) -> LedgerTransaction:
        """Convert a getTransaction result to a LedgerTransaction.

        jsonParsed format (abridged):
        {
            "slot": 312345678,
            "blockTime": 1717000000,
            "meta": {
                "err": null,
                "preTokenBalances": [
                    {"accountIndex": 1, "mint": "...", "owner": "...",
                     "uiTokenAmount": {"amount": "5000000000", "decimals": 9, ...}}
                ],
                "postTokenBalances": [...]
            },
            "transaction": {
                "signatures": ["5h6x..."],
                "message": {
                    "accountKeys": [{"pubkey": "...", "signer": true, ...}],
                    "instructions": [
                        {"programId": "...", "accounts": ["..."], "data": "base58"},
                        {"programId": "...", "program": "spl-token", "parsed": {...}}
                    ]
                }
            }
        }

        Args:
            result: getTransaction result (non-null)
            signature: Signature to use when the payload carries none

        Returns:
            LedgerTransaction

        Raises:
            ValueError: If the payload has no transaction message
        """
        transaction = result.get("transaction") or {}
        message = transaction.get("message")
        if message is None:
            raise ValueError(f"Transaction payload for {signature} has no message")

        meta = result.get("meta") or {}
        signatures = transaction.get("signatures") or []
        account_keys = tuple(self._account_keys(message, meta))

        return LedgerTransaction(
            signature=signatures[0] if signatures else signature,
            slot=int(result.get("slot", 0)),
            block_time=result.get("blockTime"),
            account_keys=account_keys,
            instructions=tuple(
                self._instruction(raw, account_keys) for raw in message.get("instructions", [])
            ),
            pre_token_balances=tuple(self._token_balance(b) for b in meta.get("preTokenBalances") or []),
            post_token_balances=tuple(self._token_balance(b) for b in meta.get("postTokenBalances") or []),
            err=meta.get("err"),
        )

    def normalize_signature_info(self, info: dict) -> SignatureInfo:
        """Convert one getSignaturesForAddress entry."""
        return SignatureInfo(
            signature=info["signature"],
            slot=int(info.get("slot", 0)),
            block_time=info.get("blockTime"),
            err=info.get("err"),
        )

    def normalize_log_notification(self, message: dict) -> Optional[LogNotification]:
        """Convert a logsNotification message; None for anything else.

        Format:
        {
            "jsonrpc": "2.0",
            "method": "logsNotification",
            "params": {
                "result": {
                    "context": {"slot": 5208469},
                    "value": {"signature": "5h6x...", "err": null, "logs": [...]}
                },
                "subscription": 24040
            }
        }
        """
        if message.get("method") != "logsNotification":
            return None
        result = message.get("params", {}).get("result", {})
        value = result.get("value") or {}
        signature = value.get("signature")
        if not signature:
            logger.debug(f"logsNotification without signature: {message}")
            return None
        return LogNotification(
            signature=signature,
            slot=int(result.get("context", {}).get("slot", 0)),
            err=value.get("err"),
            logs=tuple(value.get("logs") or ()),
        )

    @staticmethod
    def _account_keys(message: dict, meta: dict) -> list:
        keys = list(message.get("accountKeys", []))
        # json (non-parsed) v0 messages list lookup-table addresses in meta
        loaded = meta.get("loadedAddresses") or {}
        if loaded and keys and isinstance(keys[0], str):
            keys.extend(loaded.get("writable", []))
            keys.extend(loaded.get("readonly", []))
        return keys

    @staticmethod
    def _key_str(key) -> str:
        return key["pubkey"] if isinstance(key, dict) else str(key)

    def _instruction(self, raw: dict, account_keys: tuple) -> InstructionData:
        if "programIdIndex" in raw:
            program_id = self._key_str(account_keys[raw["programIdIndex"]])
            accounts = tuple(self._key_str(account_keys[i]) for i in raw.get("accounts", []))
        else:
            program_id = raw.get("programId", "")
            accounts = tuple(raw.get("accounts", []))

        # Instructions the node could parse carry no raw payload
        data = b""
        if isinstance(raw.get("data"), str):
            try:
                data = base58.b58decode(raw["data"])
            except ValueError:
                logger.debug(f"Undecodable instruction data for program {program_id}")

        return InstructionData(program_id=program_id, accounts=accounts, data=data)

    @staticmethod
    def _token_balance(raw: dict) -> TokenBalance:
        amount = raw.get("uiTokenAmount", {})
        return TokenBalance(
            account_index=int(raw["accountIndex"]),
            mint=raw["mint"],
            amount=int(amount.get("amount", "0")),
            decimals=amount.get("decimals"),
            owner=raw.get("owner"),
        )
