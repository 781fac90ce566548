"""
Account resolution for swap instructions.

Maps a transaction's flat account-key list to canonical public keys and the
Swap instruction's referenced accounts to named roles. Equality is always by
32-byte address, so the same account written as a plain string, a
{"pubkey": ...} dict or a Pubkey resolves to the same index.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Iterable, Optional, Sequence, Union

from solders.pubkey import Pubkey


class SwapAccountPosition(IntEnum):
    """Account positions of the SPL token-swap Swap instruction."""
    SWAP = 0
    AUTHORITY = 1
    USER_TRANSFER_AUTHORITY = 2
    USER_SOURCE = 3
    POOL_SOURCE = 4
    POOL_DESTINATION = 5
    USER_DESTINATION = 6
    POOL_MINT = 7
    FEE_ACCOUNT = 8


@dataclass(frozen=True)
class SwapAccountRoles:
    """Indices into the transaction account-key list for each swap role.

    Vault indices are None when the vault does not appear in the transaction.
    """
    swap_account: Pubkey
    user_source: int
    user_destination: int
    pool_source: Optional[int] = None
    pool_destination: Optional[int] = None
    vault_a: Optional[int] = None
    vault_b: Optional[int] = None


KeyLike = Union[str, Pubkey, dict[str, Any]]


def to_pubkey(key: KeyLike) -> Pubkey:
    """Convert any supported key representation to a Pubkey.

    Raises:
        ValueError: If the key is not a valid base58 address.
    """
    if isinstance(key, Pubkey):
        return key
    if isinstance(key, dict):
        key = key["pubkey"]
    return Pubkey.from_string(str(key))


def resolve_account_keys(account_keys: Iterable[KeyLike]) -> list[Pubkey]:
    """Normalize a message account-key list (legacy or v0) to Pubkeys."""
    return [to_pubkey(k) for k in account_keys]


def index_of(keys: Sequence[Pubkey], key: KeyLike) -> int:
    """Position of key in keys, or -1."""
    try:
        target = to_pubkey(key)
    except (ValueError, KeyError):
        return -1
    for i, candidate in enumerate(keys):
        if bytes(candidate) == bytes(target):
            return i
    return -1


def resolve_swap_roles(
    keys: Sequence[Pubkey],
    instruction_accounts: Sequence[KeyLike],
    vault_a: Optional[KeyLike] = None,
    vault_b: Optional[KeyLike] = None,
) -> Optional[SwapAccountRoles]:
    """Resolve named roles for one Swap instruction.

    Args:
        keys: Resolved transaction account keys.
        instruction_accounts: The instruction's referenced accounts, in order.
        vault_a: Configured pool vault for mint A (optional).
        vault_b: Configured pool vault for mint B (optional).

    Returns:
        SwapAccountRoles, or None if the user source or destination account
        cannot be located in the transaction.
    """
    if len(instruction_accounts) <= SwapAccountPosition.USER_DESTINATION:
        return None

    user_source = index_of(keys, instruction_accounts[SwapAccountPosition.USER_SOURCE])
    user_destination = index_of(keys, instruction_accounts[SwapAccountPosition.USER_DESTINATION])
    if user_source < 0 or user_destination < 0:
        return None

    try:
        swap_account = to_pubkey(instruction_accounts[SwapAccountPosition.SWAP])
    except (ValueError, KeyError):
        return None

    def _optional_index(key: Optional[KeyLike]) -> Optional[int]:
        if key is None:
            return None
        idx = index_of(keys, key)
        return idx if idx >= 0 else None

    return SwapAccountRoles(
        swap_account=swap_account,
        user_source=user_source,
        user_destination=user_destination,
        pool_source=_optional_index(instruction_accounts[SwapAccountPosition.POOL_SOURCE]),
        pool_destination=_optional_index(instruction_accounts[SwapAccountPosition.POOL_DESTINATION]),
        vault_a=_optional_index(vault_a),
        vault_b=_optional_index(vault_b),
    )
