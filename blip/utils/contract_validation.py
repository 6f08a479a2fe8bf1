"""
Contract ID Validation Utilities

Soroban contract IDs are strkey-encoded: 56 characters, leading 'C'.
IDs end up bound into Athena queries, so anything that does not match the
shape is rejected before it reaches the warehouse layer.
"""

import re
from typing import Any, Iterable, List

CONTRACT_ID_PATTERN = re.compile(r'^C[A-Z0-9]{55}$')

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


class InvalidContractIdError(ValueError):
    """Raised when a contract ID does not have the Soroban shape"""

    def __init__(self, contract_id: Any = None):
        self.contract_id = contract_id
        super().__init__("Invalid Soroban contract ID")


def sanitize_contract_id(raw: Any) -> str:
    """Trim and upper-case a raw contract ID."""
    if not isinstance(raw, str):
        return ""
    return raw.strip().upper()


def is_valid_contract_id(raw: Any) -> bool:
    return bool(CONTRACT_ID_PATTERN.match(sanitize_contract_id(raw)))


def validate_contract_id(raw: Any) -> str:
    """
    Sanitize and validate a contract ID.

    Args:
        raw: Untrusted contract ID

    Returns:
        The trimmed, upper-cased contract ID

    Raises:
        InvalidContractIdError: If the ID does not match the Soroban shape
    """
    contract_id = sanitize_contract_id(raw)
    if not CONTRACT_ID_PATTERN.match(contract_id):
        raise InvalidContractIdError(raw)
    return contract_id


def validate_contract_ids(raw_ids: Iterable[Any]) -> List[str]:
    """Validate several IDs, dropping duplicates while keeping order."""
    seen = set()
    result = []
    for raw in raw_ids:
        contract_id = validate_contract_id(raw)
        if contract_id not in seen:
            seen.add(contract_id)
            result.append(contract_id)
    return result


def parse_limit(raw: Any, default: int = DEFAULT_LIMIT, maximum: int = MAX_LIMIT) -> int:
    """
    Parse a result limit from a query parameter.

    Non-numeric or non-positive values give ``default``; larger values are
    capped at ``maximum``.
    """
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    if value <= 0:
        return default
    return min(value, maximum)
