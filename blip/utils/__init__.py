"""Utilities package for the Blip Soroban Metrics API"""

from blip.utils.contract_validation import (
    InvalidContractIdError,
    is_valid_contract_id,
    parse_limit,
    validate_contract_id,
    validate_contract_ids,
)

__all__ = [
    'InvalidContractIdError',
    'is_valid_contract_id',
    'parse_limit',
    'validate_contract_id',
    'validate_contract_ids',
]
