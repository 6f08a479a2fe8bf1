"""
Tests for contract ID validation and limit parsing
"""

import pytest

from blip.utils.contract_validation import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    InvalidContractIdError,
    is_valid_contract_id,
    parse_limit,
    sanitize_contract_id,
    validate_contract_id,
    validate_contract_ids,
)

CONTRACT_A = "CCW67TSZV3SSS2HXMBQ5JFGCKJNXKZM7UQUWUZPUTHXSTZLEO7SJMI75"
CONTRACT_B = "CAS3J7GYLGXMF6TDJBBYYSE3HQ6BBSMLNUQ34T6TZMYMW2EVH34XOWMA"


class TestValidateContractId:
    """Test validate_contract_id()"""

    def test_accepts_valid_id(self):
        assert validate_contract_id(CONTRACT_A) == CONTRACT_A

    def test_trims_and_upper_cases(self):
        assert validate_contract_id(f"  {CONTRACT_A.lower()}\n") == CONTRACT_A

    @pytest.mark.parametrize("raw", [
        "",
        None,
        42,
        CONTRACT_A[:-1],
        CONTRACT_A + "A",
        "G" + CONTRACT_A[1:],
        CONTRACT_A[:-1] + "-",
        "C' OR 1=1 --" + "A" * 44,
    ])
    def test_rejects_malformed_ids(self, raw):
        with pytest.raises(InvalidContractIdError) as exc_info:
            validate_contract_id(raw)
        assert exc_info.value.contract_id == raw
        assert str(exc_info.value) == "Invalid Soroban contract ID"

    def test_is_value_error(self):
        assert issubclass(InvalidContractIdError, ValueError)

    def test_is_valid_contract_id(self):
        assert is_valid_contract_id(CONTRACT_B)
        assert not is_valid_contract_id("not-a-contract")

    def test_sanitize_non_string(self):
        assert sanitize_contract_id(None) == ""


class TestValidateContractIds:
    def test_deduplicates_in_order(self):
        ids = [CONTRACT_B, CONTRACT_A, CONTRACT_B.lower()]
        assert validate_contract_ids(ids) == [CONTRACT_B, CONTRACT_A]

    def test_rejects_any_invalid(self):
        with pytest.raises(InvalidContractIdError):
            validate_contract_ids([CONTRACT_A, "bogus"])


class TestParseLimit:
    """Test parse_limit()"""

    @pytest.mark.parametrize("raw,expected", [
        (None, DEFAULT_LIMIT),
        ("abc", DEFAULT_LIMIT),
        ("0", DEFAULT_LIMIT),
        (-5, DEFAULT_LIMIT),
        ("25", 25),
        (7, 7),
        (500, MAX_LIMIT),
    ])
    def test_parse(self, raw, expected):
        assert parse_limit(raw) == expected

    def test_custom_bounds(self):
        assert parse_limit(None, default=5, maximum=20) == 5
        assert parse_limit(50, default=5, maximum=20) == 20
