"""
Tests for SavedContractsService against a throwaway SQLite database.

Tests cover:
- creation, duplicates and the default-contract invariant
- pagination and sorting
- nickname updates, set-default and delete with default promotion
- the lookups used by metrics, history and the alert job
"""

import pytest

from blip.services.saved_contracts_service import (
    SavedContractExistsError,
    SavedContractNotFoundError,
    default_nickname,
)

CONTRACT_A = "CCW67TSZV3SSS2HXMBQ5JFGCKJNXKZM7UQUWUZPUTHXSTZLEO7SJMI75"
CONTRACT_B = "CAS3J7GYLGXMF6TDJBBYYSE3HQ6BBSMLNUQ34T6TZMYMW2EVH34XOWMA"
CONTRACT_C = "CDLZFC3SYJYDZT7K67VZ75HPJVIEUVNIXF47ZG2FB2RMQQVU2HHGCYSC"

USER = "user_1"
OTHER_USER = "user_2"


async def _defaults(saved_contracts, user_id):
    page = await saved_contracts.query(user_id, limit=100)
    return [entry["contractId"] for entry in page["results"] if entry["isDefault"]]


class TestCreate:
    """Test saving contracts"""

    @pytest.mark.asyncio
    async def test_first_contract_becomes_default(self, saved_contracts):
        entry = await saved_contracts.create(USER, CONTRACT_A, "Main pool")

        assert entry["contractId"] == CONTRACT_A
        assert entry["nickname"] == "Main pool"
        assert entry["isDefault"] is True
        assert entry["userId"] == USER
        assert entry["createdAt"]

    @pytest.mark.asyncio
    async def test_later_contracts_are_not_default(self, saved_contracts):
        await saved_contracts.create(USER, CONTRACT_A)
        entry = await saved_contracts.create(USER, CONTRACT_B)

        assert entry["isDefault"] is False
        assert await _defaults(saved_contracts, USER) == [CONTRACT_A]

    @pytest.mark.asyncio
    async def test_missing_nickname_gets_default(self, saved_contracts):
        entry = await saved_contracts.create(USER, CONTRACT_A)
        assert entry["nickname"] == default_nickname(CONTRACT_A) == "Contract CCW67TSZ"

    @pytest.mark.asyncio
    async def test_duplicate_rejected(self, saved_contracts):
        await saved_contracts.create(USER, CONTRACT_A)
        with pytest.raises(SavedContractExistsError):
            await saved_contracts.create(USER, CONTRACT_A, "again")

    @pytest.mark.asyncio
    async def test_same_contract_for_two_users(self, saved_contracts):
        await saved_contracts.create(USER, CONTRACT_A, "mine")
        entry = await saved_contracts.create(OTHER_USER, CONTRACT_A, "theirs")

        assert entry["isDefault"] is True
        everything = await saved_contracts.list_all_with_users()
        assert everything == [{
            "contractId": CONTRACT_A,
            "users": [
                {"userId": USER, "nickname": "mine"},
                {"userId": OTHER_USER, "nickname": "theirs"},
            ],
        }]


class TestQuery:
    """Test the paginated listing"""

    @pytest.mark.asyncio
    async def test_pagination(self, saved_contracts):
        for contract_id in (CONTRACT_A, CONTRACT_B, CONTRACT_C):
            await saved_contracts.create(USER, contract_id)

        page = await saved_contracts.query(USER, page=2, limit=2)

        assert page["page"] == 2
        assert page["limit"] == 2
        assert page["totalResults"] == 3
        assert page["totalPages"] == 2
        assert len(page["results"]) == 1

    @pytest.mark.asyncio
    async def test_sort_by_nickname(self, saved_contracts):
        await saved_contracts.create(USER, CONTRACT_A, "bravo")
        await saved_contracts.create(USER, CONTRACT_B, "alpha")
        await saved_contracts.create(USER, CONTRACT_C, "charlie")

        ascending = await saved_contracts.query(USER, sort_by="nickname", sort_order="asc")
        descending = await saved_contracts.query(USER, sort_by="nickname", sort_order="desc")

        assert [e["nickname"] for e in ascending["results"]] == ["alpha", "bravo", "charlie"]
        assert [e["nickname"] for e in descending["results"]] == ["charlie", "bravo", "alpha"]

    @pytest.mark.asyncio
    async def test_only_own_contracts(self, saved_contracts):
        await saved_contracts.create(USER, CONTRACT_A)
        await saved_contracts.create(OTHER_USER, CONTRACT_B)

        page = await saved_contracts.query(USER)

        assert [e["contractId"] for e in page["results"]] == [CONTRACT_A]

    @pytest.mark.asyncio
    async def test_empty(self, saved_contracts):
        page = await saved_contracts.query(USER)
        assert page == {"results": [], "page": 1, "limit": 10, "totalPages": 0, "totalResults": 0}


class TestUpdates:
    """Test nickname, default and delete operations"""

    @pytest.mark.asyncio
    async def test_get_missing(self, saved_contracts):
        with pytest.raises(SavedContractNotFoundError):
            await saved_contracts.get(USER, CONTRACT_A)

    @pytest.mark.asyncio
    async def test_update_nickname(self, saved_contracts):
        await saved_contracts.create(USER, CONTRACT_A, "old")

        updated = await saved_contracts.update_nickname(USER, CONTRACT_A, "new")

        assert updated["nickname"] == "new"
        assert (await saved_contracts.get(USER, CONTRACT_A))["nickname"] == "new"

    @pytest.mark.asyncio
    async def test_update_other_users_contract_not_found(self, saved_contracts):
        await saved_contracts.create(OTHER_USER, CONTRACT_A)
        with pytest.raises(SavedContractNotFoundError):
            await saved_contracts.update_nickname(USER, CONTRACT_A, "stolen")

    @pytest.mark.asyncio
    async def test_set_default_keeps_single_default(self, saved_contracts):
        await saved_contracts.create(USER, CONTRACT_A)
        await saved_contracts.create(USER, CONTRACT_B)

        entry = await saved_contracts.set_default(USER, CONTRACT_B)

        assert entry["isDefault"] is True
        assert await _defaults(saved_contracts, USER) == [CONTRACT_B]

    @pytest.mark.asyncio
    async def test_set_default_missing(self, saved_contracts):
        with pytest.raises(SavedContractNotFoundError):
            await saved_contracts.set_default(USER, CONTRACT_A)

    @pytest.mark.asyncio
    async def test_delete_default_promotes_another(self, saved_contracts):
        await saved_contracts.create(USER, CONTRACT_A)
        await saved_contracts.create(USER, CONTRACT_B)

        await saved_contracts.delete(USER, CONTRACT_A)

        assert await _defaults(saved_contracts, USER) == [CONTRACT_B]

    @pytest.mark.asyncio
    async def test_delete_non_default_keeps_default(self, saved_contracts):
        await saved_contracts.create(USER, CONTRACT_A)
        await saved_contracts.create(USER, CONTRACT_B)

        await saved_contracts.delete(USER, CONTRACT_B)

        assert await _defaults(saved_contracts, USER) == [CONTRACT_A]

    @pytest.mark.asyncio
    async def test_delete_last_entry_removes_contract(self, saved_contracts):
        await saved_contracts.create(USER, CONTRACT_A)

        await saved_contracts.delete(USER, CONTRACT_A)

        assert await saved_contracts.list_contract_ids(USER) == []
        assert await saved_contracts.list_all_with_users() == []

    @pytest.mark.asyncio
    async def test_delete_keeps_contract_saved_by_others(self, saved_contracts):
        await saved_contracts.create(USER, CONTRACT_A)
        await saved_contracts.create(OTHER_USER, CONTRACT_A)

        await saved_contracts.delete(USER, CONTRACT_A)

        assert await saved_contracts.list_contract_ids(OTHER_USER) == [CONTRACT_A]

    @pytest.mark.asyncio
    async def test_delete_missing(self, saved_contracts):
        with pytest.raises(SavedContractNotFoundError):
            await saved_contracts.delete(USER, CONTRACT_A)


class TestLookups:
    @pytest.mark.asyncio
    async def test_list_contract_ids_default_first(self, saved_contracts):
        await saved_contracts.create(USER, CONTRACT_A)
        await saved_contracts.create(USER, CONTRACT_B)
        await saved_contracts.set_default(USER, CONTRACT_B)

        ids = await saved_contracts.list_contract_ids(USER)

        assert ids[0] == CONTRACT_B
        assert set(ids) == {CONTRACT_A, CONTRACT_B}

    @pytest.mark.asyncio
    async def test_get_nicknames(self, saved_contracts):
        await saved_contracts.create(USER, CONTRACT_A, "Main pool")
        await saved_contracts.create(OTHER_USER, CONTRACT_B, "Not yours")

        nicknames = await saved_contracts.get_nicknames(USER, [CONTRACT_A, CONTRACT_B])

        assert nicknames == {CONTRACT_A: "Main pool"}

    @pytest.mark.asyncio
    async def test_get_nicknames_empty_input(self, saved_contracts):
        assert await saved_contracts.get_nicknames(USER, []) == {}
