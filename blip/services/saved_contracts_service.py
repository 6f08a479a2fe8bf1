"""
Saved Contracts Service
Manages the contracts each user tracks, their nicknames and the user's
default contract.

Invariant: a user with at least one saved contract has exactly one
entry with is_default set. Every write that could break it (create,
set_default, delete) restores it inside the same transaction.
"""

import math
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import delete as sql_delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blip.models.database_models import SavedContract, UserSavedContract, utcnow
from blip.services.database import DatabaseService

logger = structlog.get_logger(__name__)


class SavedContractNotFoundError(LookupError):
    """The user has not saved this contract"""

    def __init__(self, contract_id: str):
        self.contract_id = contract_id
        super().__init__(f"Saved contract {contract_id} not found")


class SavedContractExistsError(ValueError):
    """The user already saved this contract"""

    def __init__(self, contract_id: str):
        self.contract_id = contract_id
        super().__init__(f"Contract {contract_id} is already saved")


SORT_COLUMNS = {
    "createdAt": UserSavedContract.created_at,
    "updatedAt": UserSavedContract.updated_at,
    "nickname": UserSavedContract.nickname,
    "contractId": SavedContract.contract_id,
}


def default_nickname(contract_id: str) -> str:
    return f"Contract {contract_id[:8]}"


class SavedContractsService:
    """Service for managing saved contracts"""

    def __init__(self, db: DatabaseService):
        self.db = db

    async def _find_entry(
        self,
        session: AsyncSession,
        user_id: str,
        contract_id: str,
    ) -> Optional[UserSavedContract]:
        result = await session.execute(
            select(UserSavedContract)
            .join(UserSavedContract.saved_contract)
            .where(
                UserSavedContract.user_id == user_id,
                SavedContract.contract_id == contract_id,
            )
        )
        return result.scalars().first()

    async def _get_entry(
        self,
        session: AsyncSession,
        user_id: str,
        contract_id: str,
    ) -> UserSavedContract:
        entry = await self._find_entry(session, user_id, contract_id)
        if entry is None:
            raise SavedContractNotFoundError(contract_id)
        return entry

    async def _has_default(self, session: AsyncSession, user_id: str) -> bool:
        result = await session.execute(
            select(func.count(UserSavedContract.id)).where(
                UserSavedContract.user_id == user_id,
                UserSavedContract.is_default.is_(True),
            )
        )
        return result.scalar_one() > 0

    async def create(
        self,
        user_id: str,
        contract_id: str,
        nickname: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Save a contract for a user.

        The entry becomes the user's default when the user has none yet.

        Raises:
            SavedContractExistsError: If the user already saved the contract
        """
        try:
            async with self.db.session() as session:
                if await self._find_entry(session, user_id, contract_id) is not None:
                    raise SavedContractExistsError(contract_id)

                result = await session.execute(
                    select(SavedContract).where(SavedContract.contract_id == contract_id)
                )
                saved_contract = result.scalars().first()
                if saved_contract is None:
                    saved_contract = SavedContract(contract_id=contract_id)
                    session.add(saved_contract)
                    await session.flush()

                entry = UserSavedContract(
                    user_id=user_id,
                    saved_contract=saved_contract,
                    nickname=nickname or default_nickname(contract_id),
                    is_default=not await self._has_default(session, user_id),
                )
                session.add(entry)
                await session.flush()
                payload = entry.to_dict()
        except IntegrityError:
            # concurrent save of the same contract by the same user
            raise SavedContractExistsError(contract_id)

        logger.info(
            "saved_contract_created",
            user_id=user_id,
            contract_id=contract_id,
            is_default=payload["isDefault"],
        )
        return payload

    async def query(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        """Paginated list of a user's saved contracts."""
        page = max(page, 1)
        limit = max(limit, 1)
        column = SORT_COLUMNS.get(sort_by, UserSavedContract.created_at)
        ordering = column.asc() if sort_order == "asc" else column.desc()

        async with self.db.session() as session:
            total = (await session.execute(
                select(func.count(UserSavedContract.id)).where(UserSavedContract.user_id == user_id)
            )).scalar_one()

            result = await session.execute(
                select(UserSavedContract)
                .join(UserSavedContract.saved_contract)
                .where(UserSavedContract.user_id == user_id)
                .order_by(ordering, UserSavedContract.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            results = [entry.to_dict() for entry in result.scalars().all()]

        return {
            "results": results,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit),
            "totalResults": total,
        }

    async def get(self, user_id: str, contract_id: str) -> Dict[str, Any]:
        """
        Raises:
            SavedContractNotFoundError: If the user has not saved the contract
        """
        async with self.db.session() as session:
            entry = await self._get_entry(session, user_id, contract_id)
            return entry.to_dict()

    async def update_nickname(self, user_id: str, contract_id: str, nickname: str) -> Dict[str, Any]:
        async with self.db.session() as session:
            entry = await self._get_entry(session, user_id, contract_id)
            entry.nickname = nickname
            entry.updated_at = utcnow()
            await session.flush()
            payload = entry.to_dict()

        logger.info("saved_contract_renamed", user_id=user_id, contract_id=contract_id)
        return payload

    async def set_default(self, user_id: str, contract_id: str) -> Dict[str, Any]:
        """Make ``contract_id`` the user's only default contract."""
        async with self.db.session() as session:
            entry = await self._get_entry(session, user_id, contract_id)
            await session.execute(
                update(UserSavedContract)
                .where(
                    UserSavedContract.user_id == user_id,
                    UserSavedContract.id != entry.id,
                    UserSavedContract.is_default.is_(True),
                )
                .values(is_default=False, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            entry.is_default = True
            entry.updated_at = utcnow()
            await session.flush()
            payload = entry.to_dict()

        logger.info("saved_contract_default_set", user_id=user_id, contract_id=contract_id)
        return payload

    async def delete(self, user_id: str, contract_id: str) -> None:
        """
        Remove a saved contract from a user's list.

        When the removed entry was the default, the most recently created
        remaining entry becomes the default.
        """
        promoted = None
        async with self.db.session() as session:
            entry = await self._get_entry(session, user_id, contract_id)
            was_default = entry.is_default
            saved_contract_id = entry.saved_contract_id

            await session.delete(entry)
            await session.flush()

            if was_default:
                result = await session.execute(
                    select(UserSavedContract)
                    .where(UserSavedContract.user_id == user_id)
                    .order_by(UserSavedContract.created_at.desc(), UserSavedContract.id.desc())
                    .limit(1)
                )
                replacement = result.scalars().first()
                if replacement is not None:
                    replacement.is_default = True
                    replacement.updated_at = utcnow()
                    promoted = replacement.contract_id

            remaining = (await session.execute(
                select(func.count(UserSavedContract.id)).where(
                    UserSavedContract.saved_contract_id == saved_contract_id
                )
            )).scalar_one()
            if remaining == 0:
                await session.execute(
                    sql_delete(SavedContract).where(SavedContract.id == saved_contract_id)
                )

        logger.info(
            "saved_contract_deleted",
            user_id=user_id,
            contract_id=contract_id,
            promoted_default=promoted,
        )

    async def list_contract_ids(self, user_id: str) -> List[str]:
        """All contract IDs a user has saved, default first."""
        async with self.db.session() as session:
            result = await session.execute(
                select(SavedContract.contract_id)
                .join(UserSavedContract, UserSavedContract.saved_contract_id == SavedContract.id)
                .where(UserSavedContract.user_id == user_id)
                .order_by(UserSavedContract.is_default.desc(), UserSavedContract.created_at.desc())
            )
            return list(result.scalars().all())

    async def get_nicknames(self, user_id: str, contract_ids: Iterable[str]) -> Dict[str, str]:
        """contract_id -> nickname for the given IDs the user has saved."""
        contract_ids = list(contract_ids)
        if not contract_ids:
            return {}
        async with self.db.session() as session:
            result = await session.execute(
                select(SavedContract.contract_id, UserSavedContract.nickname)
                .join(UserSavedContract, UserSavedContract.saved_contract_id == SavedContract.id)
                .where(
                    UserSavedContract.user_id == user_id,
                    SavedContract.contract_id.in_(contract_ids),
                )
            )
            return {row.contract_id: row.nickname for row in result.all() if row.nickname}

    async def list_all_with_users(self) -> List[Dict[str, Any]]:
        """Every saved contract with the users tracking it (used by the alert job)."""
        async with self.db.session() as session:
            result = await session.execute(
                select(SavedContract.contract_id, UserSavedContract.user_id, UserSavedContract.nickname)
                .join(UserSavedContract, UserSavedContract.saved_contract_id == SavedContract.id)
                .order_by(SavedContract.contract_id, UserSavedContract.user_id)
            )
            grouped: Dict[str, List[Dict[str, Any]]] = {}
            for row in result.all():
                grouped.setdefault(row.contract_id, []).append(
                    {"userId": row.user_id, "nickname": row.nickname}
                )

        return [
            {"contractId": contract_id, "users": users}
            for contract_id, users in grouped.items()
        ]
