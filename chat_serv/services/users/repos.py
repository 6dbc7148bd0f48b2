"""User repositories for account lookups."""

from chat_serv.common.base_repos import BaseDBRepository
from chat_serv.models.db_models import AccountDB
from chat_serv.models.api_models import UserSummary


class AccountsRepository(BaseDBRepository):
    """Read-only access to accounts owned by the auth service."""

    repository_name = "accounts"
    table_name = "users"

    async def get_by_id(self, account_id: int) -> AccountDB | None:
        """Get account by ID."""

        row = await self.fetchrow(
            f"SELECT id, name, email, profile_image_key FROM {self._get_table_name()} WHERE id = $1",
            account_id
        )

        return AccountDB(**row) if row else None

    async def get_by_ids(self, account_ids: list[int]) -> dict[int, AccountDB]:
        """Get accounts keyed by ID."""

        if not account_ids:
            return {}

        rows = await self.fetch(
            f"SELECT id, name, email, profile_image_key FROM {self._get_table_name()} WHERE id = ANY($1::int[])",
            list(set(account_ids))
        )

        return {row["id"]: AccountDB(**row) for row in rows}

    @staticmethod
    def to_summary(account_db: AccountDB | None) -> UserSummary | None:
        """Convert DB model to the public summary."""

        if account_db is None:
            return None

        return UserSummary(
            id=account_db.id,
            name=account_db.name,
            profile_image_key=account_db.profile_image_key
        )
