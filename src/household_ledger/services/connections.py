import asyncio

from household_ledger.db.schema import ProviderConnection
from household_ledger.integration.plaid import PlaidClient
from household_ledger.ledger.repository import Ledger
from household_ledger.logger import get_logger

logger = get_logger(__name__)


class ConnectionService:
    def __init__(self, ledger: Ledger, plaid: PlaidClient) -> None:
        self.ledger = ledger
        self.plaid = plaid

    async def create_link_token(self, user_id: str) -> str:
        return await self.plaid.link_token_create(user_id)

    async def exchange_public_token(
        self,
        household_id: str,
        public_token: str,
        institution_name: str | None = None,
    ) -> tuple[ProviderConnection, int]:
        """Exchange the token, store the connection (cursor empty) and its accounts."""
        access_token, item_id = await self.plaid.item_public_token_exchange(public_token)
        connection = await asyncio.to_thread(
            self.ledger.create_connection,
            household_id,
            item_id,
            access_token,
            institution_name,
        )
        accounts = await self.plaid.accounts_get(access_token)
        count = await asyncio.to_thread(
            self.ledger.upsert_provider_accounts,
            household_id,
            connection.id,
            accounts,
        )
        logger.info(
            "[SYNC] Connection %s linked for household %s with %s account(s).",
            connection.id,
            household_id,
            count,
        )
        return connection, count
