from unittest.mock import AsyncMock, MagicMock

import pytest

from household_ledger.errors import AuthorizationError, InvalidInputError, NotFoundError
from household_ledger.models import ClassificationSummary, MemberRole
from household_ledger.services.connections import ConnectionService
from household_ledger.services.households import CONNECTION_ROLES, HouseholdService, default_category_names
from household_ledger.services.imports import ImportService

CSV_TEXT = "Date,Description,Amount\n03/01/2024,Grocery Store,42.10\n"


def test_default_categories_end_with_transfer(category_map):
    names = default_category_names(category_map)
    assert names[-1] == "Transfer"
    assert {"Food & Dining", "Shopping", "Utilities", "Groceries", "Other"} <= set(names)
    assert len(names) == len(set(names))


def test_authorize_checks_membership_and_role(ledger, category_map):
    service = HouseholdService(ledger, category_map)
    household = service.create("Home", "alice")
    service.add_member(household.id, "bob", MemberRole.MEMBER)

    assert service.authorize(household.id, "alice", CONNECTION_ROLES) is MemberRole.OWNER
    assert service.authorize(household.id, "bob") is MemberRole.MEMBER
    with pytest.raises(AuthorizationError):
        service.authorize(household.id, "bob", CONNECTION_ROLES)
    with pytest.raises(AuthorizationError):
        service.authorize(household.id, "mallory")
    with pytest.raises(NotFoundError):
        service.authorize("missing", "alice")


@pytest.mark.anyio
async def test_exchange_stores_connection_and_accounts(ledger, household):
    plaid = MagicMock()
    plaid.item_public_token_exchange = AsyncMock(return_value=("access-1", "item-1"))
    plaid.accounts_get = AsyncMock(
        return_value=[
            {"account_id": "pa-1", "name": "Checking", "balances": {"current": 50}},
            {"account_id": "pa-2", "name": "Savings", "type": "depository", "subtype": "savings"},
        ]
    )
    service = ConnectionService(ledger, plaid)

    connection, count = await service.exchange_public_token(household.id, "public-1", "Test Bank")

    assert count == 2
    assert connection.cursor is None
    assert connection.institution_name == "Test Bank"
    plaid.accounts_get.assert_awaited_once_with("access-1")
    accounts = {account.provider_account_id: account for account in ledger.list_accounts(household.id)}
    assert accounts["pa-1"].connection_id == connection.id
    assert accounts["pa-2"].subtype == "savings"


@pytest.mark.anyio
async def test_relinking_an_item_keeps_one_connection(ledger, household):
    plaid = MagicMock()
    plaid.item_public_token_exchange = AsyncMock(side_effect=[("access-1", "item-1"), ("access-2", "item-1")])
    plaid.accounts_get = AsyncMock(return_value=[])
    service = ConnectionService(ledger, plaid)

    first, _ = await service.exchange_public_token(household.id, "public-1")
    second, _ = await service.exchange_public_token(household.id, "public-2")

    assert first.id == second.id
    assert ledger.load_sync_state(first.id).access_token == "access-2"


@pytest.mark.anyio
async def test_import_runs_classification_when_enabled(ledger, category_map):
    household = ledger.create_household("Home", "alice", ["Groceries"], auto_classify_imports=True)
    classification = MagicMock()
    classification.classify_household = AsyncMock(return_value=ClassificationSummary(classified=1))
    service = ImportService(ledger, classification)

    summary = await service.import_csv(household.id, CSV_TEXT)

    assert summary.added == 1
    assert summary.classified == 1
    classification.classify_household.assert_awaited_once_with(household.id)


@pytest.mark.anyio
async def test_import_keeps_rows_when_classification_fails(ledger, household):
    ledger.set_auto_classify(household.id, True)
    classification = MagicMock()
    classification.classify_household = AsyncMock(side_effect=RuntimeError("model down"))
    service = ImportService(ledger, classification)

    summary = await service.import_csv(household.id, CSV_TEXT)

    assert summary.added == 1
    assert summary.classify_error == "model down"
    assert len(ledger.list_transactions(household.id)) == 1


@pytest.mark.anyio
async def test_import_without_auto_classify_skips_pass(ledger, household):
    classification = MagicMock()
    classification.classify_household = AsyncMock()
    service = ImportService(ledger, classification)

    summary = await service.import_csv(household.id, CSV_TEXT)

    assert summary.classified is None
    classification.classify_household.assert_not_awaited()


@pytest.mark.anyio
async def test_import_rejects_unknown_mapping_and_account(ledger, household):
    service = ImportService(ledger)
    with pytest.raises(InvalidInputError):
        await service.import_csv(household.id, "when,what,howmuch\n2024-03-01,Tea,3\n")
    with pytest.raises(NotFoundError):
        await service.import_csv(household.id, CSV_TEXT, account_id="missing")
