from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest

from household_ledger.db.schema import Household
from household_ledger.db.session import create_ledger_engine, create_session_factory, init_db
from household_ledger.domain.provider_categories import ProviderCategoryMap
from household_ledger.ledger.repository import Ledger
from household_ledger.models import SourceChannel, TransactionCandidate

CATEGORY_NAMES = ["Food & Dining", "Groceries", "Shopping", "Utilities", "Other", "Transfer"]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def ledger() -> Generator[Ledger, None, None]:
    engine = create_ledger_engine("sqlite://")
    init_db(engine)
    yield Ledger(create_session_factory(engine))
    engine.dispose()


@pytest.fixture
def household(ledger: Ledger) -> Household:
    return ledger.create_household("Home", "alice", CATEGORY_NAMES)


@pytest.fixture
def category_ids(ledger: Ledger, household: Household) -> dict[str, str]:
    return ledger.category_ids_by_name(household.id)


@pytest.fixture
def category_map() -> ProviderCategoryMap:
    return ProviderCategoryMap(
        version=1,
        mapping={
            "FOOD_AND_DRINK": "Food & Dining",
            "GENERAL_MERCHANDISE": "Shopping",
            "RENT_AND_UTILITIES": "Utilities",
        },
    )


def make_candidate(
    name: str = "Grocery Store",
    amount: str = "42.10",
    txn_date: date = date(2024, 3, 1),
    channel: SourceChannel = SourceChannel.CSV,
    **fields,
) -> TransactionCandidate:
    return TransactionCandidate(
        date=txn_date,
        name=name,
        amount=Decimal(amount),
        source_channel=channel,
        **fields,
    )
