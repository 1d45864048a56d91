from datetime import date
from decimal import Decimal

from conftest import make_candidate

from household_ledger.models import SplitLine


def test_spending_counts_split_children_not_parent(ledger, household, category_ids):
    ledger.ingest(
        household.id,
        [
            make_candidate("Big Box Store", "100.00", date(2024, 3, 2)),
            make_candidate("Electric", "80.00", date(2024, 3, 5), category_id=category_ids["utilities"]),
            make_candidate("Refund", "-15.00", date(2024, 3, 6)),
            make_candidate("Last month", "999.00", date(2024, 2, 28)),
        ],
    )
    big = next(row for row in ledger.list_transactions(household.id) if row.name == "Big Box Store")
    ledger.split(
        household.id,
        big.id,
        [
            SplitLine(amount=Decimal("70.00"), category_id=category_ids["groceries"]),
            SplitLine(amount=Decimal("30.00"), category_id=category_ids["utilities"]),
        ],
    )

    spending = ledger.spending_by_category(household.id, date(2024, 3, 1), date(2024, 3, 31))
    totals = {spend.category_name: spend.total for spend in spending}
    assert totals == {"Utilities": Decimal("110.00"), "Groceries": Decimal("70.00")}
    assert spending[0].category_name == "Utilities"

    flow = ledger.cash_flow(household.id, date(2024, 3, 1), date(2024, 3, 31))
    assert flow.expenses == Decimal("180.00")
    assert flow.income == Decimal("15.00")


def test_uncategorized_spending_is_its_own_bucket(ledger, household):
    ledger.ingest(household.id, [make_candidate("Mystery", "9.00", date(2024, 3, 2))])
    (spend,) = ledger.spending_by_category(household.id, date(2024, 3, 1), date(2024, 3, 31))
    assert spend.category_id is None
    assert spend.category_name is None
    assert spend.total == Decimal("9.00")


def test_recent_hides_split_parents(ledger, household):
    ledger.ingest(
        household.id,
        [make_candidate(f"Txn {day}", "10.00", date(2024, 3, day)) for day in range(1, 13)],
    )
    rows = ledger.recent(household.id)
    assert len(rows) == 10
    assert rows[0].name == "Txn 12"

    ledger.split(household.id, rows[0].id, [SplitLine(amount=Decimal("5.00"))] * 2)
    names = [row.name for row in ledger.recent(household.id, limit=3)]
    assert names == ["Txn 12", "Txn 12", "Txn 11"]
