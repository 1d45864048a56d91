from datetime import date
from decimal import Decimal

from conftest import make_candidate

from household_ledger.models import ClassifiedBy, SourceChannel, TransactionFilters


def test_reimporting_the_same_csv_adds_nothing(ledger, household):
    rows = [
        make_candidate("Grocery Store", "42.10"),
        make_candidate("Coffee", "4.50", date(2024, 3, 2)),
    ]
    first = ledger.ingest(household.id, rows)
    second = ledger.ingest(household.id, rows)

    assert (first.added, first.modified, first.skipped) == (2, 0, 0)
    assert (second.added, second.modified, second.skipped) == (0, 0, 2)
    assert len(ledger.list_transactions(household.id)) == 2


def test_equal_amounts_with_different_precision_share_a_key(ledger, household):
    ledger.ingest(household.id, [make_candidate(amount="42.10")])
    summary = ledger.ingest(household.id, [make_candidate(amount="42.1")])
    assert summary.added == 0


def test_sub_cent_amounts_reimport_as_unchanged(ledger, household):
    candidate = make_candidate(amount="42.105")
    assert candidate.amount == Decimal("42.11")

    first = ledger.ingest(household.id, [candidate])
    second = ledger.ingest(household.id, [make_candidate(amount="42.105")])

    assert (first.added, second.added, second.modified, second.skipped) == (1, 0, 0, 1)
    (row,) = ledger.list_transactions(household.id)
    assert row.amount == Decimal("42.11")


def test_duplicates_inside_one_batch_collapse(ledger, household):
    summary = ledger.ingest(household.id, [make_candidate(), make_candidate()])
    assert summary.added == 1
    assert summary.skipped == 1


def test_ofx_rows_key_on_fitid(ledger, household):
    ledger.ingest(household.id, [make_candidate("Store", "10.00", channel=SourceChannel.OFX, source_ref="F1")])
    # Same FITID with a corrected name is an update, not a new row
    summary = ledger.ingest(
        household.id, [make_candidate("Store #12", "10.00", channel=SourceChannel.OFX, source_ref="F1")]
    )
    assert summary.modified == 1
    rows = ledger.list_transactions(household.id)
    assert [row.name for row in rows] == ["Store #12"]


def test_provider_rows_dedupe_on_external_id(ledger, household, category_ids):
    candidate = make_candidate(
        "Lunch",
        "12.00",
        channel=SourceChannel.PROVIDER,
        external_id="plaid-1",
        category_id=category_ids["food & dining"],
        classified_by=ClassifiedBy.PROVIDER,
    )
    ledger.ingest(household.id, [candidate])
    updated = candidate.model_copy(update={"amount": Decimal("13.50")})
    summary = ledger.ingest(household.id, [updated])

    assert summary.modified == 1
    (row,) = ledger.list_transactions(household.id)
    assert row.amount == Decimal("13.50")
    assert row.classified_by is ClassifiedBy.PROVIDER
    assert row.import_key is None


def test_same_key_in_another_household_is_separate(ledger, household):
    other = ledger.create_household("Cabin", "bob", ["Other"])
    ledger.ingest(household.id, [make_candidate()])
    summary = ledger.ingest(other.id, [make_candidate()])
    assert summary.added == 1


def test_provider_id_owned_by_another_household_is_rejected(ledger, household):
    other = ledger.create_household("Cabin", "bob", ["Other"])
    candidate = make_candidate(channel=SourceChannel.PROVIDER, external_id="plaid-9")
    ledger.ingest(household.id, [candidate])
    summary = ledger.ingest(other.id, [candidate])
    assert summary.skipped == 1
    assert ledger.list_transactions(other.id) == []


def test_user_category_survives_provider_update(ledger, household, category_ids):
    candidate = make_candidate(
        "Lunch",
        "12.00",
        channel=SourceChannel.PROVIDER,
        external_id="plaid-2",
        category_id=category_ids["food & dining"],
        classified_by=ClassifiedBy.PROVIDER,
    )
    ledger.ingest(household.id, [candidate])
    (row,) = ledger.list_transactions(household.id)
    ledger.set_category(household.id, row.id, category_ids["groceries"])

    changed = candidate.model_copy(update={"category_id": category_ids["shopping"], "name": "Lunch Spot"})
    ledger.ingest(household.id, [changed])

    row = ledger.get_transaction(household.id, row.id)
    assert row.name == "Lunch Spot"
    assert row.category_id == category_ids["groceries"]
    assert row.classified_by is ClassifiedBy.USER


def test_update_without_account_keeps_existing_account(ledger, household):
    account = ledger.create_account(household.id, "Checking")
    ledger.ingest(household.id, [make_candidate(channel=SourceChannel.OFX, source_ref="F7", account_id=account.id)])
    ledger.ingest(household.id, [make_candidate("Renamed", channel=SourceChannel.OFX, source_ref="F7")])
    (row,) = ledger.list_transactions(household.id)
    assert row.account_id == account.id


def test_list_filters_and_search(ledger, household):
    ledger.ingest(
        household.id,
        [
            make_candidate("Grocery Store", "42.10", date(2024, 3, 1)),
            make_candidate("Coffee Shop", "4.50", date(2024, 3, 5)),
            make_candidate("Hardware", "19.99", date(2024, 4, 2)),
        ],
    )
    found = ledger.list_transactions(household.id, TransactionFilters(search="coffee"))
    assert [row.name for row in found] == ["Coffee Shop"]

    march = ledger.list_transactions(
        household.id, TransactionFilters(start_date=date(2024, 3, 1), end_date=date(2024, 3, 31))
    )
    assert [row.name for row in march] == ["Coffee Shop", "Grocery Store"]

    page = ledger.list_transactions(household.id, TransactionFilters(limit=1, offset=1))
    assert [row.name for row in page] == ["Coffee Shop"]
