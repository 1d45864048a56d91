from datetime import date
from decimal import Decimal

import pytest
from conftest import make_candidate

from household_ledger.errors import RejectReason, SplitRejected, TransferRejected
from household_ledger.models import ClassifiedBy, SplitLine


@pytest.fixture
def accounts(ledger, household):
    checking = ledger.create_account(household.id, "Checking")
    savings = ledger.create_account(household.id, "Savings", account_type="depository", subtype="savings")
    return checking, savings


def _add(ledger, household_id, name, amount, txn_date, account_id):
    ledger.ingest(household_id, [make_candidate(name, amount, txn_date, account_id=account_id)])
    rows = [row for row in ledger.list_transactions(household_id) if row.name == name]
    return rows[0]


def test_candidates_are_opposite_legs_within_a_week(ledger, household, accounts):
    checking, savings = accounts
    out = _add(ledger, household.id, "To savings", "500.00", date(2024, 3, 10), checking.id)
    match = _add(ledger, household.id, "From checking", "-500.00", date(2024, 3, 12), savings.id)
    _add(ledger, household.id, "Too late", "-500.00", date(2024, 3, 18), savings.id)
    _add(ledger, household.id, "Same account", "-500.00", date(2024, 3, 11), checking.id)
    _add(ledger, household.id, "Wrong amount", "-500.01", date(2024, 3, 11), savings.id)
    _add(ledger, household.id, "Same direction", "500.00", date(2024, 3, 11), savings.id)

    candidates = ledger.transfer_candidates(household.id, out.id)
    assert [row.id for row in candidates] == [match.id]


def test_candidates_ordered_newest_first(ledger, household, accounts):
    checking, savings = accounts
    out = _add(ledger, household.id, "To savings", "250.00", date(2024, 3, 10), checking.id)
    older = _add(ledger, household.id, "Early", "-250.00", date(2024, 3, 4), savings.id)
    newer = _add(ledger, household.id, "Late", "-250.00", date(2024, 3, 17), savings.id)
    assert [row.id for row in ledger.transfer_candidates(household.id, out.id)] == [newer.id, older.id]


def test_link_sets_both_legs_and_transfer_category(ledger, household, accounts, category_ids):
    checking, savings = accounts
    out = _add(ledger, household.id, "To savings", "500.00", date(2024, 3, 10), checking.id)
    into = _add(ledger, household.id, "From checking", "-500.00", date(2024, 3, 12), savings.id)

    left, right = ledger.link_transfer(household.id, out.id, into.id)
    assert left.transfer_pair_id == into.id
    assert right.transfer_pair_id == out.id
    for row in (left, right):
        assert row.is_transfer
        assert row.category_id == category_ids["transfer"]
        assert row.classified_by is ClassifiedBy.USER

    # Linked rows are no longer offered as candidates
    assert ledger.transfer_candidates(household.id, out.id) == []


def test_unlink_clears_both_legs(ledger, household, accounts):
    checking, savings = accounts
    out = _add(ledger, household.id, "To savings", "500.00", date(2024, 3, 10), checking.id)
    into = _add(ledger, household.id, "From checking", "-500.00", date(2024, 3, 12), savings.id)
    ledger.link_transfer(household.id, out.id, into.id)

    partner = ledger.unlink_transfer(household.id, into.id)
    assert partner.id == out.id
    for row_id in (out.id, into.id):
        row = ledger.get_transaction(household.id, row_id)
        assert not row.is_transfer
        assert row.transfer_pair_id is None
        assert row.category_id is None
        assert row.classified_by is ClassifiedBy.NONE

    with pytest.raises(TransferRejected) as exc_info:
        ledger.unlink_transfer(household.id, out.id)
    assert exc_info.value.reason is RejectReason.NOT_LINKED


def test_link_rejections(ledger, household, accounts):
    checking, savings = accounts
    out = _add(ledger, household.id, "To savings", "500.00", date(2024, 3, 10), checking.id)
    same = _add(ledger, household.id, "Same account", "-500.00", date(2024, 3, 11), checking.id)
    into = _add(ledger, household.id, "From checking", "-500.00", date(2024, 3, 12), savings.id)
    third = _add(ledger, household.id, "Third", "-500.00", date(2024, 3, 13), savings.id)

    with pytest.raises(TransferRejected) as exc_info:
        ledger.link_transfer(household.id, out.id, out.id)
    assert exc_info.value.reason is RejectReason.SAME_TRANSACTION

    with pytest.raises(TransferRejected) as exc_info:
        ledger.link_transfer(household.id, out.id, same.id)
    assert exc_info.value.reason is RejectReason.SAME_ACCOUNT

    ledger.link_transfer(household.id, out.id, into.id)
    with pytest.raises(TransferRejected) as exc_info:
        ledger.link_transfer(household.id, third.id, out.id)
    assert exc_info.value.reason is RejectReason.ALREADY_LINKED


def test_link_between_rows_without_accounts_is_rejected(ledger, household):
    out = _add(ledger, household.id, "Cash out", "60.00", date(2024, 3, 10), None)
    back = _add(ledger, household.id, "Cash back", "-60.00", date(2024, 3, 11), None)

    with pytest.raises(TransferRejected) as exc_info:
        ledger.link_transfer(household.id, out.id, back.id)
    assert exc_info.value.reason is RejectReason.SAME_ACCOUNT
    assert not any(row.is_transfer for row in ledger.list_transactions(household.id))
    assert ledger.transfer_candidates(household.id, out.id) == []


def test_link_across_households_is_rejected(ledger, household, accounts):
    checking, _ = accounts
    other = ledger.create_household("Cabin", "bob", ["Other"])
    out = _add(ledger, household.id, "To cabin", "75.00", date(2024, 3, 10), checking.id)
    foreign = _add(ledger, other.id, "From home", "-75.00", date(2024, 3, 10), None)

    with pytest.raises(TransferRejected) as exc_info:
        ledger.link_transfer(household.id, out.id, foreign.id)
    assert exc_info.value.reason is RejectReason.OTHER_HOUSEHOLD


def test_split_and_transfer_are_exclusive(ledger, household, accounts):
    checking, savings = accounts
    out = _add(ledger, household.id, "To savings", "500.00", date(2024, 3, 10), checking.id)
    into = _add(ledger, household.id, "From checking", "-500.00", date(2024, 3, 12), savings.id)
    ledger.link_transfer(household.id, out.id, into.id)

    with pytest.raises(SplitRejected) as exc_info:
        ledger.split(household.id, out.id, [SplitLine(amount=Decimal("250.00"))] * 2)
    assert exc_info.value.reason is RejectReason.IS_TRANSFER


def test_deleting_a_leg_unlinks_the_partner(ledger, household, accounts):
    checking, savings = accounts
    out = _add(ledger, household.id, "To savings", "500.00", date(2024, 3, 10), checking.id)
    into = _add(ledger, household.id, "From checking", "-500.00", date(2024, 3, 12), savings.id)
    ledger.link_transfer(household.id, out.id, into.id)

    ledger.delete_transaction(household.id, out.id)
    partner = ledger.get_transaction(household.id, into.id)
    assert not partner.is_transfer
    assert partner.transfer_pair_id is None


def test_transfers_do_not_count_as_cash_flow(ledger, household, accounts, category_ids):
    checking, savings = accounts
    out = _add(ledger, household.id, "To savings", "500.00", date(2024, 3, 10), checking.id)
    into = _add(ledger, household.id, "From checking", "-500.00", date(2024, 3, 12), savings.id)
    _add(ledger, household.id, "Salary", "-2000.00", date(2024, 3, 1), checking.id)
    _add(ledger, household.id, "Groceries run", "120.00", date(2024, 3, 3), checking.id)
    ledger.link_transfer(household.id, out.id, into.id)

    flow = ledger.cash_flow(household.id, date(2024, 3, 1), date(2024, 3, 31))
    assert flow.income == Decimal("2000.00")
    assert flow.expenses == Decimal("120.00")
    assert flow.net == Decimal("1880.00")
