import pytest

from budget_pulse.classifier import (
    AT_RISK,
    ON_TRACK,
    OVER,
    build_budget_progress,
    classify,
    rank_budget_progress,
    reclassify,
)
from budget_pulse.models import CategorySummary

PERIOD = "2025-10-01"


def summary(category_id, name, budget, spent, **extra):
    payload = {
        "category_id": category_id,
        "category_name": name,
        "data": {PERIOD: {"budget_to_base": budget, "spending_to_base": spent, "num_transactions": 3,
                          "budget_currency": "usd"}},
    }
    payload.update(extra)
    return CategorySummary.from_dict(payload)


class TestClassify:
    """Expense and income classification"""

    def test_reference_cases(self):
        assert classify(40, 100, 0.5, 0.85) == ON_TRACK
        assert classify(60, 100, 0.5, 0.85) == AT_RISK
        assert classify(110, 100, 0.5, 0.85) == OVER

    @pytest.mark.parametrize("spent", [-50, 0, 10, 1000])
    def test_no_budget_is_on_track(self, spent):
        assert classify(spent, 0, 0.5, 0.85) == ON_TRACK
        assert classify(spent, -10, 0.5, 0.85) == ON_TRACK

    def test_exactly_on_budget_is_on_track(self):
        assert classify(100, 100, 0.2) == ON_TRACK
        assert classify(100.4, 100, 0.2) == ON_TRACK
        assert classify(100.6, 100, 0.2) == OVER

    def test_warn_threshold(self):
        assert classify(86, 100, 0.95, warn_at=0.85) == AT_RISK
        assert classify(84, 100, 0.95, warn_at=0.85) == ON_TRACK

    def test_spending_ahead_of_pace(self):
        assert classify(30, 100, 0.1) == AT_RISK
        assert classify(19, 100, 0.1) == ON_TRACK

    def test_recurring_total_pushes_expense_at_risk(self):
        assert classify(50, 100, 0.6, recurring_total=60) == AT_RISK
        assert classify(50, 100, 0.6, recurring_total=40) == ON_TRACK

    def test_income_is_never_over(self):
        assert classify(-9000, 5000, 0.5, is_income=True) == ON_TRACK

    def test_income_shortfall(self):
        assert classify(-5000, 5000, 1.0, is_income=True) == ON_TRACK
        assert classify(-4300, 5000, 1.0, is_income=True) == ON_TRACK
        assert classify(-4000, 5000, 1.0, is_income=True) == AT_RISK

    def test_income_counts_expected_recurring(self):
        assert classify(-2500, 5000, 1.0, is_income=True) == AT_RISK
        assert classify(-2500, 5000, 1.0, is_income=True, recurring_total=2500) == ON_TRACK


class TestBuildBudgetProgress:
    def test_expense_record(self):
        progress = build_budget_progress(summary(1, "Groceries", 500, 450), PERIOD, elapsed=0.5)

        assert progress.category_name == "Groceries"
        assert progress.budget_amount == 500
        assert progress.spent == 450
        assert progress.remaining == pytest.approx(50)
        assert progress.progress_ratio == pytest.approx(0.9)
        assert progress.status == AT_RISK
        assert progress.budget_currency == "USD"
        assert progress.num_transactions == 3

    def test_income_record_uses_received_magnitude(self):
        item = summary(2, "Salary", 5000, -5000, is_income=True)
        progress = build_budget_progress(item, PERIOD, elapsed=0.5)

        assert progress.spent == -5000
        assert progress.remaining == pytest.approx(0)
        assert progress.progress_ratio == pytest.approx(1.0)
        assert progress.status == ON_TRACK

    def test_missing_period_gives_empty_record(self):
        progress = build_budget_progress(summary(3, "Travel", 100, 20), "2025-11-01", elapsed=0.5)
        assert progress.budget_amount == 0
        assert progress.spent == 0
        assert progress.status == ON_TRACK

    def test_recurring_hints_feed_status(self):
        item = summary(4, "Bills", 100, 50, recurring={"data": [{"payee": "Power", "amount": 70}]})
        progress = build_budget_progress(item, PERIOD, elapsed=0.6)
        assert progress.recurring_total == pytest.approx(70)
        assert progress.status == AT_RISK

    def test_html_entities_are_decoded(self):
        progress = build_budget_progress(summary(5, "Dining &amp; Bars", 100, 10), PERIOD, elapsed=0.5)
        assert progress.category_name == "Dining & Bars"


class TestRecompute:
    def test_reclassify_replaces_status_only(self):
        original = build_budget_progress(summary(1, "Bills", 100, 50), PERIOD, elapsed=0.6)
        updated = reclassify(original, 80, elapsed=0.6)

        assert original.status == ON_TRACK
        assert updated.status == AT_RISK
        assert updated.recurring_total == 80
        assert updated.spent == original.spent

    def test_rank_uses_custom_order_then_api_order(self):
        items = [
            build_budget_progress(summary(category_id, f"C{category_id}", 100, 10), PERIOD, 0.5)
            for category_id in (1, 2, 3, 4)
        ]
        ranked = rank_budget_progress(items, [3, 1])
        assert [item.category_id for item in ranked] == [3, 1, 2, 4]
        assert rank_budget_progress(items, None) == items
