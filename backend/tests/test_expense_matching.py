"""
Unit Tests for Expense Matching Rules

Tests the diff engine:
- Partition: every input is in exactly one of matched/source_only/target_only
- Determinism and first-target tie-break
- Amount tolerance, date and description thresholds
- Duplicate grouping and the text report

Run with: pytest tests/test_expense_matching.py -v
"""

import random
from decimal import Decimal

import pytest

from reconciliation.matching_rules.expense_rules import (
    ExpenseMatchingRules,
    compare_expenses,
    find_duplicates,
    generate_summary_report,
    jaccard_similarity,
    tokenize,
)
from reconciliation.models import Expense, ExpenseSide
from reconciliation.rules import MatchingOptions


def src(amount, description, date="2026-02-01", category=None, **kwargs):
    return Expense(amount=amount, description=description, date=date, category=category, **kwargs)


def tgt(amount, description, date="2026-02-01", category=None, **kwargs):
    return Expense(
        amount=amount, description=description, date=date, category=category,
        provenance=ExpenseSide.TARGET, **kwargs
    )


def _assert_partition(diff, source, target):
    matched_sources = [p.source_index for p in diff.matched]
    matched_targets = [p.target_index for p in diff.matched]

    assert len(set(matched_sources)) == len(matched_sources)
    assert len(set(matched_targets)) == len(matched_targets)
    assert len(diff.matched) + len(diff.source_only) == len(source)
    assert len(diff.matched) + len(diff.target_only) == len(target)


class TestTokens:
    """Test tokenization and Jaccard similarity."""

    def test_short_words_dropped(self):
        assert tokenize("a to the coffee shop") == frozenset({"the", "coffee", "shop"})

    def test_both_empty(self):
        assert jaccard_similarity(frozenset(), frozenset()) == 1.0

    def test_one_empty(self):
        assert jaccard_similarity(frozenset({"coffee"}), frozenset()) == 0.0

    def test_overlap(self):
        assert jaccard_similarity(frozenset({"a1x", "b2y"}), frozenset({"a1x", "c3z"})) == pytest.approx(1 / 3)


class TestScenarios:
    """Test the reference scenarios."""

    def test_exact_match(self):
        diff = compare_expenses(
            [src(100, "Coffee Shop")],
            [tgt(100, "Coffee Shop")]
        )

        assert len(diff.matched) == 1
        assert diff.source_only == []
        assert diff.target_only == []
        assert diff.matched[0].confidence == 1.0
        assert diff.match_rate == 1.0

    def test_date_mismatch(self):
        diff = compare_expenses(
            [src(100, "Coffee Shop", date="2026-02-01")],
            [tgt(100, "Coffee Shop", date="2026-02-02")]
        )

        assert len(diff.matched) == 0
        assert len(diff.source_only) == 1
        assert len(diff.target_only) == 1
        assert [d.type for d in diff.differences] == ["missing_in_target", "missing_in_source"]

    def test_date_mismatch_allowed_when_not_required(self):
        diff = compare_expenses(
            [src(100, "Coffee Shop", date="2026-02-01")],
            [tgt(100, "Coffee Shop", date="2026-02-02")],
            MatchingOptions(require_same_date=False)
        )

        assert len(diff.matched) == 1
        assert diff.matched[0].details.same_date is False

    def test_amount_within_tolerance(self):
        diff = compare_expenses(
            [src("100.00", "Coffee Shop")],
            [tgt("100.01", "Coffee Shop")]
        )

        assert len(diff.matched) == 1
        pair = diff.matched[0]
        assert pair.details.amount_diff == Decimal("0.01")
        assert pair.confidence == pytest.approx((1.0 + 0.9) / 2)

    def test_amount_outside_tolerance(self):
        diff = compare_expenses([src("100.00", "Coffee Shop")], [tgt("100.02", "Coffee Shop")])
        assert len(diff.matched) == 0

    def test_missing_date_does_not_block(self):
        diff = compare_expenses([src(20, "Taxi ride", date=None)], [tgt(20, "Taxi ride")])
        assert len(diff.matched) == 1

    def test_date_formats_compared_canonically(self):
        diff = compare_expenses([src(20, "Taxi ride", date="Feb 1, 2026")], [tgt(20, "Taxi ride")])
        assert len(diff.matched) == 1

    def test_description_below_threshold(self):
        diff = compare_expenses(
            [src(50, "Grocery store weekly shop", category="Food")],
            [tgt(50, "Cinema tickets", category="Entertainment")]
        )
        assert len(diff.matched) == 0

    def test_category_contributes_tokens(self):
        diff = compare_expenses(
            [src(50, "", category="Transport")],
            [tgt(50, None, category="transport")]
        )
        assert len(diff.matched) == 1


class TestAssignment:
    """Test greedy assignment."""

    def test_best_confidence_wins(self):
        source = [src("10.00", "Lunch sandwich")]
        target = [tgt("10.01", "Lunch sandwich"), tgt("10.00", "Lunch sandwich")]

        diff = compare_expenses(source, target)

        assert diff.matched[0].target_index == 1
        assert len(diff.target_only) == 1

    def test_tie_keeps_first_target(self):
        source = [src(10, "Lunch sandwich")]
        target = [tgt(10, "Lunch sandwich"), tgt(10, "Lunch sandwich")]

        diff = compare_expenses(source, target)

        assert diff.matched[0].target_index == 0
        assert diff.target_only == [target[1]]

    def test_target_consumed_once(self):
        source = [src(10, "Lunch sandwich"), src(10, "Lunch sandwich")]
        target = [tgt(10, "Lunch sandwich")]

        diff = compare_expenses(source, target)

        assert len(diff.matched) == 1
        assert diff.source_only == [source[1]]

    def test_partition_and_determinism_on_random_inputs(self):
        rng = random.Random(1234)
        words = ["coffee", "taxi", "lunch", "hotel", "fuel", "books"]

        def random_expenses(n, maker):
            return [
                maker(
                    rng.choice(["5.00", "5.01", "12.50", "40.00"]),
                    " ".join(rng.sample(words, 2)),
                    date=rng.choice(["2026-02-01", "2026-02-02", None])
                )
                for _ in range(n)
            ]

        for _ in range(20):
            source = random_expenses(rng.randint(0, 8), src)
            target = random_expenses(rng.randint(0, 8), tgt)

            first = compare_expenses(source, target)
            second = compare_expenses(source, target)

            _assert_partition(first, source, target)
            assert [(p.source_index, p.target_index) for p in first.matched] == \
                [(p.source_index, p.target_index) for p in second.matched]
            assert first.source_only == second.source_only
            assert first.target_only == second.target_only


class TestTotals:
    """Test aggregates."""

    def test_totals_and_rate(self):
        diff = compare_expenses(
            [src("10.50", "Coffee beans"), src("4.50", "Parking meter")],
            [tgt("10.50", "Coffee beans")]
        )

        assert diff.source_total.count == 2
        assert diff.source_total.amount == Decimal("15.00")
        assert diff.target_total.amount == Decimal("10.50")
        assert diff.match_rate == 0.5

    def test_empty_inputs(self):
        diff = compare_expenses([], [])
        assert diff.match_rate == 0.0
        assert diff.differences == []

    def test_all_targets(self):
        source = [src(10, "Coffee beans")]
        target = [tgt(10, "Coffee beans"), tgt(99, "Hotel room")]

        diff = compare_expenses(source, target)

        assert diff.all_targets == [target[0], target[1]]

    def test_to_dict(self):
        data = compare_expenses([src(10, "Coffee beans")], []).to_dict()

        assert data["summary"]["source_only"] == 1
        assert data["differences"][0]["type"] == "missing_in_target"
        assert data["metadata"]["options"]["amount_tolerance"] == "0.01"


class TestFindDuplicates:
    """Test near-identical grouping inside one list."""

    def test_groups_exact_repeats(self):
        expenses = [
            src(12, "Office chair"),
            src(30, "Desk lamp"),
            src(12, "Office chair"),
            src(12, "Office chair"),
        ]

        groups = find_duplicates(expenses)

        assert len(groups) == 1
        assert len(groups[0]) == 3

    def test_tolerance_is_zero(self):
        assert find_duplicates([src("12.00", "Office chair"), src("12.01", "Office chair")]) == []

    def test_different_dates_not_grouped(self):
        assert find_duplicates([
            src(12, "Office chair", date="2026-02-01"),
            src(12, "Office chair", date="2026-02-03"),
        ]) == []


class TestSummaryReport:
    """Test the text report."""

    def test_perfect_match(self):
        report = generate_summary_report(compare_expenses([src(1, "Coffee")], [tgt(1, "Coffee")]))

        assert "Match Rate: 100.0%" in report
        assert "Perfect match" in report

    def test_differences_truncated(self):
        source = [src(i + 1, f"Item number{i}") for i in range(12)]
        report = generate_summary_report(compare_expenses(source, []))

        assert "DIFFERENCES:" in report
        assert "10. " in report
        assert "11. " not in report
        assert "... and 2 more" in report

    def test_rules_class_reusable(self):
        rules = ExpenseMatchingRules(MatchingOptions(amount_tolerance=Decimal("1.00")))
        diff = rules.compare([src("10.00", "Coffee")], [tgt("10.90", "Coffee")])
        assert len(diff.matched) == 1
