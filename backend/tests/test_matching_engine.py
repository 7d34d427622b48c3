"""
Unit Tests for the Bank Transaction Matching Engine

Tests scoring bands, thresholds, ranking and rationale text.

Run with: pytest backend/tests/test_matching_engine.py -v
"""

import pytest
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from database.reconciliation_models import TransactionDirection
from reconciliation.matching_rules import MatchingEngine, MatchCandidate


def bank_line(amount, day, direction=TransactionDirection.CREDIT):
    return SimpleNamespace(
        direction=direction,
        amount=Decimal(amount),
        transaction_date=day
    )


def payment(payment_id, amount, day, **kwargs):
    return SimpleNamespace(id=payment_id, amount=Decimal(amount), payment_date=day, **kwargs)


JAN_10 = date(2024, 1, 10)


class TestScoring:
    """Test value and date components."""

    @pytest.fixture
    def engine(self):
        return MatchingEngine()

    @pytest.mark.parametrize("bank, paid, expected", [
        ("100.00", "100.00", 60),
        ("100.00", "100.05", 55),
        ("100.00", "99.90", 55),
        ("100.00", "100.50", 40),
        ("100.00", "101.00", 40),
        ("100.00", "101.01", 0),
    ])
    def test_value_bands(self, engine, bank, paid, expected):
        assert engine.score_value(Decimal(bank), Decimal(paid)) == expected

    @pytest.mark.parametrize("days, expected", [
        (0, 40), (1, 30), (2, 20), (3, 20), (4, 10), (5, 10), (6, 0),
    ])
    def test_date_bands(self, engine, days, expected):
        assert engine.score_date(date(2024, 1, 10 + days), JAN_10) == expected

    def test_date_band_is_symmetric(self, engine):
        assert engine.score_date(date(2024, 1, 8), JAN_10) == engine.score_date(date(2024, 1, 12), JAN_10)


class TestFindCandidates:
    """Test candidate filtering and ranking."""

    @pytest.fixture
    def engine(self):
        return MatchingEngine()

    def test_exact_match_scores_100_and_auto_matches(self, engine):
        candidates = engine.find_candidates(
            bank_line("100.00", JAN_10),
            [payment("p1", "100.00", JAN_10)]
        )

        assert len(candidates) == 1
        assert candidates[0].score == 100
        assert candidates[0].rationale == "Valor e data exatos"
        assert engine.is_auto_match(candidates[0]) is True

    def test_close_match_is_suggestion_only(self, engine):
        candidates = engine.find_candidates(
            bank_line("100.00", JAN_10),
            [payment("p1", "100.05", date(2024, 1, 12))]
        )

        assert candidates[0].score == 75
        assert candidates[0].rationale == "Valor similar (2 dias de diferença)"
        assert engine.is_auto_match(candidates[0]) is False

    def test_debit_has_no_candidates(self, engine):
        candidates = engine.find_candidates(
            bank_line("100.00", JAN_10, direction=TransactionDirection.DEBIT),
            [payment("p1", "100.00", JAN_10)]
        )

        assert candidates == []

    def test_score_of_exactly_50_is_discarded(self, engine):
        # 40 (diff 0.50) + 10 (5 days)
        candidates = engine.find_candidates(
            bank_line("100.00", JAN_10),
            [payment("p1", "100.50", date(2024, 1, 15))]
        )

        assert candidates == []

    def test_score_of_51_or_more_is_kept(self, engine):
        # 55 (diff 0.10) + 0 (6 days) -> 55
        candidates = engine.find_candidates(
            bank_line("100.00", JAN_10),
            [payment("p1", "100.10", date(2024, 1, 16))]
        )

        assert [c.score for c in candidates] == [55]

    def test_sorted_descending_and_capped_at_five(self, engine):
        pool = [payment(f"p{i}", "100.00", date(2024, 1, 10 + (i % 6))) for i in range(8)]

        candidates = engine.find_candidates(bank_line("100.00", JAN_10), pool)

        scores = [c.score for c in candidates]
        assert len(candidates) == MatchingEngine.MAX_CANDIDATES
        assert scores == sorted(scores, reverse=True)
        assert scores[0] == 100

    def test_ties_keep_pool_order(self, engine):
        pool = [
            payment("first", "100.00", date(2024, 1, 11)),
            payment("second", "100.00", date(2024, 1, 9)),
        ]

        candidates = engine.find_candidates(bank_line("100.00", JAN_10), pool)

        assert [c.payment_id for c in candidates] == ["first", "second"]

    def test_candidate_carries_payment_details(self, engine):
        candidates = engine.find_candidates(
            bank_line("250.00", JAN_10),
            [payment("p1", "250.00", JAN_10, payment_type="PIX", order_number="PED-42", customer_name="Ana")]
        )

        candidate = candidates[0]
        assert isinstance(candidate, MatchCandidate)
        assert candidate.order_number == "PED-42"
        assert candidate.to_dict()["amount"] == "250.00"
        assert candidate.to_dict()["payment_date"] == "2024-01-10"


class TestRationale:
    """Test the human-facing explanation."""

    @pytest.fixture
    def engine(self):
        return MatchingEngine()

    def test_value_exact_date_off(self, engine):
        text = engine.rationale(bank_line("80.00", JAN_10), payment("p", "80.00", date(2024, 1, 11)))
        assert text == "Valor exato, 1 dia(s) de diferença"

    def test_date_exact_value_off(self, engine):
        text = engine.rationale(bank_line("80.00", JAN_10), payment("p", "80.05", JAN_10))
        assert text == "Data exata, R$ 0.05 de diferença"

    def test_is_auto_match_handles_missing_candidate(self, engine):
        assert engine.is_auto_match(None) is False
