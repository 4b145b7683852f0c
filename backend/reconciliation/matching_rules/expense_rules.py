"""
Expense Matching Rules

Deterministic diff engine comparing a document-derived expense list
("source") against the application-of-record list ("target").

Match test (per source/target pair):
- amount difference within tolerance (default 0.01 absolute)
- same calendar date when both dates are present (configurable)
- Jaccard similarity over word tokens of description + category
  (default minimum 0.5)

Assignment is greedy in source order: each source expense takes the
highest-confidence unconsumed target. Ties keep the first target
encountered, so results depend only on input order.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from reconciliation.models import Expense
from reconciliation.rules import DUPLICATE_GROUP_OPTIONS, MatchingOptions
from utils.date_normalizer import try_normalize_date

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 3
REPORT_DIFFERENCE_LIMIT = 10


# ==================== RESULT TYPES ====================

@dataclass(frozen=True)
class MatchDetails:
    """Per-pair evidence for a successful match."""
    amount_diff: Decimal
    description_similarity: float
    same_date: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount_diff": str(self.amount_diff),
            "description_similarity": round(self.description_similarity, 4),
            "same_date": self.same_date
        }


@dataclass(frozen=True)
class MatchOutcome:
    """Result of testing one pair."""
    is_match: bool
    confidence: float
    reason: str
    details: Optional[MatchDetails] = None


@dataclass(frozen=True)
class MatchedPair:
    source: Expense
    target: Expense
    confidence: float
    details: MatchDetails
    source_index: int
    target_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.to_dict(),
            "target": self.target.to_dict(),
            "confidence": round(self.confidence, 4),
            "details": self.details.to_dict(),
            "source_index": self.source_index,
            "target_index": self.target_index
        }


@dataclass(frozen=True)
class Difference:
    type: str  # missing_in_target | missing_in_source
    description: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "description": self.description}


@dataclass(frozen=True)
class SideTotal:
    count: int
    amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "amount": str(self.amount)}


@dataclass
class DiffResult:
    """
    Three-way classification of two expense collections.

    Every input expense appears in exactly one of matched (as half of
    a pair), source_only or target_only.
    """
    matched: List[MatchedPair]
    source_only: List[Expense]
    target_only: List[Expense]
    differences: List[Difference]
    source_total: SideTotal
    target_total: SideTotal
    match_rate: float
    options: MatchingOptions = field(default_factory=MatchingOptions)
    compared_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def all_targets(self) -> List[Expense]:
        """The complete target collection the diff was computed over."""
        return [pair.target for pair in self.matched] + list(self.target_only)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "source_total": self.source_total.to_dict(),
                "target_total": self.target_total.to_dict(),
                "matched": len(self.matched),
                "source_only": len(self.source_only),
                "target_only": len(self.target_only),
                "total_differences": len(self.differences),
                "match_rate": self.match_rate
            },
            "matched": [pair.to_dict() for pair in self.matched],
            "source_only": [e.to_dict() for e in self.source_only],
            "target_only": [e.to_dict() for e in self.target_only],
            "differences": [d.to_dict() for d in self.differences],
            "metadata": {
                "compared_at": self.compared_at.isoformat(),
                "options": self.options.to_dict()
            }
        }


# ==================== NORMALIZATION ====================

@dataclass(frozen=True)
class _Comparable:
    """Internal comparison view of an Expense."""
    amount: Decimal
    date: Optional[str]
    description: str
    category: str
    tokens: FrozenSet[str]


def tokenize(text: str) -> FrozenSet[str]:
    """Whitespace-separated words longer than 2 characters."""
    return frozenset(t for t in text.split() if len(t) >= MIN_TOKEN_LENGTH)


def _comparable(expense: Expense) -> _Comparable:
    description = (expense.description or "").lower().strip()
    category = (expense.category or "other").lower()
    return _Comparable(
        amount=expense.amount if expense.amount is not None else Decimal("0"),
        date=try_normalize_date(expense.date),
        description=description,
        category=category,
        tokens=tokenize(f"{description} {category}")
    )


def jaccard_similarity(tokens_a: FrozenSet[str], tokens_b: FrozenSet[str]) -> float:
    if not tokens_a and not tokens_b:
        return 1.0
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


# ==================== MATCHING ====================

class ExpenseMatchingRules:
    """
    Matching rules engine for expense reconciliation.

    Stateless apart from its options; safe to reuse across runs.
    """

    EXACT_AMOUNT_SCORE = 1.0
    TOLERATED_AMOUNT_SCORE = 0.9

    def __init__(self, options: Optional[MatchingOptions] = None):
        self.options = options or MatchingOptions()

    def match_pair(self, a: _Comparable, b: _Comparable) -> MatchOutcome:
        amount_diff = abs(a.amount - b.amount)
        if amount_diff > self.options.amount_tolerance:
            return MatchOutcome(False, 0.0, "Amount mismatch")

        if self.options.require_same_date and a.date and b.date and a.date != b.date:
            return MatchOutcome(False, 0.0, "Date mismatch")

        similarity = jaccard_similarity(a.tokens, b.tokens)
        if similarity < self.options.min_description_similarity:
            return MatchOutcome(False, 0.0, "Description mismatch")

        amount_score = self.EXACT_AMOUNT_SCORE if amount_diff == 0 else self.TOLERATED_AMOUNT_SCORE
        confidence = (similarity + amount_score) / 2

        return MatchOutcome(
            True,
            confidence,
            "Match found",
            MatchDetails(
                amount_diff=amount_diff,
                description_similarity=similarity,
                same_date=a.date == b.date
            )
        )

    def compare(self, source: Sequence[Expense], target: Sequence[Expense]) -> DiffResult:
        """Greedy threshold matching of source against target."""
        logger.info(
            f"Comparing {len(source)} source vs {len(target)} target expenses",
            extra={"options": self.options.to_dict()}
        )

        source_views = [_comparable(e) for e in source]
        target_views = [_comparable(e) for e in target]

        matched: List[MatchedPair] = []
        source_only: List[Expense] = []
        differences: List[Difference] = []
        consumed = set()

        for s_index, s_view in enumerate(source_views):
            best: Optional[Tuple[int, MatchOutcome]] = None

            for t_index, t_view in enumerate(target_views):
                if t_index in consumed:
                    continue
                outcome = self.match_pair(s_view, t_view)
                # strict > keeps the first target on ties
                if outcome.is_match and (best is None or outcome.confidence > best[1].confidence):
                    best = (t_index, outcome)

            if best is not None:
                t_index, outcome = best
                consumed.add(t_index)
                matched.append(MatchedPair(
                    source=source[s_index],
                    target=target[t_index],
                    confidence=outcome.confidence,
                    details=outcome.details,
                    source_index=s_index,
                    target_index=t_index
                ))
            else:
                source_only.append(source[s_index])
                differences.append(Difference(
                    type="missing_in_target",
                    description=_describe(s_view, "found in source but not in target")
                ))

        target_only: List[Expense] = []
        for t_index, t_view in enumerate(target_views):
            if t_index not in consumed:
                target_only.append(target[t_index])
                differences.append(Difference(
                    type="missing_in_source",
                    description=_describe(t_view, "found in target but not in source")
                ))

        largest = max(len(source), len(target))
        match_rate = len(matched) / largest if largest else 0.0

        logger.info(
            f"Comparison results: {len(matched)} matched, "
            f"{len(source_only)} source-only, {len(target_only)} target-only"
        )

        return DiffResult(
            matched=matched,
            source_only=source_only,
            target_only=target_only,
            differences=differences,
            source_total=SideTotal(len(source_views), sum((v.amount for v in source_views), Decimal("0"))),
            target_total=SideTotal(len(target_views), sum((v.amount for v in target_views), Decimal("0"))),
            match_rate=match_rate,
            options=self.options
        )

    def find_duplicates(self, expenses: Sequence[Expense]) -> List[List[Expense]]:
        """
        Group near-identical expenses within a single list.

        Each expense joins at most one group; groups are returned in
        order of their first member.
        """
        views = [_comparable(e) for e in expenses]
        groups: List[List[Expense]] = []
        processed = set()

        for i, view in enumerate(views):
            if i in processed:
                continue
            group = [expenses[i]]
            for j in range(i + 1, len(views)):
                if j in processed:
                    continue
                if self.match_pair(view, views[j]).is_match:
                    group.append(expenses[j])
                    processed.add(j)
            processed.add(i)
            if len(group) > 1:
                groups.append(group)

        return groups


def _describe(view: _Comparable, suffix: str) -> str:
    return f"{view.amount:.2f} for {view.description or 'unknown'} on {view.date or 'unknown date'} {suffix}"


# ==================== MODULE API ====================

def compare_expenses(
    source: Sequence[Expense],
    target: Sequence[Expense],
    options: Optional[MatchingOptions] = None
) -> DiffResult:
    """Compare two expense collections. See ExpenseMatchingRules.compare()."""
    return ExpenseMatchingRules(options).compare(source, target)


def find_duplicates(expenses: Sequence[Expense]) -> List[List[Expense]]:
    """Near-identical groups (exact amount, same date, similarity >= 0.8)."""
    return ExpenseMatchingRules(DUPLICATE_GROUP_OPTIONS).find_duplicates(expenses)


def generate_summary_report(diff: DiffResult) -> str:
    """Plain-text summary of a DiffResult."""
    lines = [
        "EXPENSE COMPARISON REPORT",
        "=========================",
        "",
        f"Source Expenses: {diff.source_total.count} items, {diff.source_total.amount:.2f}",
        f"Target Expenses: {diff.target_total.count} items, {diff.target_total.amount:.2f}",
        f"Match Rate: {diff.match_rate * 100:.1f}%",
        "",
        f"Matched: {len(diff.matched)}",
        f"Only in Source: {len(diff.source_only)}",
        f"Only in Target: {len(diff.target_only)}",
        "",
    ]

    if diff.differences:
        lines.append("DIFFERENCES:")
        for idx, difference in enumerate(diff.differences[:REPORT_DIFFERENCE_LIMIT], start=1):
            lines.append(f"{idx}. {difference.description}")
        if len(diff.differences) > REPORT_DIFFERENCE_LIMIT:
            lines.append(f"... and {len(diff.differences) - REPORT_DIFFERENCE_LIMIT} more")
    else:
        lines.append("Perfect match! All expenses accounted for.")

    return "\n".join(lines)
