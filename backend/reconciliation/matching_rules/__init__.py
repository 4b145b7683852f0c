"""
Matching Rules Module
"""

from .expense_rules import (
    ExpenseMatchingRules,
    DiffResult,
    MatchedPair,
    MatchDetails,
    compare_expenses,
    find_duplicates,
    generate_summary_report,
)

__all__ = [
    "ExpenseMatchingRules",
    "DiffResult",
    "MatchedPair",
    "MatchDetails",
    "compare_expenses",
    "find_duplicates",
    "generate_summary_report",
]
