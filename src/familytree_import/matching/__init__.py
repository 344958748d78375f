"""Duplicate detection and parent plausibility."""

from familytree_import.matching.duplicates import calculate_match_confidence, find_duplicates
from familytree_import.matching.parents import (
    filter_parent_candidates,
    is_valid_parent_by_age,
    suggest_parents,
)

__all__ = [
    "calculate_match_confidence",
    "find_duplicates",
    "filter_parent_candidates",
    "is_valid_parent_by_age",
    "suggest_parents",
]
