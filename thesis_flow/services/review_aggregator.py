"""
Thesis Flow
Review Aggregator.

Reduces the Review records of one ThesisInfo to a single Summary:

    1. any FAIL on any applicable axis            -> FAIL
    2. nothing examined yet (or no reviews)       -> UNEXAMINED
    3. any applicable axis UNEXAMINED / PENDING   -> PENDING
    4. otherwise                                  -> PASS

An axis whose status is ``None`` does not apply to that review (revision
reviews and final reviews carry no presentation verdict).

The fold only counts statuses, so the result does not depend on the order
of the input and re-running it on the same reviews gives the same Summary.

Usage:
    from thesis_flow.services.review_aggregator import aggregate

    summary = aggregate(thesis_info.reviews)
"""

from __future__ import annotations

import math
from collections.abc import Iterable

from thesis_flow.models.thesis import (
    DECIDED_STATUSES,
    STATUSES,
    STATUS_FAIL,
    STATUS_PASS,
    STATUS_PENDING,
    STATUS_UNEXAMINED,
)


def _axes(review) -> list[str]:
    """Applicable verdict axes of one review, validated."""
    values = [review.content_status, review.presentation_status]
    axes = [v for v in values if v is not None]
    for value in axes:
        if value not in STATUSES:
            raise ValueError(f"Unknown review status: {value!r}")
    return axes


def aggregate(reviews: Iterable) -> str:
    """Return the Summary of a set of reviews (see module docstring)."""
    statuses = [status for review in reviews for status in _axes(review)]

    if STATUS_FAIL in statuses:
        return STATUS_FAIL
    if all(status == STATUS_UNEXAMINED for status in statuses):
        return STATUS_UNEXAMINED
    if any(status in (STATUS_UNEXAMINED, STATUS_PENDING) for status in statuses):
        return STATUS_PENDING
    return STATUS_PASS


def refresh_summary(thesis_info, reviews: Iterable | None = None) -> str:
    """Recompute and store ``thesis_info.summary``. Caller commits."""
    summary = aggregate(thesis_info.reviews if reviews is None else reviews)
    thesis_info.summary = summary
    return summary


def final_review_allowed(reviews: Iterable) -> bool:
    """Whether the head reviewer may record the final verdict.

    A content PASS majority (at least half, rounded up) of the regular
    reviews is enough; below that every regular review must be decided.
    """
    regular = [r for r in reviews if not r.is_final]
    passed = sum(1 for r in regular if r.content_status == STATUS_PASS)
    if passed >= math.ceil(len(regular) / 2):
        return True
    return all(r.content_status in DECIDED_STATUSES for r in regular)
