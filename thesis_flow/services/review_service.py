"""
Thesis Flow
Review update service.

Reviewers record content/presentation verdicts; the head reviewer records
the final verdict once ``final_review_allowed`` holds. Every update
re-aggregates the ThesisInfo summary in the same commit.
"""

from __future__ import annotations

import logging

import sqlalchemy as sa

from thesis_flow.core.exceptions import NotFoundError, ValidationError
from thesis_flow.models import db
from thesis_flow.models.thesis import DECIDED_STATUSES, STATUSES, Review
from thesis_flow.services.review_aggregator import final_review_allowed, refresh_summary

logger = logging.getLogger(__name__)


def _get_review(review_id: int, *, is_final: bool) -> Review:
    review = db.session.get(Review, review_id)
    if review is None or review.is_final != is_final:
        raise NotFoundError(resource="FinalReview" if is_final else "Review", resource_id=review_id)
    return review


def _commit() -> None:
    try:
        db.session.commit()
    except sa.exc.SQLAlchemyError:
        db.session.rollback()
        raise


def _check_status(field: str, value: str | None) -> None:
    if value is not None and value not in STATUSES:
        raise ValidationError(f"Invalid {field}", details={field: value})


def update_review(
    review_id: int,
    *,
    content_status: str | None = None,
    presentation_status: str | None = None,
    comment: str | None = None,
    file_id: str | None = None,
    reviewer_id: int | None = None,
) -> Review:
    """Record a reviewer's verdict.

    When ``reviewer_id`` is given the review must belong to that reviewer
    and must not already carry a decided content verdict.
    """
    review = _get_review(review_id, is_final=False)
    _check_status("content_status", content_status)
    _check_status("presentation_status", presentation_status)

    if reviewer_id is not None:
        if review.reviewer_id != reviewer_id:
            raise ValidationError("Review belongs to another reviewer")
        if review.content_status in DECIDED_STATUSES:
            raise ValidationError("Review is already decided")

    if presentation_status is not None and review.presentation_status is None:
        raise ValidationError("This review has no presentation verdict")

    if content_status is not None:
        review.content_status = content_status
    if presentation_status is not None:
        review.presentation_status = presentation_status
    if comment is not None:
        review.comment = comment
    if file_id is not None:
        review.file_id = file_id

    summary = refresh_summary(review.thesis_info)
    _commit()
    logger.info("Review %s updated; thesis info %s summary=%s",
                review.id, review.thesis_info_id, summary)
    return review


def update_final_review(review_id: int, *, content_status: str,
                        comment: str | None = None) -> Review:
    """Record the head reviewer's final verdict."""
    review = _get_review(review_id, is_final=True)
    _check_status("content_status", content_status)

    if not final_review_allowed(review.thesis_info.reviews):
        raise ValidationError("Reviews are not complete yet")

    review.content_status = content_status
    if comment is not None:
        review.comment = comment

    summary = refresh_summary(review.thesis_info)
    _commit()
    logger.info("Final review %s set to %s; thesis info %s summary=%s",
                review.id, content_status, review.thesis_info_id, summary)
    return review
