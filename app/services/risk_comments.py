"""
Risk item comments.

A comment is typed (GENERAL, STATUS_CHANGE, REVIEW, RESOLUTION) and may be
flagged internal.  Internal comments are ARB/SME working notes and are only
listed when the caller asks for them.

Comments never touch the item's status or the domain aggregate.
"""

import logging
from datetime import UTC, datetime

from app.core.exceptions import ValidationError
from app.models import db
from app.models.comment import RiskItemComment
from app.models.risk import RiskCommentType
from app.services import domain_risk_service

logger = logging.getLogger(__name__)


def _parse_comment_type(value) -> RiskCommentType:
    if isinstance(value, RiskCommentType):
        return value
    try:
        return RiskCommentType(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Unknown comment type: {value}",
            details={"comment_type": f"must be one of {[t.value for t in RiskCommentType]}"},
        ) from None


def add_comment(
    risk_item_id: str,
    comment_type,
    comment_text: str,
    commented_by: str,
    is_internal: bool = False,
) -> RiskItemComment:
    errors = {}
    if not comment_type:
        errors["comment_type"] = "required"
    if not comment_text or not str(comment_text).strip():
        errors["comment_text"] = "required"
    if not commented_by or not str(commented_by).strip():
        errors["commented_by"] = "required"
    if errors:
        raise ValidationError("Invalid comment", details=errors)
    parsed_type = _parse_comment_type(comment_type)

    item = domain_risk_service.get_risk_item(risk_item_id)
    comment = RiskItemComment(
        risk_item_id=item.id,
        comment_type=parsed_type,
        comment_text=str(comment_text).strip(),
        commented_by=str(commented_by).strip(),
        commented_at=datetime.now(UTC),
        is_internal=bool(is_internal),
    )
    db.session.add(comment)
    db.session.flush()
    logger.info(
        "Added %s comment to risk item", parsed_type.value,
        extra={"risk_item_id": item.id, "actor": comment.commented_by},
    )
    return comment


def get_comments(risk_item_id: str, include_internal: bool = False) -> list[RiskItemComment]:
    """Comments on an item, newest first."""
    domain_risk_service.get_risk_item(risk_item_id)
    q = RiskItemComment.query.filter_by(risk_item_id=risk_item_id)
    if not include_internal:
        q = q.filter(RiskItemComment.is_internal.is_(False))
    return q.order_by(RiskItemComment.commented_at.desc(), RiskItemComment.created_at.desc()).all()
