"""Shared blueprint helpers.

db_commit_or_error:  single commit point for every mutating endpoint
parse_actor_role:    request value → ActorRole
"""
import logging

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import ValidationError
from app.models import db
from app.models.risk import ActorRole
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit the current SQLAlchemy session, returning an error response on failure.

    Returns:
        None on success.
        (response, status_code) tuple on failure — ready for ``return``.

    Usage::

        err = db_commit_or_error()
        if err:
            return err

    IntegrityError   → 409 (duplicate / constraint violation)
    StaleDataError   → 409 (concurrent update of the same row)
    OperationalError → 500 (connection / lock issues)
    Other            → 500 (unexpected)
    """
    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")
    except StaleDataError:
        db.session.rollback()
        logger.warning("Concurrent modification detected on commit")
        return api_error(E.CONFLICT_STATE, "Record was modified concurrently, reload and retry")
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        return api_error(E.DATABASE, "Database error")
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        return api_error(E.DATABASE, "Database error")


def parse_actor_role(value, default=ActorRole.SYSTEM) -> ActorRole:
    if not value:
        return default
    try:
        return ActorRole(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Unknown actor role: {value}",
            details={"actor_role": f"must be one of {[r.value for r in ActorRole]}"},
        ) from None
