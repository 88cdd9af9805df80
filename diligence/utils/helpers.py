"""Shared service helpers.

parse_date_input:  strict date parsing (raises ValueError on bad input)
commit_or_raise:   commit the session, translating driver errors into TransportError
"""
import logging
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from diligence.core.exceptions import TransportError
from diligence.models import db

logger = logging.getLogger(__name__)


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, YYYY-MM-DDTHH:MM:SS (time dropped), DD.MM.YYYY,
    date and datetime objects. Empty input returns None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError("Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY.")
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(value, "%d.%m.%Y").date()
    except ValueError as exc:
        raise ValueError(
            "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
        ) from exc


# ── Database commit helper ───────────────────────────────────────────────────

def commit_or_raise(context: str = "commit"):
    """Commit the current SQLAlchemy session or roll back and raise.

    IntegrityError   → TransportError("constraint violation")
    OperationalError → TransportError("database unavailable")
    Other            → TransportError(str(exc))
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on %s: %s", context, exc.orig)
        raise TransportError(f"Duplicate or constraint violation during {context}") from exc
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Database operational error on %s", context)
        raise TransportError(f"Database error during {context}") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Unexpected database error on %s", context)
        raise TransportError(f"Database error during {context}: {exc}") from exc
