"""
Deal Diligence Tracker
Activity trail model.

Models:
    - ActivityLog: append-only record of what happened on a deal.

``record_activity`` is fire-and-forget from the caller's point of view:
it writes inside its own SAVEPOINT and a failure to log never fails the
operation being described.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from diligence.models import db

logger = logging.getLogger(__name__)


class ActivityLog(db.Model):
    """One row per action; never updated after insert."""

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("idx_activity_entity", "entity_type", "entity_id"),
        db.Index("idx_activity_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    deal_id = db.Column(
        db.Integer,
        db.ForeignKey("deals.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="NULL for entries that are not deal-specific (templates)",
    )
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    action = db.Column(
        db.String(30), nullable=False,
        comment="created | updated | completed | deleted | applied | imported",
    )
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    details = db.Column(db.Text, nullable=True)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deal_id": self.deal_id,
            "user_id": self.user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "details": self.details,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.action} {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────


def record_activity(
    deal_id: int | None,
    user_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int,
    details: str | None = None,
) -> ActivityLog | None:
    """
    Append a single activity row.  Uses a nested transaction + ``flush`` so
    callers keep transaction control.

    Returns the flushed ActivityLog, or None when the write failed.
    """
    try:
        with db.session.begin_nested():
            log = ActivityLog(
                deal_id=deal_id,
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                details=details,
            )
            db.session.add(log)
            db.session.flush()
        return log
    except SQLAlchemyError as exc:
        logger.warning(
            "Activity log write failed: %s %s/%s (%s)",
            action, entity_type, entity_id, exc,
            extra={"deal_id": deal_id},
        )
        return None
