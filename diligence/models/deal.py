"""
Deal Diligence Tracker
Deal domain models.

Models:
    - Deal: a tracked acquisition / investment opportunity.
    - Task: one due-diligence checklist entry belonging to a deal.

Task invariant: ``completed_at`` is set if and only if ``status`` is the
terminal "completed" value. ``Task.mark_status`` and ``Task.clear_completion``
are the only writers of that pair.
"""

from datetime import datetime, timezone

from diligence.models import db

DEAL_STATUSES = ("open", "active", "completed", "cancelled")

STATUS_NOT_STARTED = "not_started"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"


def _utcnow():
    return datetime.now(timezone.utc)


# ── Deal ─────────────────────────────────────────────────────────────────────


class Deal(db.Model):
    """
    A private-equity deal under diligence.

    ``end_date`` is derived from ``start_date`` (see
    ``diligence.services.due_dates.derive_end_date``) and is never written
    independently.
    """

    __tablename__ = "deals"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    status = db.Column(
        db.String(30),
        nullable=False,
        default="active",
        comment="open | active | completed | cancelled",
    )
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # ── Relationships ────────────────────────────────────────────────────
    tasks = db.relationship(
        "Task", backref="deal", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Task.id",
    )
    activity_logs = db.relationship(
        "ActivityLog", backref="deal", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_tasks=False):
        result = {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_tasks:
            result["tasks"] = [t.to_dict() for t in self.tasks]
        return result

    def __repr__(self):
        return f"<Deal {self.id}: {self.name}>"


# ── Task ─────────────────────────────────────────────────────────────────────


class Task(db.Model):
    """A due-diligence task. Phase/category/status are free taxonomy tokens."""

    __tablename__ = "tasks"
    __table_args__ = (
        db.Index("ix_tasks_deal_phase", "deal_id", "phase"),
    )

    id = db.Column(db.Integer, primary_key=True)
    deal_id = db.Column(
        db.Integer,
        db.ForeignKey("deals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    phase = db.Column(db.String(100), nullable=False)
    category = db.Column(db.String(100), nullable=False)
    status = db.Column(db.String(100), nullable=False, default=STATUS_NOT_STARTED)
    due_date = db.Column(db.Date, nullable=True)
    assigned_to = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def mark_status(self, status):
        """Move to *status*, keeping ``completed_at`` in step."""
        if status == STATUS_COMPLETED:
            if self.status != STATUS_COMPLETED or self.completed_at is None:
                self.completed_at = _utcnow()
        else:
            self.completed_at = None
        self.status = status

    def clear_completion(self):
        """Drop the completion stamp; a completed task falls back to in progress."""
        self.completed_at = None
        if self.status == STATUS_COMPLETED:
            self.status = STATUS_IN_PROGRESS

    def to_dict(self):
        return {
            "id": self.id,
            "deal_id": self.deal_id,
            "title": self.title,
            "description": self.description,
            "phase": self.phase,
            "category": self.category,
            "status": self.status,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "assigned_to": self.assigned_to,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.title} [{self.status}]>"
