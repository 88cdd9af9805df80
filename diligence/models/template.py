"""
Deal Diligence Tracker
Task template models.

Models:
    - TaskTemplate: a reusable, named checklist blueprint.
    - TaskTemplateItem: one blueprint row; ``days_from_start`` is relative
      to a deal's start date and has no meaning on its own.

A template exclusively owns its items: deleting the template deletes them.
"""

from datetime import datetime, timezone

from diligence.models import db

MAX_DAY_OFFSET = 180


class TaskTemplate(db.Model):
    """Named set of task blueprints usable across deals."""

    __tablename__ = "task_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    created_by = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    items = db.relationship(
        "TaskTemplateItem", backref="template", lazy="select",
        cascade="all, delete-orphan",
        order_by="TaskTemplateItem.id",
    )

    def to_dict(self, include_items=False):
        result = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_default": bool(self.is_default),
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "item_count": len(self.items),
        }
        if include_items:
            result["items"] = [i.to_dict() for i in self.items]
        return result

    def __repr__(self):
        return f"<TaskTemplate {self.id}: {self.name}{' (default)' if self.is_default else ''}>"


class TaskTemplateItem(db.Model):
    """One blueprint row of a template."""

    __tablename__ = "task_template_items"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer,
        db.ForeignKey("task_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    phase = db.Column(db.String(100), nullable=False)
    category = db.Column(db.String(100), nullable=False)
    days_from_start = db.Column(
        db.Integer, nullable=False, default=0,
        comment="0..180 days after the deal start date",
    )
    assigned_to = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "title": self.title,
            "description": self.description,
            "phase": self.phase,
            "category": self.category,
            "days_from_start": self.days_from_start,
            "assigned_to": self.assigned_to,
        }

    def __repr__(self):
        return f"<TaskTemplateItem {self.id}: {self.title} (+{self.days_from_start}d)>"
