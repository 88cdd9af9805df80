"""
Deal Diligence Tracker
User model — the people tasks are assigned to and templates are owned by.

Authentication lives outside this service; the table only carries the
identity and role data the task views need.
"""

from datetime import datetime, timezone

from diligence.models import db

USER_ROLES = ("deal_lead", "functional_lead", "partner")


class User(db.Model):
    """A deal team member."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(150), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    role = db.Column(
        db.String(30),
        nullable=False,
        default="functional_lead",
        comment="deal_lead | functional_lead | partner",
    )
    specialization = db.Column(
        db.String(50),
        nullable=True,
        comment="financial | legal | operations (functional leads only)",
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "role": self.role,
            "specialization": self.specialization,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.username} ({self.role})>"
