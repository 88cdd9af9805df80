"""
Deal Diligence Tracker
Custom taxonomy persistence.

Models:
    - TaxonomyExtension: the user-contributed values of one taxonomy
      namespace (phase | category | status) within one scope, stored as a
      JSON list so that reads and writes are whole-set (get-all / set-all).

Built-in values are never stored here; they live in code
(``diligence.services.taxonomy_service``).
"""

from datetime import datetime, timezone

from sqlalchemy import JSON

from diligence.models import db

DEFAULT_SCOPE = "global"


def _utcnow():
    return datetime.now(timezone.utc)


class TaxonomyExtension(db.Model):
    """Custom values for one (scope, namespace) pair."""

    __tablename__ = "taxonomy_extensions"
    __table_args__ = (
        db.UniqueConstraint("scope", "namespace", name="uq_taxonomy_scope_namespace"),
    )

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(100), nullable=False, default=DEFAULT_SCOPE)
    namespace = db.Column(
        db.String(20), nullable=False,
        comment="phase | category | status",
    )
    values = db.Column(JSON, nullable=False, default=list)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<TaxonomyExtension {self.scope}/{self.namespace}: {len(self.values or [])} values>"
