from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class MetricOverride(db.Model):
    """
    Admin-supplied value that supersedes a seller's computed metric.

    Exactly one row per (subject_id, metric_name); writes upsert on that key.
    original_value is the computed value captured when the row was first
    created and is not touched by later edits or clears.
    """
    __tablename__ = "metric_overrides"
    __table_args__ = (
        db.UniqueConstraint("subject_id", "metric_name", name="uq_metric_overrides_subject_metric"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    subject_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    metric_name = db.Column(db.String(64), nullable=False, index=True)

    override_value = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    original_value = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    subject = db.relationship("User", backref=db.backref("metric_overrides", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.subject_id,
            "metric_name": self.metric_name,
            "override_value": float(self.override_value),
            "original_value": float(self.original_value),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
