"""
DecisionLog — one row per automation decision.

Refusals (e.g. vendor required but unresolved) are terminal and are only
ever recorded here; nothing retries them.
"""

from caseflow.models import db
from caseflow.models.base import TenantModel, iso, utcnow


class DecisionLog(TenantModel):
    __tablename__ = "decision_logs"
    __table_args__ = (
        db.Index("ix_decision_logs_tenant_outcome", "tenant_id", "outcome"),
    )

    id = db.Column(db.Integer, primary_key=True)
    journey_id = db.Column(
        db.Integer, db.ForeignKey("journeys.id", ondelete="CASCADE"), nullable=False,
    )
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="SET NULL"), nullable=True,
    )
    event_kind = db.Column(db.String(20), nullable=False)
    sender_id = db.Column(db.String(64))
    outcome = db.Column(db.String(30), nullable=False)
    refusal = db.Column(db.String(50))
    reason = db.Column(db.Text)
    details = db.Column(db.JSON, default=dict)
    occurred_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "journey_id": self.journey_id,
            "case_id": self.case_id,
            "event_kind": self.event_kind,
            "sender_id": self.sender_id,
            "outcome": self.outcome,
            "refusal": self.refusal,
            "reason": self.reason,
            "details": self.details or {},
            "occurred_at": iso(self.occurred_at),
        }
