"""
Case domain models.

Models:
    - Vendor: actor (salesperson) behind a messaging sender.
    - Case: one journey instance; ``state`` is a key of the journey's states.
    - CaseField: recorded data values consulted by required-field gates.
    - CaseTask: completion records of a state's mandatory tasks.
    - Pendency: follow-up questions sent to the vendor.
    - CaseAttachment: media received for a case.
    - TimelineEvent: append-only case history.
"""

from caseflow.models import db
from caseflow.models.base import TenantModel, iso, utcnow

CASE_STATUSES = {"open", "closed"}
PENDENCY_STATUSES = {"open", "answered", "cancelled"}


class Vendor(TenantModel):
    __tablename__ = "vendors"

    id = db.Column(db.Integer, primary_key=True)
    phone_e164 = db.Column(db.String(32), nullable=False)
    display_name = db.Column(db.String(200))
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "phone_e164", name="uq_vendor_tenant_phone"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "phone_e164": self.phone_e164,
            "display_name": self.display_name,
            "active": self.active,
            "created_at": iso(self.created_at),
        }


class Case(TenantModel):
    __tablename__ = "cases"
    __table_args__ = (
        db.Index("ix_cases_tenant_journey_sender", "tenant_id", "journey_id", "sender_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    journey_id = db.Column(
        db.Integer, db.ForeignKey("journeys.id", ondelete="CASCADE"), nullable=False,
    )
    state = db.Column(db.String(48), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="open")  # open | closed
    title = db.Column(db.String(300))
    sender_id = db.Column(db.String(64), index=True)
    created_by_channel = db.Column(db.String(30), default="whatsapp")
    assigned_vendor_id = db.Column(
        db.Integer, db.ForeignKey("vendors.id", ondelete="SET NULL"), nullable=True,
    )
    assigned_user_id = db.Column(db.String(64))
    meta = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    journey = db.relationship("Journey")
    vendor = db.relationship("Vendor")
    fields = db.relationship(
        "CaseField", back_populates="case", lazy="select", cascade="all, delete-orphan",
    )
    tasks = db.relationship(
        "CaseTask", back_populates="case", lazy="select", cascade="all, delete-orphan",
        order_by="CaseTask.id",
    )
    pendencies = db.relationship(
        "Pendency", back_populates="case", lazy="select", cascade="all, delete-orphan",
        order_by="Pendency.id",
    )
    attachments = db.relationship(
        "CaseAttachment", back_populates="case", lazy="select", cascade="all, delete-orphan",
    )

    def field_values(self):
        return {f.key: f.value for f in self.fields}

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "journey_id": self.journey_id,
            "state": self.state,
            "status": self.status,
            "title": self.title,
            "sender_id": self.sender_id,
            "created_by_channel": self.created_by_channel,
            "assigned_vendor_id": self.assigned_vendor_id,
            "assigned_user_id": self.assigned_user_id,
            "meta": self.meta or {},
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_children:
            d["fields"] = self.field_values()
            d["tasks"] = [t.to_dict() for t in self.tasks]
            d["pendencies"] = [p.to_dict() for p in self.pendencies]
            d["attachments"] = [a.to_dict() for a in self.attachments]
        return d


class CaseField(TenantModel):
    __tablename__ = "case_fields"

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    key = db.Column(db.String(100), nullable=False)
    value_text = db.Column(db.Text)
    value_json = db.Column(db.JSON)
    source = db.Column(db.String(30), default="user")
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.UniqueConstraint("case_id", "key", name="uq_case_field_key"),
    )

    case = db.relationship("Case", back_populates="fields")

    @property
    def value(self):
        return self.value_json if self.value_json is not None else self.value_text

    def to_dict(self):
        return {
            "key": self.key,
            "value": self.value,
            "source": self.source,
            "updated_at": iso(self.updated_at),
        }


class CaseTask(TenantModel):
    """Completion record for one mandatory task of one state."""

    __tablename__ = "case_tasks"

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    state_key = db.Column(db.String(48), nullable=False)
    task_id = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(500), nullable=False)
    required = db.Column(db.Boolean, nullable=False, default=True)
    require_attachment = db.Column(db.Boolean, nullable=False, default=False)
    completed = db.Column(db.Boolean, nullable=False, default=False)
    attachment_ref = db.Column(db.String(500))
    completed_by = db.Column(db.String(64))
    completed_at = db.Column(db.DateTime)

    __table_args__ = (
        db.UniqueConstraint("case_id", "task_id", name="uq_case_task"),
    )

    case = db.relationship("Case", back_populates="tasks")

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "state_key": self.state_key,
            "description": self.description,
            "required": self.required,
            "require_attachment": self.require_attachment,
            "completed": self.completed,
            "attachment_ref": self.attachment_ref,
            "completed_by": self.completed_by,
            "completed_at": iso(self.completed_at),
        }


class Pendency(TenantModel):
    __tablename__ = "pendencies"

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(50), nullable=False)
    assigned_to_role = db.Column(db.String(30), default="vendor")
    question_text = db.Column(db.Text, nullable=False)
    required = db.Column(db.Boolean, nullable=False, default=True)
    status = db.Column(db.String(20), nullable=False, default="open")
    answered_text = db.Column(db.Text)
    answered_payload = db.Column(db.JSON)
    due_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)

    case = db.relationship("Case", back_populates="pendencies")

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "assigned_to_role": self.assigned_to_role,
            "question_text": self.question_text,
            "required": self.required,
            "status": self.status,
            "answered_text": self.answered_text,
            "due_at": iso(self.due_at),
        }


class CaseAttachment(TenantModel):
    __tablename__ = "case_attachments"

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    kind = db.Column(db.String(30), nullable=False, default="image")
    storage_path = db.Column(db.String(1000), nullable=False)
    content_type = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=utcnow)

    case = db.relationship("Case", back_populates="attachments")

    def to_dict(self):
        return {
            "id": self.id,
            "kind": self.kind,
            "storage_path": self.storage_path,
            "content_type": self.content_type,
            "created_at": iso(self.created_at),
        }


class TimelineEvent(TenantModel):
    """Append-only case history (state changes, inbound events, automations)."""

    __tablename__ = "timeline_events"

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    event_type = db.Column(db.String(60), nullable=False)
    actor_type = db.Column(db.String(20), nullable=False, default="system")
    actor_id = db.Column(db.String(64))
    message = db.Column(db.Text)
    meta = db.Column(db.JSON, default=dict)
    occurred_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "case_id": self.case_id,
            "event_type": self.event_type,
            "actor_type": self.actor_type,
            "actor_id": self.actor_id,
            "message": self.message,
            "meta": self.meta or {},
            "occurred_at": iso(self.occurred_at),
        }
