"""
Journey catalog and tenant activation models.

Models:
    - Sector: optional catalog grouping of journeys (global).
    - Journey: journey template with its default state machine (global).
    - TenantSector: per-tenant sector toggle.
    - TenantJourney: per-tenant activation + configuration document.
"""

from caseflow.models import db
from caseflow.models.base import TenantModel, iso, utcnow


class Sector(db.Model):
    """Catalog grouping shared by all tenants."""

    __tablename__ = "sectors"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)

    journeys = db.relationship("Journey", back_populates="sector", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": iso(self.created_at),
        }


class Journey(db.Model):
    """Journey template: ordered states + default state, shared across tenants."""

    __tablename__ = "journeys"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    sector_id = db.Column(
        db.Integer, db.ForeignKey("sectors.id", ondelete="SET NULL"), nullable=True,
    )
    is_crm_style = db.Column(db.Boolean, nullable=False, default=False)
    state_machine = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    sector = db.relationship("Sector", back_populates="journeys")

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "sector_id": self.sector_id,
            "is_crm_style": self.is_crm_style,
            "state_machine": self.state_machine or {},
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class TenantSector(TenantModel):
    __tablename__ = "tenant_sectors"

    id = db.Column(db.Integer, primary_key=True)
    sector_id = db.Column(
        db.Integer, db.ForeignKey("sectors.id", ondelete="CASCADE"), nullable=False,
    )
    enabled = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sector_id", name="uq_tenant_sector"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sector_id": self.sector_id,
            "enabled": self.enabled,
        }


class TenantJourney(TenantModel):
    """A tenant's activation of a journey plus its configuration overrides.

    Created lazily on first enable/configure and never hard-deleted;
    ``enabled`` toggles independently of ``config``.
    """

    __tablename__ = "tenant_journeys"

    id = db.Column(db.Integer, primary_key=True)
    journey_id = db.Column(
        db.Integer, db.ForeignKey("journeys.id", ondelete="CASCADE"), nullable=False,
    )
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    config = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "journey_id", name="uq_tenant_journey"),
    )

    journey = db.relationship("Journey")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "journey_id": self.journey_id,
            "journey_key": self.journey.key if self.journey else None,
            "enabled": self.enabled,
            "config": self.config or {},
            "updated_at": iso(self.updated_at),
        }
