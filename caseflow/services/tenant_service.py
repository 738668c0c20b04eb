"""Tenant lookup and registration."""

import logging
import re

from caseflow.core.exceptions import ConflictError, NotFoundError, Refusal
from caseflow.models import db
from caseflow.models.tenant import Tenant
from caseflow.utils.errors import E

logger = logging.getLogger(__name__)

_SLUG_CHARS = re.compile(r"[^a-z0-9-]+")


def get_tenant(tenant_id):
    """Active tenant or ``NotFoundError`` (inactive tenants look missing)."""
    tenant = db.session.get(Tenant, tenant_id)
    if not tenant or not tenant.is_active:
        raise NotFoundError("Tenant", tenant_id)
    return tenant


def create_tenant(data):
    name = (data.get("name") or "").strip()
    if not name:
        return None, Refusal(E.VALIDATION_REQUIRED, "name is required", {"name": "required"})
    slug = _SLUG_CHARS.sub("-", (data.get("slug") or name).strip().lower()).strip("-")
    if Tenant.query.filter_by(slug=slug).first():
        raise ConflictError("Tenant", "slug", slug)
    tenant = Tenant(name=name, slug=slug)
    db.session.add(tenant)
    db.session.commit()
    logger.info("Tenant created: id=%s slug=%s", tenant.id, slug)
    return tenant, None
