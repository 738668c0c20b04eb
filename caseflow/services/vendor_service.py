"""
Vendor resolution against the record store.

``SqlVendorResolver`` is the ``VendorResolver`` capability handed to the
automation evaluator: lookup by the sender's normalized phone, and
(conditionally, as the evaluator decides) creation of a new vendor row.
"""

import logging

from caseflow.core.exceptions import ConflictError, Refusal
from caseflow.models import db
from caseflow.models.case import Vendor
from caseflow.utils.errors import E
from caseflow.utils.phone import normalize_phone

logger = logging.getLogger(__name__)


class SqlVendorResolver:
    """Resolve/create vendors of one tenant by phone number.

    Inactive vendors do not resolve.  Auto-creation for their phone
    reactivates the existing row, since the phone is unique per tenant.
    """

    def __init__(self, tenant_id, display_name=None):
        self.tenant_id = tenant_id
        self.display_name = display_name

    def _by_phone(self, sender_id):
        return Vendor.query.filter_by(tenant_id=self.tenant_id, phone_e164=sender_id).first()

    def resolve(self, sender_id):
        if not sender_id:
            return None
        vendor = self._by_phone(sender_id)
        return vendor if vendor is not None and vendor.active else None

    def create_from_sender(self, sender_id):
        if not sender_id:
            return None
        vendor = self._by_phone(sender_id)
        if vendor is not None:
            vendor.active = True
            db.session.flush()
            logger.info("Vendor reactivated: id=%s tenant=%s", vendor.id, self.tenant_id,
                        extra={"tenant_id": self.tenant_id, "sender_id": sender_id})
            return vendor
        vendor = Vendor(
            tenant_id=self.tenant_id,
            phone_e164=sender_id,
            display_name=self.display_name,
            active=True,
        )
        db.session.add(vendor)
        db.session.flush()
        logger.info("Vendor auto-created: id=%s tenant=%s", vendor.id, self.tenant_id,
                    extra={"tenant_id": self.tenant_id, "sender_id": sender_id})
        return vendor


def list_vendors(tenant_id):
    return [v.to_dict() for v in Vendor.query_for_tenant(tenant_id).order_by(Vendor.id).all()]


def create_vendor(tenant_id, phone, display_name=None, country_code="55"):
    """Register a vendor explicitly; returns ``(vendor, refusal)``."""
    phone_e164 = normalize_phone(phone, country_code)
    if not phone_e164:
        return None, Refusal(E.VALIDATION_INVALID, f"{phone!r} is not a usable phone number",
                             {"phone": "expected 10/11 local digits or a full international number"})
    if Vendor.query.filter_by(tenant_id=tenant_id, phone_e164=phone_e164).first():
        raise ConflictError("Vendor", "phone_e164", phone_e164)
    vendor = Vendor(tenant_id=tenant_id, phone_e164=phone_e164, display_name=display_name)
    db.session.add(vendor)
    db.session.commit()
    logger.info("Vendor created: id=%s tenant=%s", vendor.id, tenant_id)
    return vendor, None
