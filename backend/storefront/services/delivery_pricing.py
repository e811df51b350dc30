"""
Delivery Pricing — shipping charge from subtotal and the admin delivery settings.

Modes:
- FLAT:        always charge the flat amount (unless the free-delivery rule applies)
- CONDITIONAL: charge the flat amount only below the free-delivery threshold
"""
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from storefront.models.store_settings import ServiceablePincode
from storefront.services.settings_service import SettingsService

CHARGE_TYPES = ("FLAT", "CONDITIONAL")


def compute_charge(subtotal: float, settings) -> float:
    """Pure: delivery charge for a pre-discount ``subtotal``."""
    threshold = settings.free_delivery_min_amount or 0
    if settings.free_delivery_enabled and subtotal >= threshold:
        return 0.0
    if settings.delivery_charge_type == "CONDITIONAL" and subtotal >= threshold:
        return 0.0
    return float(settings.flat_delivery_charge or 0)


def final_total(subtotal: float, discount: float, delivery_charge: float) -> float:
    """Never negative, rounded to paise."""
    return round(max(0.0, subtotal - discount + delivery_charge), 2)


def check_pincode(db: Session, pincode: str) -> Tuple[bool, Optional[ServiceablePincode]]:
    """(available, matching record). Pan-India delivery makes every pincode available."""
    record = (
        db.query(ServiceablePincode)
        .filter(ServiceablePincode.pincode == pincode.strip(), ServiceablePincode.is_active.is_(True))
        .first()
    )
    if record is not None:
        return True, record
    return bool(SettingsService.get_delivery(db).pan_india_enabled), None
