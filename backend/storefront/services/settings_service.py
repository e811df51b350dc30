"""
Settings Service — get/upsert for the singleton configuration rows.
A missing row means "defaults"; upsert creates it on first save.
"""
from sqlalchemy.orm import Session

from storefront.models.store_settings import DeliverySettings, NotificationSettings, SINGLETON_ID

DELIVERY_DEFAULTS = {
    "pan_india_enabled": False,
    "free_delivery_enabled": True,
    "free_delivery_min_amount": 999.0,
    "flat_delivery_charge": 99.0,
    "delivery_charge_type": "FLAT",
}

NOTIFICATION_DEFAULTS = {
    "admin_email": None,
    "order_alerts_enabled": True,
    "low_stock_alerts_enabled": True,
    "low_stock_threshold": 5,
}


class SettingsService:

    @staticmethod
    def get_delivery(db: Session) -> DeliverySettings:
        row = db.get(DeliverySettings, SINGLETON_ID)
        return row if row is not None else DeliverySettings(id=SINGLETON_ID, **DELIVERY_DEFAULTS)

    @staticmethod
    def upsert_delivery(db: Session, **fields) -> DeliverySettings:
        row = db.get(DeliverySettings, SINGLETON_ID)
        if row is None:
            row = DeliverySettings(id=SINGLETON_ID, **{**DELIVERY_DEFAULTS, **fields})
            db.add(row)
        else:
            for name, value in fields.items():
                setattr(row, name, value)
        db.commit()
        db.refresh(row)
        return row

    @staticmethod
    def get_notification(db: Session) -> NotificationSettings:
        row = db.get(NotificationSettings, SINGLETON_ID)
        return row if row is not None else NotificationSettings(id=SINGLETON_ID, **NOTIFICATION_DEFAULTS)

    @staticmethod
    def upsert_notification(db: Session, **fields) -> NotificationSettings:
        row = db.get(NotificationSettings, SINGLETON_ID)
        if row is None:
            row = NotificationSettings(id=SINGLETON_ID, **{**NOTIFICATION_DEFAULTS, **fields})
            db.add(row)
        else:
            for name, value in fields.items():
                setattr(row, name, value)
        db.commit()
        db.refresh(row)
        return row
