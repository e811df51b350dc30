"""
Query Filters — typed filter objects for the admin list endpoints.
Each field maps to exactly one clause; unset fields add nothing.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Query

from storefront.models.order import Order
from storefront.models.payment_log import PaymentLog


@dataclass
class OrderFilter:
    status: Optional[str] = None
    payment_method: Optional[str] = None
    search: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    def apply(self, query: Query) -> Query:
        if self.status:
            query = query.filter(Order.order_status == self.status)
        if self.payment_method:
            query = query.filter(Order.payment_method == self.payment_method)
        if self.search:
            term = f"%{self.search.strip()}%"
            query = query.filter(or_(
                Order.order_number.ilike(term),
                Order.customer_name.ilike(term),
                Order.mobile.ilike(term),
            ))
        if self.date_from:
            query = query.filter(Order.created_at >= self.date_from)
        if self.date_to:
            query = query.filter(Order.created_at <= self.date_to)
        return query


@dataclass
class PaymentLogFilter:
    correlation_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    order_id: Optional[int] = None
    event_type: Optional[str] = None
    status: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    def apply(self, query: Query) -> Query:
        if self.correlation_id:
            query = query.filter(PaymentLog.correlation_id == self.correlation_id)
        if self.gateway_order_id:
            query = query.filter(PaymentLog.gateway_order_id == self.gateway_order_id)
        if self.order_id is not None:
            query = query.filter(PaymentLog.order_id == self.order_id)
        if self.event_type:
            query = query.filter(PaymentLog.event_type == self.event_type)
        if self.status:
            query = query.filter(PaymentLog.status == self.status)
        if self.date_from:
            query = query.filter(PaymentLog.created_at >= self.date_from)
        if self.date_to:
            query = query.filter(PaymentLog.created_at <= self.date_to)
        return query
