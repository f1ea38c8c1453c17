"""
Order tracking projection: fixed five-stage timeline plus delivery partner snapshot.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from freshmart.models import Order, OrderStatus

TIMELINE = [
    (OrderStatus.PENDING, "Order Placed"),
    (OrderStatus.CONFIRMED, "Order Confirmed"),
    (OrderStatus.PREPARING, "Preparing Order"),
    (OrderStatus.OUT_FOR_DELIVERY, "Out for Delivery"),
    (OrderStatus.DELIVERED, "Delivered"),
]

STATUS_LABELS = {
    OrderStatus.PENDING: "Pending",
    OrderStatus.CONFIRMED: "Confirmed",
    OrderStatus.PREPARING: "Preparing",
    OrderStatus.OUT_FOR_DELIVERY: "Out for Delivery",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
}


class TimelineStage(BaseModel):
    status: OrderStatus
    label: str
    completed: bool
    current: bool


class PartnerSnapshot(BaseModel):
    partner_id: str
    name: str = ""
    phone: str = ""
    vehicle_type: str
    vehicle_number: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    rating: float = 0.0


class TrackingView(BaseModel):
    order_id: str
    status: OrderStatus
    status_label: str
    cancelled: bool = False
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    timeline: List[TimelineStage]
    delivery_partner: Optional[PartnerSnapshot] = None


def stage_index(status: OrderStatus) -> Optional[int]:
    """Position of a status on the timeline; None for statuses off the timeline"""
    for index, (stage_status, _) in enumerate(TIMELINE):
        if stage_status == status:
            return index
    return None


def build_timeline(status: OrderStatus) -> List[TimelineStage]:
    """Stages up to and including the current one are complete, later ones pending"""
    current = stage_index(OrderStatus(status))
    stages = []
    for index, (stage_status, label) in enumerate(TIMELINE):
        stages.append(TimelineStage(
            status=stage_status,
            label=label,
            completed=current is not None and index <= current,
            current=index == current
        ))
    return stages


def build_tracking(order: Order, partner=None) -> TrackingView:
    snapshot = None
    if partner is not None:
        location = partner.current_location
        snapshot = PartnerSnapshot(
            partner_id=partner.partner_id,
            name=partner.name,
            phone=partner.phone,
            vehicle_type=partner.vehicle_type.value,
            vehicle_number=partner.vehicle_number,
            lat=location.lat if location else None,
            lng=location.lng if location else None,
            rating=partner.rating.average
        )

    return TrackingView(
        order_id=order.order_id,
        status=order.status,
        status_label=STATUS_LABELS[order.status],
        cancelled=order.status == OrderStatus.CANCELLED,
        estimated_delivery=order.estimated_delivery,
        delivered_at=order.delivered_at,
        timeline=build_timeline(order.status),
        delivery_partner=snapshot
    )
