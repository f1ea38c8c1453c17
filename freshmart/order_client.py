"""
HTTP client for a remote order service.

The service is expected to accept POST /orders with an OrderSubmission body
and return at least an order id. Responses may be wrapped in a {"data": ...}
envelope.
"""
import logging
from typing import Any, Dict, Optional

import requests

from freshmart.exceptions import OrderNotFoundError, OrderRejectedError, OrderServiceError
from freshmart.models import Order, OrderConfirmation, OrderSubmission
from freshmart.tracking import TrackingView

logger = logging.getLogger(__name__)

REJECTED_STATUSES = (400, 409, 422)


class HttpOrderClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    def _request(self, method: str, path: str, order_id: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning(f"Order service unreachable: {e}", extra={"url": url})
            raise OrderServiceError(f"Order service unreachable: {e}")

        if response.status_code == 404 and order_id is not None:
            raise OrderNotFoundError(order_id)

        if response.status_code in REJECTED_STATUSES:
            raise OrderRejectedError(self._error_message(response))

        if not response.ok:
            logger.error(
                f"Order service returned {response.status_code}",
                extra={"url": url, "status_code": response.status_code}
            )
            raise OrderServiceError(
                f"Order service returned {response.status_code}",
                status_code=response.status_code
            )

        try:
            body = response.json()
        except ValueError:
            raise OrderServiceError("Order service returned a non-JSON body", status_code=response.status_code)

        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            return body["data"]
        return body

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or "Order rejected"
        if isinstance(body, dict):
            detail = body.get("message") or body.get("detail")
            if isinstance(detail, str) and detail:
                return detail
        return "Order rejected"

    def submit_order(self, submission: OrderSubmission) -> OrderConfirmation:
        data = self._request("POST", "/orders", json=submission.model_dump(mode="json"))
        # Some services name the id field "id" or "orderId"
        order_id = data.get("order_id") or data.get("orderId") or data.get("id")
        if not order_id:
            raise OrderServiceError("Order service response had no order id")
        return OrderConfirmation(order_id=str(order_id), status=data.get("status", "pending"))

    def get_order(self, order_id: str) -> Order:
        return Order.model_validate(self._request("GET", f"/orders/{order_id}", order_id=order_id))

    def get_tracking(self, order_id: str) -> TrackingView:
        return TrackingView.model_validate(
            self._request("GET", f"/orders/{order_id}/tracking", order_id=order_id)
        )

    def list_orders(self, user_id: str):
        data = self._request("GET", "/orders", params={"user_id": user_id})
        orders = data.get("orders", []) if isinstance(data, dict) else data
        return [Order.model_validate(order) for order in orders]
