"""
Order engine: checkout, admin status updates and role-scoped listing.

Checkout validates every cart line against live stock before any stock is
touched, so a failure on a later line never leaves an earlier line reserved.
Cancelling an order is the compensating action: item quantities go back to
the products they came from.
"""
import logging
import random
import string
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import config
from auth import Identity, authorize_admin
from database import Store
from errors import InsufficientStock, InvalidTransition, NoChanges, OrderNotFound, ProductInactive, ProductNotFound, ValidationError
from pagination import clamp_page, paginate, resolve_sort, sort_docs
from schemas import Order, OrderCreate, OrderItem, OrderStatus, OrderUpdate, parse

logger = logging.getLogger(__name__)
security_log = logging.getLogger("security")

TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

SORT_FIELDS = ("createdAt", "updatedAt", "totalAmount", "status")
SUMMARY_FIELDS = ("id", "orderNumber", "status", "totalAmount", "createdAt", "updatedAt",
                  "estimatedDelivery", "trackingNumber", "paymentStatus")
DETAIL_FIELDS = ("userId", "items", "shippingAddress", "paymentMethod", "notes", "subtotal", "shippingCost", "adminNotes")


@dataclass(frozen=True)
class FieldChange:
    field: str
    old_value: Any
    new_value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "oldValue": self.old_value, "newValue": self.new_value}


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new == current or new in TRANSITIONS[current]


def shipping_cost_for(subtotal) -> int:
    return 0 if subtotal > config.FREE_SHIPPING_THRESHOLD else config.SHIPPING_FLAT_FEE


def generate_order_number(store: Optional[Store] = None) -> str:
    taken = {o.get("orderNumber") for o in store.list("orders")} if store is not None else set()
    while True:
        suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
        number = f"ORD-{int(time.time() * 1000)}-{suffix}"
        if number not in taken:
            return number


# ---------- Checkout ----------

def create_order(store: Store, identity: Identity, data: Dict[str, Any]) -> Dict[str, Any]:
    payload = parse(OrderCreate, data)

    products: Dict[int, Dict[str, Any]] = {}
    requested: Dict[int, int] = OrderedDict()
    items: List[OrderItem] = []
    for line in payload.items:
        product = products.get(line.product_id) or store.get("products", line.product_id)
        if not product:
            raise ProductNotFound(f"Product with ID {line.product_id} not found")
        if product.get("isActive", True) is False:
            raise ProductInactive(f'Product "{product["name"]}" is not available')

        # several lines may reference the same product; stock must cover their sum
        requested[product["id"]] = requested.get(product["id"], 0) + line.quantity
        stock = product.get("stock", 0)
        if requested[product["id"]] > stock:
            raise InsufficientStock(
                f'Insufficient stock for product "{product["name"]}". '
                f"Available: {stock}, Requested: {requested[product['id']]}"
            )
        products[product["id"]] = product
        items.append(OrderItem(
            product_id=product["id"],
            product_name=product["name"],
            product_image=product.get("image"),
            price=product["price"],
            quantity=line.quantity,
            subtotal=product["price"] * line.quantity,
        ))

    subtotal = sum(item.subtotal for item in items)
    shipping_cost = shipping_cost_for(subtotal)
    now = datetime.now(timezone.utc)

    for product_id, quantity in requested.items():
        product = products[product_id]
        product["stock"] = product.get("stock", 0) - quantity
        product["updatedAt"] = now.isoformat()
        store.put("products", product)

    order = Order(
        id=store.next_id("orders"),
        user_id=identity.id,
        order_number=generate_order_number(store),
        items=items,
        shipping_address=payload.shipping_address,
        payment_method=payload.payment_method,
        notes=payload.notes or "",
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        total_amount=subtotal + shipping_cost,
        created_at=now,
        updated_at=now,
        estimated_delivery=now + timedelta(days=config.DELIVERY_LEAD_DAYS),
    ).model_dump(by_alias=True, mode="json")
    store.put("orders", order)

    security_log.info(
        "New order created: user=%s order=%s number=%s total=%s items=%d",
        identity.id, order["id"], order["orderNumber"], order["totalAmount"], len(items),
    )
    return order


# ---------- Admin updates ----------

def _restore_stock(store: Store, order: Dict[str, Any]) -> List[Dict[str, int]]:
    restored = []
    for item in order.get("items", []):
        product = store.get("products", item["productId"])
        if not product:
            continue
        product["stock"] = product.get("stock", 0) + item["quantity"]
        product["updatedAt"] = datetime.now(timezone.utc).isoformat()
        store.put("products", product)
        restored.append({"productId": item["productId"], "quantity": item["quantity"]})
    return restored


def update_order(store: Store, actor: Identity, order_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply an admin update and return {"order", "changes"}.

    Every field is validated before anything is written, so a rejected
    request never restores stock or touches the stored order.
    """
    authorize_admin(actor).enforce()
    order = store.get("orders", order_id)
    if not order:
        raise OrderNotFound()
    payload = parse(OrderUpdate, data)
    provided = payload.model_fields_set

    changes: List[FieldChange] = []
    current = OrderStatus(order["status"])
    cancelling = False
    if payload.status is not None and payload.status != current:
        if not can_transition(current, payload.status):
            raise InvalidTransition(f'Cannot change status from "{current.value}" to "{payload.status.value}"')
        changes.append(FieldChange("status", current.value, payload.status.value))
        cancelling = payload.status is OrderStatus.CANCELLED

    if "tracking_number" in provided:
        tracking = payload.tracking_number or None
        if tracking != order.get("trackingNumber"):
            changes.append(FieldChange("trackingNumber", order.get("trackingNumber"), tracking))

    if payload.payment_status is not None and payload.payment_status.value != order.get("paymentStatus"):
        changes.append(FieldChange("paymentStatus", order.get("paymentStatus"), payload.payment_status.value))

    if "admin_notes" in provided:
        notes = payload.admin_notes or ""
        if notes != order.get("adminNotes", ""):
            changes.append(FieldChange("adminNotes", order.get("adminNotes", ""), notes))

    if not changes:
        raise NoChanges()

    for change in changes:
        order[change.field] = change.new_value
    if cancelling:
        changes.append(FieldChange("stock", None, _restore_stock(store, order)))

    now = datetime.now(timezone.utc)
    order["updatedAt"] = now.isoformat()
    if order["status"] == OrderStatus.SHIPPED.value and not order.get("estimatedDelivery"):
        order["estimatedDelivery"] = (now + timedelta(days=config.SHIPPED_DELIVERY_LEAD_DAYS)).isoformat()
    store.put("orders", order)

    security_log.info(
        "Order updated by admin %s: order=%s number=%s changes=%s",
        actor.id, order_id, order.get("orderNumber"), [c.field for c in changes],
    )
    return {"order": order, "changes": [c.to_dict() for c in changes]}


# ---------- Listing ----------

def _project(order: Dict[str, Any], identity: Identity, users: Dict[int, Dict[str, Any]]) -> Dict[str, Any]:
    view = {k: order.get(k) for k in SUMMARY_FIELDS}
    view["itemCount"] = len(order.get("items", []))
    if order.get("userId") == identity.id or identity.is_admin:
        view.update({k: order.get(k) for k in DETAIL_FIELDS})
        if identity.is_admin:
            user = users.get(order.get("userId"))
            view["user"] = {k: user.get(k) for k in ("id", "username", "email", "fullName")} if user else None
    return view


def _users_by_id(store: Store, identity: Identity) -> Dict[int, Dict[str, Any]]:
    return {u["id"]: u for u in store.list("users")} if identity.is_admin else {}


def list_orders(
    store: Store,
    identity: Identity,
    status: str = "",
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
    admin_view: bool = False,
) -> Dict[str, Any]:
    if admin_view:
        authorize_admin(identity).enforce()
    limit, offset = clamp_page(limit, offset)
    field, descending = resolve_sort(sort_by, sort_order, SORT_FIELDS)

    orders = store.list("orders")
    if not admin_view:
        orders = [o for o in orders if o.get("userId") == identity.id]

    status = (status or "").strip().lower()
    if status:
        if status not in {s.value for s in OrderStatus}:
            raise ValidationError("Invalid status filter", errors=[{"field": "status", "message": "Unknown order status"}])
        orders = [o for o in orders if o.get("status") == status]

    page, pagination = paginate(sort_docs(orders, field, descending), limit, offset)
    users = _users_by_id(store, identity)
    statistics = {"total": len(orders)}
    for s in OrderStatus:
        statistics[s.value] = sum(1 for o in orders if o.get("status") == s.value)

    return {
        "orders": [_project(o, identity, users) for o in page],
        "pagination": pagination,
        "filters": {"appliedStatus": status, "availableStatuses": [s.value for s in OrderStatus]},
        "sorting": {"sortBy": field, "sortOrder": "desc" if descending else "asc"},
        "statistics": statistics,
    }


def get_order(store: Store, identity: Identity, order_id: int) -> Dict[str, Any]:
    order = store.get("orders", order_id)
    if not order or (order.get("userId") != identity.id and not identity.is_admin):
        raise OrderNotFound()
    return _project(order, identity, _users_by_id(store, identity))
