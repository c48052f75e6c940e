"""
Order workflow

Placing an order writes the order, its items and the stock decrements as one
unit: every write registers an undo step, and a store failure part-way runs the
undo steps in reverse before the error is re-raised. Cancelling an order puts
the stock back. Status changes are not checked against a transition table, so
an order cancelled twice is restocked twice.
"""
import logging
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from customers import CustomerRegistry
from database import create_document, now, serialize_doc, to_object_id
from schemas import Order, OrderIn, OrderItem, PaymentInfo

logger = logging.getLogger(__name__)

PENDING = "PENDING"
PAID = "PAID"
SHIPPED = "SHIPPED"
DELIVERED = "DELIVERED"
CANCELLED = "CANCELLED"

# Portuguese tokens sent by the admin panel
STATUS_MAP = {
    "PENDENTE": PENDING,
    "PAGO": PAID,
    "ENVIADO": SHIPPED,
    "ENTREGUE": DELIVERED,
    "CANCELADO": CANCELLED,
}


def normalize_status(raw: str) -> str:
    status = raw.upper()
    return STATUS_MAP.get(status, status)


def mask_card_number(card_number: Optional[str]) -> Optional[str]:
    if not card_number:
        return None
    return f"****-****-****-{card_number[-4:]}"


class OrderWorkflow:
    def __init__(self, db, customers: Optional[CustomerRegistry] = None):
        self.db = db
        self.customers = customers or CustomerRegistry(db)

    def _adjust_stock(self, product_id: str, delta: int) -> None:
        oid = to_object_id(product_id)
        if oid is None:
            return
        self.db["products"].update_one({"_id": oid}, {"$inc": {"stock": delta}})

    def _compensate(self, undo: List[Callable[[], Any]]) -> None:
        logger.warning("Rolling back %d order write(s)", len(undo))
        for action in reversed(undo):
            try:
                action()
            except PyMongoError:
                logger.exception("Undo step failed")

    def place_order(self, body: OrderIn) -> Dict[str, Any]:
        customer = self.customers.find_or_create(body.customer.to_customer())
        payment = body.payment_info or PaymentInfo()
        masked = mask_card_number(payment.card_number)

        undo: List[Callable[[], Any]] = []
        try:
            order = Order(
                customer_id=customer["id"],
                total=body.total,
                status=PENDING,
                payment_card_name=payment.card_name,
                payment_card_number_masked=masked,
            )
            order_id = create_document(self.db, "orders", order)
            undo.append(partial(self.db["orders"].delete_one, {"_id": to_object_id(order_id)}))

            items = [
                OrderItem(
                    order_id=order_id,
                    product_id=item.product.id,
                    quantity=item.quantity,
                    price=item.product.price,
                    created_at=now(),
                ).model_dump()
                for item in body.items
            ]
            if items:
                undo.append(partial(self.db["order_items"].delete_many, {"order_id": order_id}))
                self.db["order_items"].insert_many(items)

            for item in body.items:
                self._adjust_stock(item.product.id, -item.quantity)
                undo.append(partial(self._adjust_stock, item.product.id, item.quantity))
        except PyMongoError:
            self._compensate(undo)
            raise

        logger.info("Placed order %s with %d item(s)", order_id, len(items))
        return {
            "id": order_id,
            "status": PENDING,
            "total": body.total,
            "customer": {
                "id": customer["id"],
                "name": customer.get("full_name"),
                "email": customer.get("email"),
            },
            "items": [
                {
                    "product": {"id": item.product.id, "name": item.product.name, "price": item.product.price},
                    "quantity": item.quantity,
                }
                for item in body.items
            ],
            "payment_info": {
                "card_name": payment.card_name,
                "card_number_masked": masked,
            },
            "created_at": now(),
        }

    def set_status(self, order_id: str, raw_status: str) -> Optional[Dict[str, Any]]:
        status = normalize_status(raw_status)
        oid = to_object_id(order_id)
        if oid is None:
            return None

        if status == CANCELLED:
            for item in self.db["order_items"].find({"order_id": order_id}):
                self._adjust_stock(item["product_id"], item["quantity"])
            logger.info("Restocked items of cancelled order %s", order_id)

        self.db["orders"].update_one({"_id": oid}, {"$set": {"status": status, "updated_at": now()}})
        return serialize_doc(self.db["orders"].find_one({"_id": oid}))

    def list_orders(self) -> List[Dict[str, Any]]:
        orders = list(self.db["orders"].find().sort([("created_at", DESCENDING)]))
        if not orders:
            return []

        customer_ids = [to_object_id(o.get("customer_id")) for o in orders]
        customers = {
            str(c["_id"]): c
            for c in self.db["customers"].find({"_id": {"$in": [c for c in customer_ids if c is not None]}})
        }

        order_ids = [str(o["_id"]) for o in orders]
        items_by_order: Dict[str, List[Dict[str, Any]]] = {}
        product_ids = set()
        for item in self.db["order_items"].find({"order_id": {"$in": order_ids}}):
            items_by_order.setdefault(item["order_id"], []).append(item)
            product_ids.add(item["product_id"])

        products = {
            str(p["_id"]): p
            for p in self.db["products"].find(
                {"_id": {"$in": [oid for oid in map(to_object_id, product_ids) if oid is not None]}}
            )
        }

        result = []
        for o in orders:
            customer = customers.get(o.get("customer_id"))
            if customer is None:
                continue
            order = serialize_doc(o)
            order.update({
                "customer_name": customer.get("full_name"),
                "customer_email": customer.get("email"),
                "customer_phone": customer.get("phone"),
                "customer_address": customer.get("address"),
                "customer_city": customer.get("city"),
                "customer_postal_code": customer.get("postal_code"),
            })
            items = []
            for item in items_by_order.get(order["id"], []):
                product = products.get(item["product_id"])
                if product is None:
                    continue
                items.append({
                    "product": {
                        "id": item["product_id"],
                        "name": product.get("name"),
                        "price": float(item["price"]),
                        "description": product.get("description") or "",
                        "image": product.get("image") or "",
                        "category": product.get("category") or "",
                        "stock": product.get("stock"),
                    },
                    "quantity": item["quantity"],
                })
            order["items"] = items
            result.append(order)
        return result
