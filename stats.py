from typing import Any, Dict, Optional

from database import to_object_id


class StatsAggregator:
    def __init__(self, db):
        self.db = db

    def compute(self) -> Dict[str, Any]:
        total_products = self.db["products"].count_documents({})

        items = list(self.db["order_items"].find({}, {"product_id": 1, "quantity": 1}))
        product_ids = [oid for oid in {to_object_id(i.get("product_id")) for i in items} if oid is not None]
        products = {str(p["_id"]): p for p in self.db["products"].find({"_id": {"$in": product_ids}})}

        # product id -> {"quantity", "product"}; dicts keep first-seen order
        totals: Dict[str, Dict[str, Any]] = {}
        for item in items:
            product = products.get(item.get("product_id"))
            if product is None:
                continue
            entry = totals.get(item["product_id"])
            if entry is None:
                entry = totals[item["product_id"]] = {
                    "quantity": 0,
                    "product": {
                        "id": str(product["_id"]),
                        "name": product.get("name"),
                        "price": float(product["price"]) if product.get("price") else 0,
                        "image": product.get("image"),
                        "description": product.get("description"),
                    },
                }
            entry["quantity"] += item["quantity"]

        best: Optional[Dict[str, Any]] = None
        for entry in totals.values():
            if best is None or entry["quantity"] > best["quantity"]:
                best = entry

        return {
            "totalProducts": total_products,
            "mostOrderedProduct": best["product"] if best and best["quantity"] > 0 else None,
        }
