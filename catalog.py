import logging
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING

from database import create_document, get_documents, now, serialize_doc, to_object_id
from schemas import ProductIn

logger = logging.getLogger(__name__)

# Columns overwritten by an update; anything else on the row is left alone
PRODUCT_FIELDS = ("name", "description", "price", "image", "category", "stock")


class ProductCatalog:
    """CRUD over the products collection."""

    def __init__(self, db):
        self.collection = db["products"]
        self.db = db

    def list_products(self) -> List[Dict[str, Any]]:
        return get_documents(self.db, "products", sort=[("created_at", DESCENDING)])

    def create_product(self, body: ProductIn) -> Dict[str, Any]:
        product_id = create_document(self.db, "products", body)
        logger.info("Created product %s (%s)", product_id, body.name)
        return self.get_product(product_id)

    def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        return serialize_doc(self.collection.find_one({"_id": oid}))

    def update_product(self, product_id: str, body: ProductIn) -> Optional[Dict[str, Any]]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        update = {k: v for k, v in body.model_dump().items() if k in PRODUCT_FIELDS}
        update["updated_at"] = now()
        self.collection.update_one({"_id": oid}, {"$set": update})
        return self.get_product(product_id)

    def delete_product(self, product_id: str) -> Dict[str, str]:
        oid = to_object_id(product_id)
        if oid is not None:
            self.collection.delete_one({"_id": oid})
        return {"message": "Product deleted successfully"}
