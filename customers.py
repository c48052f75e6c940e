import logging
from typing import Any, Dict, List

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents, now, serialize_doc, to_object_id
from schemas import Customer

logger = logging.getLogger(__name__)


class CustomerRegistry:
    """Customers keyed by email. The first order with an email creates the row,
    later orders reuse it as stored."""

    def __init__(self, db):
        self.collection = db["customers"]
        self.db = db

    def list_customers(self) -> List[Dict[str, Any]]:
        return get_documents(self.db, "customers")

    def find_or_create(self, details: Customer) -> Dict[str, Any]:
        doc = details.model_dump()
        email = doc.get("email")
        if not email:
            customer_id = create_document(self.db, "customers", doc)
            logger.info("Created customer %s without email", customer_id)
            return serialize_doc(self.collection.find_one({"_id": to_object_id(customer_id)}))

        on_insert = {k: v for k, v in doc.items() if k != "email"}
        on_insert["created_at"] = now()
        on_insert["updated_at"] = on_insert["created_at"]
        try:
            customer = self.collection.find_one_and_update(
                {"email": email},
                {"$setOnInsert": on_insert},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # Another request inserted the same email first
            customer = self.collection.find_one({"email": email})
        return serialize_doc(customer)
