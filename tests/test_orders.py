from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from bson import ObjectId
from pymongo.errors import OperationFailure, PyMongoError

from orders import CANCELLED, PAID, OrderWorkflow, mask_card_number, normalize_status
from schemas import OrderIn


def order_body(*items, email="joao@tropiq.cv", card="4111111111111111", total=None):
    return OrderIn.model_validate({
        "customer": {
            "name": "Joao Tavares",
            "email": email,
            "phone": "9912345",
            "address": "Rua 5 de Julho",
            "city": "Praia",
            "zipCode": "7600",
        },
        "items": [
            {"product": {"id": pid, "name": f"product {pid[-4:]}", "price": price}, "quantity": qty}
            for pid, price, qty in items
        ],
        "total": total if total is not None else sum(price * qty for _, price, qty in items),
        "paymentInfo": {"cardName": "JOAO TAVARES", "cardNumber": card} if card else None,
    })


def stock_of(db, product_id):
    return db["products"].find_one({"_id": ObjectId(product_id)})["stock"]


def test_mask_card_number():
    assert mask_card_number("4111111111111111") == "****-****-****-1111"
    assert mask_card_number(None) is None
    assert mask_card_number("") is None


@pytest.mark.parametrize("raw,expected", [
    ("pago", PAID),
    ("PaGo", PAID),
    ("cancelado", CANCELLED),
    ("entregue", "DELIVERED"),
    ("shipped", "SHIPPED"),
    ("foo", "FOO"),
])
def test_normalize_status(raw, expected):
    assert normalize_status(raw) == expected


def test_place_order_decrements_stock_and_echoes_input(db, make_product):
    a = make_product(price=10.0, stock=10)
    b = make_product(price=2.5, stock=3)

    result = OrderWorkflow(db).place_order(order_body((a, 10.0, 2), (b, 2.5, 3)))

    assert stock_of(db, a) == 8
    assert stock_of(db, b) == 0
    assert result["status"] == "PENDING"
    assert result["total"] == 27.5
    assert result["customer"]["name"] == "Joao Tavares"
    assert result["customer"]["email"] == "joao@tropiq.cv"
    assert result["payment_info"] == {"card_name": "JOAO TAVARES", "card_number_masked": "****-****-****-1111"}
    assert result["items"][0] == {"product": {"id": a, "name": f"product {a[-4:]}", "price": 10.0}, "quantity": 2}

    order = db["orders"].find_one({"_id": ObjectId(result["id"])})
    assert order["status"] == "PENDING"
    assert order["customer_id"] == result["customer"]["id"]
    assert order["payment_card_number_masked"] == "****-****-****-1111"
    items = list(db["order_items"].find({"order_id": result["id"]}))
    assert sorted((i["product_id"], i["quantity"], i["price"]) for i in items) == sorted([(a, 2, 10.0), (b, 3, 2.5)])


def test_item_price_is_a_snapshot(db, make_product):
    a = make_product(price=10.0)
    result = OrderWorkflow(db).place_order(order_body((a, 10.0, 1)))
    db["products"].update_one({"_id": ObjectId(a)}, {"$set": {"price": 99.0}})

    item = db["order_items"].find_one({"order_id": result["id"]})
    assert item["price"] == 10.0


def test_repeated_orders_subtract_sum_of_quantities(db, make_product):
    a = make_product(stock=100)
    workflow = OrderWorkflow(db)
    for qty in (1, 4, 7, 3):
        workflow.place_order(order_body((a, 10.0, qty)))

    assert stock_of(db, a) == 100 - 15
    assert db["customers"].count_documents({}) == 1


def test_concurrent_orders_subtract_sum_of_quantities(db, make_product):
    a = make_product(stock=500)
    workflow = OrderWorkflow(db)
    quantities = [(i % 5) + 1 for i in range(40)]

    def place(i):
        return workflow.place_order(order_body((a, 10.0, quantities[i]), email=f"buyer{i}@tropiq.cv"))

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(place, range(len(quantities))))

    assert len({r["id"] for r in results}) == len(quantities)
    assert stock_of(db, a) == 500 - sum(quantities)
    assert db["order_items"].count_documents({}) == len(quantities)


def test_order_without_payment_info(db, make_product):
    a = make_product()
    result = OrderWorkflow(db).place_order(order_body((a, 10.0, 1), card=None))

    assert result["payment_info"] == {"card_name": None, "card_number_masked": None}


def test_failed_item_insert_leaves_nothing_behind(db, make_product, monkeypatch):
    a = make_product(stock=5)

    def failing_insert_many(self, *args, **kwargs):
        raise OperationFailure("disk full")

    monkeypatch.setattr(mongomock.collection.Collection, "insert_many", failing_insert_many)

    with pytest.raises(PyMongoError):
        OrderWorkflow(db).place_order(order_body((a, 10.0, 2)))

    assert db["orders"].count_documents({}) == 0
    assert db["order_items"].count_documents({}) == 0
    assert stock_of(db, a) == 5


def test_failed_stock_decrement_rolls_back_earlier_writes(db, make_product, monkeypatch):
    a = make_product(stock=10)
    b = make_product(stock=5)
    original_update_one = mongomock.collection.Collection.update_one
    decrements = []

    def flaky_update_one(self, filter, update, *args, **kwargs):
        delta = update.get("$inc", {}).get("stock", 0)
        if delta < 0:
            decrements.append(delta)
            if len(decrements) == 2:
                raise OperationFailure("connection reset")
        return original_update_one(self, filter, update, *args, **kwargs)

    monkeypatch.setattr(mongomock.collection.Collection, "update_one", flaky_update_one)

    with pytest.raises(PyMongoError):
        OrderWorkflow(db).place_order(order_body((a, 10.0, 2), (b, 1.0, 1)))

    assert stock_of(db, a) == 10
    assert stock_of(db, b) == 5
    assert db["orders"].count_documents({}) == 0
    assert db["order_items"].count_documents({}) == 0


def test_cancel_restocks_every_item(db, make_product):
    a = make_product(stock=10)
    b = make_product(stock=10)
    workflow = OrderWorkflow(db)
    order = workflow.place_order(order_body((a, 10.0, 3), (b, 1.0, 2)))

    updated = workflow.set_status(order["id"], "cancelado")

    assert updated["status"] == CANCELLED
    assert updated["id"] == order["id"]
    assert "items" not in updated
    assert stock_of(db, a) == 10
    assert stock_of(db, b) == 10


def test_cancelling_twice_restocks_twice(db, make_product):
    a = make_product(stock=10)
    workflow = OrderWorkflow(db)
    order = workflow.place_order(order_body((a, 10.0, 3)))

    workflow.set_status(order["id"], "CANCELLED")
    workflow.set_status(order["id"], "cancelled")

    assert stock_of(db, a) == 13


def test_set_status_stores_unknown_token_upper_cased(db, make_product):
    a = make_product(stock=10)
    workflow = OrderWorkflow(db)
    order = workflow.place_order(order_body((a, 10.0, 1)))

    updated = workflow.set_status(order["id"], "foo")

    assert updated["status"] == "FOO"
    assert stock_of(db, a) == 9


def test_set_status_on_missing_order(db):
    workflow = OrderWorkflow(db)
    assert workflow.set_status(str(ObjectId()), "pago") is None
    assert workflow.set_status("nope", "pago") is None


def test_list_orders_newest_first_with_nested_items(db, make_product):
    a = make_product(name="Queijo", price=5.0, stock=20, category="food", description="goat cheese")
    customer_id = str(db["customers"].insert_one({
        "full_name": "Maria Silva", "email": "maria@tropiq.cv", "phone": "1", "address": "Plateau",
        "city": "Praia", "postal_code": "7600",
    }).inserted_id)
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    order_ids = []
    for i in range(3):
        oid = str(db["orders"].insert_one({
            "customer_id": customer_id, "total": 5.0 * (i + 1), "status": "PENDING",
            "created_at": base + timedelta(hours=i), "updated_at": base + timedelta(hours=i),
        }).inserted_id)
        db["order_items"].insert_one({"order_id": oid, "product_id": a, "quantity": i + 1, "price": 4.0, "created_at": base})
        order_ids.append(oid)
    db["products"].update_one({"_id": ObjectId(a)}, {"$set": {"name": "Queijo da Serra"}})

    orders = OrderWorkflow(db).list_orders()

    assert [o["id"] for o in orders] == list(reversed(order_ids))
    newest = orders[0]
    assert newest["customer_name"] == "Maria Silva"
    assert newest["customer_postal_code"] == "7600"
    assert newest["items"] == [{
        "product": {
            "id": a,
            "name": "Queijo da Serra",
            "price": 4.0,
            "description": "goat cheese",
            "image": "",
            "category": "food",
            "stock": 20,
        },
        "quantity": 3,
    }]


def test_list_orders_skips_deleted_products_and_missing_customers(db, make_product):
    a = make_product()
    gone = make_product()
    workflow = OrderWorkflow(db)
    order = workflow.place_order(order_body((a, 10.0, 1), (gone, 10.0, 1)))
    db["products"].delete_one({"_id": ObjectId(gone)})
    db["orders"].insert_one({"customer_id": str(ObjectId()), "total": 1.0, "status": "PENDING",
                             "created_at": datetime(2020, 1, 1, tzinfo=timezone.utc)})

    orders = workflow.list_orders()

    assert [o["id"] for o in orders] == [order["id"]]
    assert [i["product"]["id"] for i in orders[0]["items"]] == [a]


def test_list_orders_empty(db):
    assert OrderWorkflow(db).list_orders() == []
