import mongomock
import pytest
from pymongo.errors import DuplicateKeyError

import reviews
from errors import InvalidRatingError, MissingFieldError


@pytest.fixture
def product(make_product):
    return make_product(100)


def rollup(db, product):
    doc = db["product"].find_one({"_id": product["_id"]})
    return doc["average_rating"], doc["reviews_count"]


def post(client, product, rating, **body):
    return client.post("/reviews", json={"product_id": str(product["_id"]), "rating": rating, **body})


def test_rollup_over_all_reviews(client, db, product):
    for rating in (5, 3, 4):
        assert post(client, product, rating).status_code == 201

    assert rollup(db, product) == (4.0, 3)


def test_delete_recomputes_from_remaining(client, db, product):
    ids = [post(client, product, rating).json()["id"] for rating in (5, 3, 4)]

    resp = client.delete(f"/reviews/{ids[1]}")

    assert resp.status_code == 200
    assert rollup(db, product) == (4.5, 2)


def test_deleting_last_review_resets_rollup(client, db, product):
    review_id = post(client, product, 2).json()["id"]

    client.delete(f"/reviews/{review_id}")

    assert rollup(db, product) == (0, 0)


def test_same_user_updates_existing_review(client, db, product, user):
    first = post(client, product, 2, user_id=str(user["_id"]), comment="meh").json()
    second = post(client, product, 5, user_id=str(user["_id"]), comment="grew on me").json()

    assert first["id"] == second["id"]
    assert db["review"].count_documents({"product_id": str(product["_id"])}) == 1
    stored = db["review"].find_one({})
    assert stored["rating"] == 5
    assert stored["comment"] == "grew on me"
    assert rollup(db, product) == (5.0, 1)


def test_anonymous_reviews_always_insert(client, db, product):
    post(client, product, 4)
    post(client, product, 4)

    assert db["review"].count_documents({}) == 2


def test_invalid_rating(client, db, product):
    assert post(client, product, 0).status_code == 400
    assert post(client, product, 6).status_code == 400
    assert db["review"].count_documents({}) == 0


def test_missing_fields(client, product):
    assert client.post("/reviews", json={"rating": 4}).status_code == 400
    assert client.post("/reviews", json={"product_id": str(product["_id"])}).status_code == 400


def test_unknown_product_or_user(client, make_product, product):
    inactive = make_product(10, is_active=False)

    assert post(client, inactive, 4).status_code == 404
    assert client.post("/reviews", json={"product_id": "64b7f0c2a1b2c3d4e5f60718", "rating": 4}).status_code == 404
    assert post(client, product, 4, user_id="64b7f0c2a1b2c3d4e5f60718").status_code == 404


def test_delete_unknown_review(client):
    assert client.delete("/reviews/64b7f0c2a1b2c3d4e5f60718").status_code == 404


def test_list_product_reviews(client, product, user):
    post(client, product, 3)
    post(client, product, 5, user_id=str(user["_id"]), comment="great")

    data = client.get(f"/reviews/product/{product['_id']}").json()

    assert [r["rating"] for r in data] == [5, 3]
    assert data[0]["user"]["first_name"] == "Amira"
    assert data[1]["user"] is None


def test_recompute_rollup_is_idempotent(db, product):
    reviews.upsert_review(db, str(product["_id"]), 1)
    reviews.upsert_review(db, str(product["_id"]), 2)
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"average_rating": 0, "reviews_count": 99}})

    first = reviews.recompute_rollup(db, str(product["_id"]))
    second = reviews.recompute_rollup(db, str(product["_id"]))

    assert first == second == {"average_rating": 1.5, "reviews_count": 2}
    assert rollup(db, product) == (1.5, 2)


def test_service_errors(db, product):
    with pytest.raises(MissingFieldError):
        reviews.upsert_review(db, str(product["_id"]), None)
    with pytest.raises(InvalidRatingError):
        reviews.upsert_review(db, str(product["_id"]), 5.5)


def test_unique_index_allows_one_review_per_user(db, product, user):
    pid, uid = str(product["_id"]), str(user["_id"])
    db["review"].insert_one({"product_id": pid, "user_id": uid, "rating": 4})

    with pytest.raises(DuplicateKeyError):
        db["review"].insert_one({"product_id": pid, "user_id": uid, "rating": 2})
    db["review"].insert_one({"product_id": pid, "user_id": None, "rating": 2})
    db["review"].insert_one({"product_id": pid, "user_id": None, "rating": 3})


def test_concurrent_first_review_becomes_update(db, product, user, monkeypatch):
    pid, uid = str(product["_id"]), str(user["_id"])
    original = mongomock.Collection.find_one_and_update
    calls = []

    def racing_find_one_and_update(self, filter, update, *args, **kwargs):
        calls.append(kwargs.get("upsert", False))
        if kwargs.get("upsert") and len(calls) == 1:
            # the other request inserts between our lookup and our insert
            self.insert_one({"product_id": pid, "user_id": uid, "rating": 1, "comment": "first"})
            raise DuplicateKeyError("E11000 duplicate key error")
        return original(self, filter, update, *args, **kwargs)

    monkeypatch.setattr(mongomock.Collection, "find_one_and_update", racing_find_one_and_update)

    review = reviews.upsert_review(db, pid, 5, user_id=uid, comment="second")

    assert calls == [True, False]
    assert review["rating"] == 5
    assert db["review"].count_documents({"product_id": pid}) == 1
    assert rollup(db, product) == (5.0, 1)
