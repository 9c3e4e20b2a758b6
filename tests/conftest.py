import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import accounts
import database
import main
from database import create_document
from schemas import Category, Product, User


class RecordingEmailQueue:
    def __init__(self):
        self.sent = []

    def enqueue(self, email):
        self.sent.append(email)


@pytest.fixture
def db():
    store = mongomock.MongoClient()["storefront_test"]
    database.ensure_indexes(store)
    return store


@pytest.fixture
def mail_queue():
    return RecordingEmailQueue()


@pytest.fixture
def client(db, mail_queue):
    main.app.dependency_overrides[database.get_database] = lambda: db
    main.app.dependency_overrides[main.get_email_queue] = lambda: mail_queue
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def category(db):
    category_id = create_document(db, "category", Category(name="Laptops", slug="laptops"))
    return db["category"].find_one({"_id": ObjectId(category_id)})


@pytest.fixture
def make_product(db, category):
    counter = {"n": 0}

    def _make(price, promo_price=None, is_active=True, name=None, **extra):
        counter["n"] += 1
        name = name or f"Product {counter['n']}"
        product = Product(
            name=name,
            slug=f"product-{counter['n']}",
            price=price,
            promo_price=promo_price,
            category_id=str(category["_id"]),
            is_active=is_active,
            **extra,
        )
        return db["product"].find_one({"_id": ObjectId(create_document(db, "product", product))})

    return _make


@pytest.fixture
def make_user(db):
    def _make(email="amira@example.com", password="secret123", is_verified=True, first_name="Amira"):
        user = User(
            first_name=first_name,
            last_name="Ben Salah",
            email=email,
            hashed_password=accounts.hash_password(password),
            is_verified=is_verified,
        )
        return db["user"].find_one({"_id": ObjectId(create_document(db, "user", user))})

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {accounts.create_token(user)}"}
