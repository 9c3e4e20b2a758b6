import pytest
from bson import ObjectId

import addresses


def address_body(**overrides):
    body = {
        "first_name": "Amira",
        "last_name": "Ben Salah",
        "phone": "+216 20 000 000",
        "line1": "12 Rue de Marseille",
        "city": "Tunis",
        "postal_code": "1000",
    }
    body.update(overrides)
    return body


@pytest.fixture
def create(client, auth_headers):
    def _create(**overrides):
        resp = client.post("/addresses", json=address_body(**overrides), headers=auth_headers)
        assert resp.status_code == 201
        return resp.json()
    return _create


def defaults(db, user):
    return [a["_id"] for a in db["address"].find({"user_id": str(user["_id"]), "is_default": True})]


def test_create_address_defaults(create, user):
    addr = create()

    assert addr["user_id"] == str(user["_id"])
    assert addr["label"] == "Home"
    assert addr["country"] == "Tunisia"
    assert addr["is_default"] is False


def test_create_requires_fields(client, auth_headers):
    body = address_body()
    del body["postal_code"]

    assert client.post("/addresses", json=body, headers=auth_headers).status_code == 400


def test_requires_token(client):
    assert client.post("/addresses", json=address_body()).status_code in (401, 403)


def test_single_default_on_create(create, db, user):
    first = create(is_default=True)
    second = create(is_default=True, label="Work")

    assert [str(oid) for oid in defaults(db, user)] == [second["id"]]
    assert db["address"].find_one({"label": "Home"})["is_default"] is False
    assert first["is_default"] is True


def test_single_default_on_update(client, create, db, user, auth_headers):
    first = create(is_default=True)
    second = create(label="Work")

    resp = client.patch(f"/addresses/{second['id']}", json={"is_default": True, "city": "Sfax"}, headers=auth_headers)

    assert resp.status_code == 200
    assert resp.json()["city"] == "Sfax"
    assert [str(oid) for oid in defaults(db, user)] == [second["id"]]
    assert first["id"] not in [str(oid) for oid in defaults(db, user)]


def test_set_default(client, create, db, user, auth_headers):
    create(is_default=True)
    other = create(label="Work")

    resp = client.patch(f"/addresses/{other['id']}/default", headers=auth_headers)

    assert resp.status_code == 200
    assert resp.json()["is_default"] is True
    assert [str(oid) for oid in defaults(db, user)] == [other["id"]]


def test_list_puts_default_first(client, create, user, auth_headers):
    create(label="A")
    default = create(label="B", is_default=True)
    create(label="C")

    data = client.get(f"/addresses/user/{user['_id']}", headers=auth_headers).json()

    assert [a["label"] for a in data] == ["B", "C", "A"]
    assert data[0]["id"] == default["id"]


def test_delete_default_promotes_newest(client, create, db, user, auth_headers):
    create(label="Old")
    create(label="Newest")
    default = create(label="Main", is_default=True)

    resp = client.delete(f"/addresses/{default['id']}", headers=auth_headers)

    assert resp.status_code == 200
    remaining = db["address"].find_one({"is_default": True})
    assert remaining["label"] == "Newest"


def test_delete_non_default_keeps_default(client, create, db, auth_headers):
    create(label="Main", is_default=True)
    other = create(label="Other")

    client.delete(f"/addresses/{other['id']}", headers=auth_headers)

    assert db["address"].find_one({"is_default": True})["label"] == "Main"


def test_not_found(client, auth_headers):
    missing = "64b7f0c2a1b2c3d4e5f60718"
    assert client.patch(f"/addresses/{missing}", json={"city": "Sousse"}, headers=auth_headers).status_code == 404
    assert client.delete(f"/addresses/{missing}", headers=auth_headers).status_code == 404
    assert client.patch(f"/addresses/{missing}/default", headers=auth_headers).status_code == 404


def test_exactly_one_default_after_mixed_operations(db):
    user_id = "64b7f0c2a1b2c3d4e5f60001"
    a = addresses.create_address(db, user_id, address_body(is_default=True))
    b = addresses.create_address(db, user_id, address_body())
    c = addresses.create_address(db, user_id, address_body(is_default=True))
    addresses.set_default_address(db, b["id"])
    addresses.update_address(db, a["id"], {"is_default": True})

    assert db["address"].count_documents({"user_id": user_id, "is_default": True}) == 1
    assert str(db["address"].find_one({"user_id": user_id, "is_default": True})["_id"]) == a["id"]
    assert db["address"].find_one({"_id": ObjectId(c["id"])})["is_default"] is False
