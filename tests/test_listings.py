"""Listings, inventory, v2 views, health and reset over HTTP."""

import re

import pytest

from database import IntegrityViolation
from main import app


# --- v1 listings (public) ---

def test_listings_are_public(client):
    resp = client.get("/v1/listings")
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 33
    entry = body["listings"][0]
    assert set(entry) == {"listing", "vinyl", "artist", "genre", "label", "inventory"}
    assert entry["inventory"]["availableQuantity"] > 0


def test_unpublished_listings_are_hidden(client, staff_headers):
    resp = client.put("/v1/listings/1", json={"status": "DRAFT"}, headers=staff_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "DRAFT"

    ids = [e["listing"]["id"] for e in client.get("/v1/listings").json()["listings"]]
    assert 1 not in ids
    assert len(ids) == 32
    assert client.get("/v1/listings/1").status_code == 200


def test_sold_out_listings_are_hidden(client, staff_headers):
    total = client.get("/v1/inventory/2", headers=staff_headers).json()["totalQuantity"]
    client.put("/v1/inventory/2", json={"reservedQuantity": total}, headers=staff_headers)

    ids = [e["listing"]["id"] for e in client.get("/v1/listings").json()["listings"]]
    assert 2 not in ids


def test_listing_filters(client):
    body = client.get("/v1/listings?artist=boards").json()
    assert body["total"] == 3

    body = client.get("/v1/listings?genre=ambient").json()
    assert sorted(e["vinyl"]["title"] for e in body["listings"]) == ["Kiasmos", "Selected Ambient Works 85-92"]

    body = client.get("/v1/listings?minPrice=40&maxPrice=60").json()
    assert all(40 <= e["listing"]["price"] <= 60 for e in body["listings"])

    body = client.get("/v1/listings?year=1994&condition=g").json()
    assert [e["vinyl"]["title"] for e in body["listings"]] == ["Minimal Nation"]

    body = client.get("/v1/listings?label=hyperdub").json()
    assert [e["vinyl"]["title"] for e in body["listings"]] == ["Untrue"]


def test_listing_status_filter(client):
    assert client.get("/v1/listings?status=draft").json()["total"] == 0
    assert client.get("/v1/listings?status=published").json()["total"] == 33


def test_listing_detail(client):
    body = client.get("/v1/listings/8").json()
    assert body["listing"]["vinylId"] == 8
    assert body["vinyl"]["title"] == "Geogaddi"
    assert body["artist"]["name"] == "Boards Of Canada"
    assert body["inventory"]["listingId"] == 8


def test_listing_detail_missing(client):
    assert client.get("/v1/listings/999").status_code == 404


def test_listing_detail_with_broken_reference(client, seeded_store):
    del seeded_store.vinyls[8]
    with pytest.raises(IntegrityViolation):
        client.get("/v1/listings/8")


def test_update_listing_price(client, staff_headers):
    resp = client.put("/v1/listings/3", json={"price": 42.0}, headers=staff_headers)
    assert resp.status_code == 200
    assert resp.json()["price"] == 42.0
    assert resp.json()["status"] == "PUBLISHED"


@pytest.mark.parametrize("payload", [{"price": 0}, {"price": -5}, {"status": "SOLD"}])
def test_update_listing_invalid(client, staff_headers, payload):
    assert client.put("/v1/listings/3", json=payload, headers=staff_headers).status_code == 422


def test_update_listing_requires_staff(client, customer_headers):
    assert client.put("/v1/listings/3", json={"price": 1.0}, headers=customer_headers).status_code == 403


def test_delete_listing(client, staff_headers):
    assert client.delete("/v1/listings/3", headers=staff_headers).status_code == 204
    assert client.get("/v1/listings/3").status_code == 404
    assert client.get("/v1/inventory/3", headers=staff_headers).status_code == 404
    assert client.delete("/v1/listings/3", headers=staff_headers).status_code == 404
    # with its only listing gone the vinyl can be deleted
    assert client.delete("/v1/vinyls/3", headers=staff_headers).status_code == 204


# --- inventory ---

def test_inventory_requires_staff(client, customer_headers):
    assert client.get("/v1/inventory", headers=customer_headers).status_code == 403


def test_inventory_list(client, staff_headers):
    body = client.get("/v1/inventory", headers=staff_headers).json()
    assert body["total"] == 33
    item = body["inventory"][0]
    assert item["availableQuantity"] == item["totalQuantity"] - item["reservedQuantity"]


def test_inventory_filters(client, staff_headers):
    client.put("/v1/inventory/1", json={"totalQuantity": 100}, headers=staff_headers)
    client.put("/v1/listings/2", json={"status": "ARCHIVED"}, headers=staff_headers)

    body = client.get("/v1/inventory?minTotal=100", headers=staff_headers).json()
    assert [i["listingId"] for i in body["inventory"]] == [1]

    body = client.get("/v1/inventory?minAvailable=50&maxAvailable=100", headers=staff_headers).json()
    assert [i["listingId"] for i in body["inventory"]] == [1]

    body = client.get("/v1/inventory?listingStatus=archived", headers=staff_headers).json()
    assert [i["listingId"] for i in body["inventory"]] == [2]


def test_inventory_reserve_and_conflicts(client, staff_headers):
    client.put("/v1/inventory/1", json={"totalQuantity": 10}, headers=staff_headers)

    resp = client.put("/v1/inventory/1", json={"reservedQuantity": 4}, headers=staff_headers)
    assert resp.status_code == 200
    assert resp.json()["availableQuantity"] == 6
    assert resp.json()["totalQuantity"] == 10

    assert client.put("/v1/inventory/1", json={"reservedQuantity": 12}, headers=staff_headers).status_code == 409
    assert client.put("/v1/inventory/1", json={"totalQuantity": 3}, headers=staff_headers).status_code == 409
    assert client.put("/v1/inventory/1", json={"totalQuantity": -1}, headers=staff_headers).status_code == 422
    assert client.get("/v1/inventory/1", headers=staff_headers).json()["reservedQuantity"] == 4


def test_inventory_missing(client, staff_headers):
    assert client.get("/v1/inventory/999", headers=staff_headers).status_code == 404
    assert client.put("/v1/inventory/999", json={"totalQuantity": 1}, headers=staff_headers).status_code == 404


# --- v2 ---

def test_v2_listing_embeds_everything(client):
    body = client.get("/v2/listings/13").json()
    assert body["id"] == 13
    assert body["vinyl"]["title"] == "Moth / Wolf Cub"
    assert [a["name"] for a in body["vinyl"]["artists"]] == ["Burial", "Four Tet"]
    assert body["vinyl"]["label"]["name"] == "Text Records"
    assert body["vinyl"]["genre"]["name"] == "Dubstep"
    assert body["inventory"]["availableQuantity"] == body["inventory"]["totalQuantity"]
    assert "artistId" not in body["vinyl"]


def test_v2_listing_missing_parts(client, seeded_store):
    assert client.get("/v2/listings/999").status_code == 404
    seeded_store.labels.delete(seeded_store.get_vinyl(13).label_id)
    resp = client.get("/v2/listings/13")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Label not found"


def test_v2_listings_skip_incomplete(client, seeded_store):
    seeded_store.unlink_all_vinyl_genres(13)
    body = client.get("/v2/listings").json()
    assert body["total"] == 32
    assert 13 not in [lst["id"] for lst in body["listings"]]


def test_v2_listings_artist_filter_sees_collaborators(client):
    body = client.get("/v2/listings?artist=four tet").json()
    assert sorted(lst["vinyl"]["title"] for lst in body["listings"]) == [
        "Moth / Wolf Cub",
        "Rounds",
        "There Is Love In You",
    ]


def test_v2_vinyls(client, customer_headers):
    body = client.get("/v2/vinyls?artist=allien", headers=customer_headers).json()
    assert body["total"] == 1
    vinyl = body["vinyls"][0]
    assert vinyl["title"] == "Orchestra Of Bubbles"
    assert [a["name"] for a in vinyl["artists"]] == ["Apparat", "Ellen Allien"]
    assert vinyl["label"]["name"] == "BPitch Control"


def test_v2_inventory(client, staff_headers):
    body = client.get("/v2/inventory/13", headers=staff_headers).json()
    assert body["listing"]["id"] == 13
    assert [a["name"] for a in body["listing"]["vinyl"]["artists"]] == ["Burial", "Four Tet"]
    assert body["availableQuantity"] == body["totalQuantity"]


def test_v2_inventory_filters(client, staff_headers):
    total = client.get("/v1/inventory/12", headers=staff_headers).json()["totalQuantity"]
    client.put("/v1/inventory/12", json={"reservedQuantity": total}, headers=staff_headers)

    body = client.get("/v2/inventory?outOfStock=true", headers=staff_headers).json()
    assert [i["listing"]["id"] for i in body["inventory"]] == [12]

    body = client.get("/v2/inventory?artist=burial", headers=staff_headers).json()
    assert [i["listing"]["id"] for i in body["inventory"]] == [12, 13]

    body = client.get("/v2/inventory?title=untrue&maxAvailable=0", headers=staff_headers).json()
    assert body["total"] == 1


def test_v2_inventory_requires_staff(client, customer_headers):
    assert client.get("/v2/inventory", headers=customer_headers).status_code == 403
    assert client.get("/v2/inventory/1", headers=customer_headers).status_code == 403


def test_v2_inventory_missing(client, staff_headers):
    assert client.get("/v2/inventory/999", headers=staff_headers).status_code == 404


def test_v2_me(client, customer_headers):
    client.post(
        "/v1/users/me/addresses",
        json={
            "type": "BILLING",
            "fullName": "Jane Doe",
            "street": "Torstraße 1",
            "city": "Berlin",
            "postalCode": "10119",
            "country": "DE",
        },
        headers=customer_headers,
    )
    body = client.get("/v2/auth/me", headers=customer_headers).json()
    assert body["email"] == "customer@example.com"
    assert [a["type"] for a in body["addresses"]] == ["BILLING"]
    assert body["stats"]["totalOrders"] == 0
    assert body["stats"]["accountCreated"] == body["createdAt"]


# --- health & reset ---

def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "OK"
    assert re.fullmatch(r"\d\d:\d\d:\d\d", body["uptime"])
    assert body["nextResetIn"] is None


def test_health_with_auto_reset(client):
    app.state.auto_reset = True
    body = client.get("/health").json()
    assert re.fullmatch(r"00:59:\d\d", body["nextResetIn"])


def test_admin_reset(client, admin_headers, customer_headers):
    client.post("/v1/artists", json={"name": "Lone"}, headers=admin_headers)
    client.put("/v1/inventory/1", json={"reservedQuantity": 1}, headers=admin_headers)

    resp = client.post("/admin/reset", headers=admin_headers)
    assert resp.status_code == 200

    headers = {"Authorization": admin_headers["Authorization"]}
    assert client.get("/v1/artists?name=lone", headers=headers).json()["total"] == 0
    assert client.get("/v1/inventory/1", headers=headers).json()["reservedQuantity"] == 0
    resp = client.post("/v1/auth/login", json={"email": "customer@example.com", "password": "customer123"})
    assert resp.status_code == 401


def test_auto_reset_after_interval(client, seeded_store):
    seeded_store.create_user("temp@example.com", "longenough")
    seeded_store.created_at -= 3601
    app.state.auto_reset = True

    assert client.get("/health").status_code == 200
    assert len(seeded_store.list_users()) == 2
    assert client.get("/health").json()["nextResetIn"] == "00:00:00"


def test_root(client):
    assert client.get("/").json()["docs"] == "/docs"
