"""
Pytest fixtures for the Vinyl Store API tests.

Every test gets a fresh store; API tests swap it into the app so requests
never see data left behind by another test.
"""

import os
import random

# Cheap hashes; must be set before security.py builds its CryptContext
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

import seed
from database import VinylStore
from main import app

ADMIN = ("admin@vinylstore.com", "admin123")
STAFF = ("staff@vinylstore.com", "staff123")
CUSTOMER = ("customer@example.com", "customer123")


def seeded_bootstrap(store):
    seed.bootstrap(store, rng=random.Random(42))


@pytest.fixture
def store():
    """Empty store, no bootstrap data."""
    return VinylStore()


@pytest.fixture
def seeded_store():
    """Store loaded with the seed users and collection.csv."""
    return VinylStore(bootstrap=seeded_bootstrap)


@pytest.fixture
def client(seeded_store):
    app.state.store = seeded_store
    app.state.auto_reset = False
    with TestClient(app) as c:
        yield c
    app.state.auto_reset = False


def login(client, email, password):
    resp = client.post("/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}


@pytest.fixture
def admin_headers(client):
    return login(client, *ADMIN)


@pytest.fixture
def staff_headers(client):
    return login(client, *STAFF)


@pytest.fixture
def customer_headers(client):
    email, password = CUSTOMER
    resp = client.post("/v1/auth/register", json={"email": email, "password": password})
    assert resp.status_code == 201, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}


@pytest.fixture
def make_vinyl(store):
    """Create a fully linked vinyl in the empty store."""
    def _make(title="Geogaddi", artist="Boards of Canada", label="Warp Records", genre="Electronic", year=2002):
        a = store.create_artist(artist)
        lbl = store.create_label(label)
        g = store.create_genre(genre)
        vinyl = store.create_vinyl(
            title=title,
            artist_id=a.id,
            label_id=lbl.id,
            genre_id=g.id,
            year=year,
            condition_media="NM",
            condition_sleeve="VG+",
        )
        store.link_vinyl_artist(vinyl.id, a.id)
        store.link_vinyl_genre(vinyl.id, g.id)
        return vinyl
    return _make
