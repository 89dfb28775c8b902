"""
Bootstrap data for the Vinyl Store API.

bootstrap() is what VinylStore runs at construction and after every reset:
two staff accounts plus the catalog in collection.csv, one published
listing per record with a random price and stock level.
"""

import csv
import logging
import random
from pathlib import Path
from typing import List, Optional

from config import CATALOG_CSV

logger = logging.getLogger(__name__)

SEED_USERS = (
    ("admin@vinylstore.com", "admin123", "ADMIN"),
    ("staff@vinylstore.com", "staff123", "STAFF"),
)

# Discogs grading text -> short grade, matched by prefix in this order
CONDITION_GRADES = (
    ("Mint", "M"),
    ("Near Mint", "NM"),
    ("Very Good Plus", "VG+"),
    ("Very Good", "VG"),
    ("Good Plus", "G+"),
    ("Good", "G"),
    ("No Cover", "NC"),
)


def normalize_condition(condition: str) -> str:
    for prefix, grade in CONDITION_GRADES:
        if condition.startswith(prefix):
            return grade
    return condition


def bootstrap(store, csv_path: Optional[str] = None, rng: Optional[random.Random] = None) -> None:
    for email, password, role in SEED_USERS:
        store.create_user(email, password, role)
    imported = load_catalog(store, csv_path or CATALOG_CSV, rng or random.Random())
    logger.info("Bootstrapped %d users and %d vinyls", len(SEED_USERS), imported)


def load_catalog(store, csv_path: str, rng: random.Random) -> int:
    """Import catalog rows and return how many vinyls were created."""
    path = Path(csv_path)
    if not path.is_file():
        logger.warning("%s not found, starting with an empty catalog", path)
        return 0

    with path.open(newline="", encoding="utf-8") as fh:
        reader = csv.reader(fh)
        next(reader, None)
        imported = 0
        for row in reader:
            if not any(cell.strip() for cell in row):
                continue
            try:
                if import_row(store, row, rng):
                    imported += 1
            except Exception as e:
                logger.warning("Failed to parse CSV line %s: %s", row, e)
    return imported


def import_row(store, row: List[str], rng: random.Random) -> bool:
    if len(row) < 7:
        return False
    artist_names, title, label_name, genre_name, year, media, sleeve = (cell.strip() for cell in row[:7])
    try:
        year = int(year)
    except ValueError:
        return False

    # "A / B" is a collaboration; the first artist is the primary one
    names = [name.strip() for name in artist_names.split("/") if name.strip()]
    if not names:
        return False

    artists = [store.create_artist(name) for name in names]
    label = store.create_label(label_name)
    genre = store.create_genre(genre_name)

    vinyl = store.create_vinyl(
        title=title,
        artist_id=artists[0].id,
        label_id=label.id,
        genre_id=genre.id,
        year=year,
        condition_media=normalize_condition(media),
        condition_sleeve=normalize_condition(sleeve),
    )
    for artist in artists:
        store.link_vinyl_artist(vinyl.id, artist.id)
    store.link_vinyl_genre(vinyl.id, genre.id)

    price = int((15.0 + rng.random() * 85.0) * 100) / 100.0
    stock = 5 + int(rng.random() * 20)
    store.create_listing(vinyl.id, price, "EUR", stock)
    return True
