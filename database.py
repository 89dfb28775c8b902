"""
In-memory data store for the Vinyl Store API.

VinylStore is the single owner of every collection and id counter. Records
reference each other by id only, so route handlers must run the
*_has_* guard queries before deleting catalog entries.

A single re-entrant lock serialises mutations and full scans. Records are
immutable and are swapped in with one dict assignment, and reset_to_bootstrap
holds the lock for the whole clear-and-reload, so no reader ever sees a
half-built record or a half-reset store.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Generic, List, Optional, Tuple, Type, TypeVar

from schemas import (
    Address,
    Artist,
    Genre,
    Inventory,
    Label,
    Listing,
    User,
    Vinyl,
    VinylArtist,
    VinylGenre,
)
from security import hash_password

logger = logging.getLogger(__name__)

RESET_INTERVAL_SECONDS = 60 * 60


class StoreError(Exception):
    """Base class for outcomes the store reports by raising."""


class ConflictError(StoreError):
    """A mutation would break a store invariant."""


class IntegrityViolation(RuntimeError):
    """A record references another record that does not exist."""


def now_iso() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a trailing 'Z'."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def contains_ignore_case(haystack: str, needle: str) -> bool:
    return needle.casefold() in haystack.casefold()


def matches_id_or_name(query: str, entity_id: int, name: str) -> bool:
    """Exact id match when query is an integer, else case-insensitive substring match on name."""
    try:
        wanted = int(query)
    except ValueError:
        return contains_ignore_case(name, query)
    return entity_id == wanted


def expect(record, message: str):
    """Return record, or fail loudly where referential integrity is assumed to hold."""
    if record is None:
        logger.error("Referential integrity violated: %s", message)
        raise IntegrityViolation(message)
    return record


class IdCounter:
    """Monotonic per-type id allocator starting at 1."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next = 1

    def allocate(self) -> int:
        with self._lock:
            value = self._next
            self._next += 1
            return value

    def reset(self) -> None:
        with self._lock:
            self._next = 1


N = TypeVar("N", Artist, Genre, Label)


class NamedCollection(Generic[N]):
    """Artists, genres and labels: records with a name that is unique ignoring case on create."""

    def __init__(self, model: Type[N]) -> None:
        self.model = model
        self.records: Dict[int, N] = {}
        self.counter = IdCounter()
        # casefolded name -> lowest id carrying that name
        self._by_name: Dict[str, int] = {}

    def get(self, record_id: int) -> Optional[N]:
        return self.records.get(record_id)

    def all(self) -> List[N]:
        return sorted(self.records.values(), key=lambda r: r.id)

    def find_by_name(self, name: str) -> Optional[N]:
        record_id = self._by_name.get(name.casefold())
        return None if record_id is None else self.records.get(record_id)

    def create(self, name: str) -> N:
        existing = self.find_by_name(name)
        if existing is not None:
            return existing
        record = self.model(id=self.counter.allocate(), name=name)
        self.records[record.id] = record
        self._by_name[name.casefold()] = record.id
        return record

    def rename(self, record_id: int, name: str) -> Optional[N]:
        current = self.records.get(record_id)
        if current is None:
            return None
        updated = current.model_copy(update={"name": name})
        self.records[record_id] = updated
        self._reindex(current.name)
        self._reindex(name)
        return updated

    def delete(self, record_id: int) -> bool:
        removed = self.records.pop(record_id, None)
        if removed is None:
            return False
        self._reindex(removed.name)
        return True

    def clear(self) -> None:
        self.records.clear()
        self._by_name.clear()
        self.counter.reset()

    def _reindex(self, name: str) -> None:
        # Renames can leave two records sharing a name; the index keeps the oldest.
        key = name.casefold()
        ids = [r.id for r in self.records.values() if r.name.casefold() == key]
        if ids:
            self._by_name[key] = min(ids)
        else:
            self._by_name.pop(key, None)


class VinylStore:
    def __init__(
        self,
        bootstrap: Optional[Callable[["VinylStore"], None]] = None,
        password_hasher: Optional[Callable[[str], str]] = None,
    ) -> None:
        self._hash_password = password_hasher or hash_password
        self._bootstrap = bootstrap
        self._lock = threading.RLock()

        self.users: Dict[int, User] = {}
        self.addresses: Dict[int, Address] = {}
        self.artists = NamedCollection(Artist)
        self.genres = NamedCollection(Genre)
        self.labels = NamedCollection(Label)
        self.vinyls: Dict[int, Vinyl] = {}
        self.vinyl_artists: Dict[Tuple[int, int], VinylArtist] = {}
        self.vinyl_genres: Dict[Tuple[int, int], VinylGenre] = {}
        self.listings: Dict[int, Listing] = {}
        # keyed by listing id, one inventory per listing
        self.inventory: Dict[int, Inventory] = {}

        self.user_ids = IdCounter()
        self.address_ids = IdCounter()
        self.vinyl_ids = IdCounter()
        self.listing_ids = IdCounter()
        self.inventory_ids = IdCounter()

        self.created_at = time.time()

        if self._bootstrap is not None:
            with self._lock:
                self._bootstrap(self)

    # Reset & uptime

    def uptime_seconds(self) -> float:
        return time.time() - self.created_at

    def should_reset(self) -> bool:
        # Measured from construction; reset_to_bootstrap does not move created_at.
        return self.uptime_seconds() > RESET_INTERVAL_SECONDS

    def reset_to_bootstrap(self) -> None:
        with self._lock:
            self.users.clear()
            self.addresses.clear()
            self.artists.clear()
            self.genres.clear()
            self.labels.clear()
            self.vinyls.clear()
            self.vinyl_artists.clear()
            self.vinyl_genres.clear()
            self.listings.clear()
            self.inventory.clear()

            for counter in (
                self.user_ids,
                self.address_ids,
                self.vinyl_ids,
                self.listing_ids,
                self.inventory_ids,
            ):
                counter.reset()

            if self._bootstrap is not None:
                self._bootstrap(self)
        logger.info("Store reset to bootstrap state")

    # Users

    def create_user(self, email: str, password: str, role: str = "CUSTOMER") -> User:
        password_hash = self._hash_password(password)
        with self._lock:
            now = now_iso()
            user = User(
                id=self.user_ids.allocate(),
                email=email,
                password_hash=password_hash,
                role=role,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            self.users[user.id] = user
            return user

    def get_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            return next((u for u in self.users.values() if u.email == email), None)

    def list_users(self) -> List[User]:
        with self._lock:
            return sorted(self.users.values(), key=lambda u: u.id)

    def update_user(self, user_id: int, **changes) -> Optional[User]:
        return self._patch(self.users, user_id, changes, allowed=("role", "is_active"))

    def delete_user(self, user_id: int) -> bool:
        with self._lock:
            return self.users.pop(user_id, None) is not None

    # Addresses

    def create_address(
        self,
        user_id: int,
        type: str,
        full_name: str,
        street: str,
        city: str,
        postal_code: str,
        country: str,
        is_default: bool = False,
    ) -> Address:
        with self._lock:
            if is_default:
                self.unset_default_addresses(user_id, type)
            now = now_iso()
            address = Address(
                id=self.address_ids.allocate(),
                user_id=user_id,
                type=type,
                full_name=full_name,
                street=street,
                city=city,
                postal_code=postal_code,
                country=country,
                is_default=is_default,
                created_at=now,
                updated_at=now,
            )
            self.addresses[address.id] = address
            return address

    def get_address(self, address_id: int) -> Optional[Address]:
        with self._lock:
            return self.addresses.get(address_id)

    def list_addresses(self, user_id: int) -> List[Address]:
        with self._lock:
            return sorted((a for a in self.addresses.values() if a.user_id == user_id), key=lambda a: a.id)

    def update_address(self, address_id: int, **changes) -> Optional[Address]:
        with self._lock:
            current = self.addresses.get(address_id)
            if current is None:
                return None
            new_type = changes.get("type", current.type)
            # A default that moves to another type displaces that type's default
            keeps_default = current.is_default and "is_default" not in changes
            if changes.get("is_default") or (keeps_default and new_type != current.type):
                self.unset_default_addresses(current.user_id, new_type)
            return self._patch(
                self.addresses,
                address_id,
                changes,
                allowed=("type", "full_name", "street", "city", "postal_code", "country", "is_default"),
            )

    def delete_address(self, address_id: int) -> bool:
        with self._lock:
            return self.addresses.pop(address_id, None) is not None

    def unset_default_addresses(self, user_id: int, type: str) -> None:
        with self._lock:
            now = now_iso()
            for address in list(self.addresses.values()):
                if address.user_id == user_id and address.type == type and address.is_default:
                    self.addresses[address.id] = address.model_copy(update={"is_default": False, "updated_at": now})

    # Artists, genres, labels

    def create_artist(self, name: str) -> Artist:
        with self._lock:
            return self.artists.create(name)

    def get_artist(self, artist_id: int) -> Optional[Artist]:
        with self._lock:
            return self.artists.get(artist_id)

    def list_artists(self) -> List[Artist]:
        with self._lock:
            return self.artists.all()

    def update_artist(self, artist_id: int, name: str) -> Optional[Artist]:
        with self._lock:
            return self.artists.rename(artist_id, name)

    def delete_artist(self, artist_id: int) -> bool:
        with self._lock:
            return self.artists.delete(artist_id)

    def create_genre(self, name: str) -> Genre:
        with self._lock:
            return self.genres.create(name)

    def get_genre(self, genre_id: int) -> Optional[Genre]:
        with self._lock:
            return self.genres.get(genre_id)

    def list_genres(self) -> List[Genre]:
        with self._lock:
            return self.genres.all()

    def update_genre(self, genre_id: int, name: str) -> Optional[Genre]:
        with self._lock:
            return self.genres.rename(genre_id, name)

    def delete_genre(self, genre_id: int) -> bool:
        with self._lock:
            return self.genres.delete(genre_id)

    def create_label(self, name: str) -> Label:
        with self._lock:
            return self.labels.create(name)

    def get_label(self, label_id: int) -> Optional[Label]:
        with self._lock:
            return self.labels.get(label_id)

    def list_labels(self) -> List[Label]:
        with self._lock:
            return self.labels.all()

    def update_label(self, label_id: int, name: str) -> Optional[Label]:
        with self._lock:
            return self.labels.rename(label_id, name)

    def delete_label(self, label_id: int) -> bool:
        with self._lock:
            return self.labels.delete(label_id)

    # Vinyls

    def create_vinyl(
        self,
        title: str,
        artist_id: int,
        label_id: int,
        genre_id: int,
        year: int,
        condition_media: str,
        condition_sleeve: str,
    ) -> Vinyl:
        with self._lock:
            now = now_iso()
            vinyl = Vinyl(
                id=self.vinyl_ids.allocate(),
                title=title,
                artist_id=artist_id,
                label_id=label_id,
                genre_id=genre_id,
                year=year,
                condition_media=condition_media,
                condition_sleeve=condition_sleeve,
                created_at=now,
                updated_at=now,
            )
            self.vinyls[vinyl.id] = vinyl
            return vinyl

    def get_vinyl(self, vinyl_id: int) -> Optional[Vinyl]:
        with self._lock:
            return self.vinyls.get(vinyl_id)

    def list_vinyls(self) -> List[Vinyl]:
        with self._lock:
            return sorted(self.vinyls.values(), key=lambda v: v.id)

    def update_vinyl(self, vinyl_id: int, **changes) -> Optional[Vinyl]:
        return self._patch(
            self.vinyls,
            vinyl_id,
            changes,
            allowed=("title", "artist_id", "label_id", "year", "condition_media", "condition_sleeve"),
        )

    def delete_vinyl(self, vinyl_id: int) -> bool:
        # Genre links go with the vinyl; artist links are left behind.
        with self._lock:
            self.unlink_all_vinyl_genres(vinyl_id)
            return self.vinyls.pop(vinyl_id, None) is not None

    # Associations

    def link_vinyl_artist(self, vinyl_id: int, artist_id: int) -> None:
        with self._lock:
            self.vinyl_artists[(vinyl_id, artist_id)] = VinylArtist(vinyl_id=vinyl_id, artist_id=artist_id)

    def link_vinyl_genre(self, vinyl_id: int, genre_id: int) -> None:
        with self._lock:
            self.vinyl_genres[(vinyl_id, genre_id)] = VinylGenre(vinyl_id=vinyl_id, genre_id=genre_id)

    def unlink_all_vinyl_genres(self, vinyl_id: int) -> None:
        with self._lock:
            for key in [k for k in self.vinyl_genres if k[0] == vinyl_id]:
                del self.vinyl_genres[key]

    def get_artists_for_vinyl(self, vinyl_id: int) -> List[Artist]:
        with self._lock:
            artists = (self.artists.get(link.artist_id) for link in self.vinyl_artists.values() if link.vinyl_id == vinyl_id)
            return sorted((a for a in artists if a is not None), key=lambda a: a.id)

    def get_genres_for_vinyl(self, vinyl_id: int) -> List[Genre]:
        with self._lock:
            genres = (self.genres.get(link.genre_id) for link in self.vinyl_genres.values() if link.vinyl_id == vinyl_id)
            return sorted((g for g in genres if g is not None), key=lambda g: g.id)

    def get_genre_for_vinyl(self, vinyl_id: int) -> Optional[Genre]:
        genres = self.get_genres_for_vinyl(vinyl_id)
        return genres[0] if genres else None

    # Delete guards

    def artist_has_vinyls(self, artist_id: int) -> bool:
        with self._lock:
            return any(link.artist_id == artist_id for link in self.vinyl_artists.values()) or any(
                v.artist_id == artist_id for v in self.vinyls.values()
            )

    def label_has_vinyls(self, label_id: int) -> bool:
        with self._lock:
            return any(v.label_id == label_id for v in self.vinyls.values())

    def genre_has_vinyls(self, genre_id: int) -> bool:
        with self._lock:
            return any(link.genre_id == genre_id for link in self.vinyl_genres.values()) or any(
                v.genre_id == genre_id for v in self.vinyls.values()
            )

    def vinyl_has_listings(self, vinyl_id: int) -> bool:
        with self._lock:
            return any(listing.vinyl_id == vinyl_id for listing in self.listings.values())

    # Listings & inventory

    def create_listing(self, vinyl_id: int, price: float, currency: str = "EUR", initial_stock: int = 0) -> Listing:
        with self._lock:
            now = now_iso()
            listing = Listing(
                id=self.listing_ids.allocate(),
                vinyl_id=vinyl_id,
                status="PUBLISHED",
                price=price,
                currency=currency,
                created_at=now,
                updated_at=now,
            )
            inventory = Inventory(
                id=self.inventory_ids.allocate(),
                listing_id=listing.id,
                total_quantity=initial_stock,
                reserved_quantity=0,
                created_at=now,
                updated_at=now,
            )
            self.listings[listing.id] = listing
            self.inventory[listing.id] = inventory
            return listing

    def get_listing(self, listing_id: int) -> Optional[Listing]:
        with self._lock:
            return self.listings.get(listing_id)

    def list_listings(self) -> List[Listing]:
        with self._lock:
            return sorted(self.listings.values(), key=lambda item: item.id)

    def list_published_listings(self) -> List[Listing]:
        return [listing for listing in self.list_listings() if listing.status == "PUBLISHED"]

    def update_listing(self, listing_id: int, **changes) -> Optional[Listing]:
        return self._patch(self.listings, listing_id, changes, allowed=("price", "status"))

    def delete_listing(self, listing_id: int) -> bool:
        with self._lock:
            self.inventory.pop(listing_id, None)
            return self.listings.pop(listing_id, None) is not None

    def get_inventory(self, listing_id: int) -> Optional[Inventory]:
        with self._lock:
            return self.inventory.get(listing_id)

    def list_inventory(self) -> List[Inventory]:
        with self._lock:
            return sorted(self.inventory.values(), key=lambda i: i.id)

    def update_inventory(
        self,
        listing_id: int,
        total_quantity: Optional[int] = None,
        reserved_quantity: Optional[int] = None,
    ) -> Optional[Inventory]:
        """
        Merge-patch the stock of a listing.

        Returns None when the listing has no inventory. Raises ValueError for
        negative quantities and ConflictError when the result would reserve
        more than the total, or when a new total drops below what is already
        reserved.
        """
        if (total_quantity is not None and total_quantity < 0) or (
            reserved_quantity is not None and reserved_quantity < 0
        ):
            raise ValueError("Quantities cannot be negative")

        with self._lock:
            current = self.inventory.get(listing_id)
            if current is None:
                return None

            new_total = current.total_quantity if total_quantity is None else total_quantity
            new_reserved = current.reserved_quantity if reserved_quantity is None else reserved_quantity

            if new_reserved > new_total:
                raise ConflictError("Reserved quantity cannot exceed total quantity")
            if total_quantity is not None and total_quantity < current.reserved_quantity:
                raise ConflictError("Cannot set total quantity below current reserved quantity")

            updated = current.model_copy(
                update={
                    "total_quantity": new_total,
                    "reserved_quantity": new_reserved,
                    "updated_at": now_iso(),
                }
            )
            self.inventory[listing_id] = updated
            return updated

    # Internals

    def _patch(self, collection: Dict, record_id: int, changes: Dict, allowed: Tuple[str, ...]):
        unknown = set(changes) - set(allowed)
        if unknown:
            raise TypeError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        with self._lock:
            current = collection.get(record_id)
            if current is None:
                return None
            update = dict(changes)
            if "updated_at" in type(current).model_fields:
                update["updated_at"] = now_iso()
            updated = current.model_copy(update=update)
            collection[record_id] = updated
            return updated
