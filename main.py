import logging
from typing import List, Optional, Sequence

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from config import AUTO_RESET, LOG_LEVEL, PORT
from database import (
    RESET_INTERVAL_SECONDS,
    ConflictError,
    VinylStore,
    contains_ignore_case,
    expect,
    matches_id_or_name,
)
from schemas import (
    ADDRESS_TYPES,
    LISTING_STATUSES,
    ROLES,
    AddressesResponse,
    Address,
    Artist,
    ArtistsResponse,
    CreateAddressRequest,
    CreateListingRequest,
    CreateUserRequest,
    CreateVinylRequest,
    Genre,
    GenresResponse,
    HealthResponse,
    InventoriesV2Response,
    Inventory,
    InventoryResponse,
    InventoryV2,
    InventoryWithListingV2Response,
    Label,
    LabelsResponse,
    Listing,
    ListingContextV2,
    ListingDetailResponse,
    ListingsResponse,
    ListingsV2Response,
    ListingV2Response,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    NameRequest,
    RegisterRequest,
    UpdateAddressRequest,
    UpdateInventoryRequest,
    UpdateListingRequest,
    UpdateUserRequest,
    UpdateVinylRequest,
    User,
    UserResponse,
    UsersResponse,
    UserStatsV2,
    UserV2Response,
    Vinyl,
    VinylContextV2,
    VinylDetailResponse,
    VinylsResponse,
    VinylsV2Response,
    VinylWithDetailsV2,
)
from security import create_access_token, decode_access_token, verify_password
from seed import bootstrap

logger = logging.getLogger(__name__)

# App and CORS
app = FastAPI(
    title="Vinyl Store API",
    version="1.0.0",
    description=(
        "REST API for a vinyl record store: catalog, listings, inventory, users and addresses. "
        "v1 returns flat records that reference each other by id, v2 embeds the related entities. "
        "All data lives in memory and can be reset to its bootstrap state."
    ),
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.store = VinylStore(bootstrap=bootstrap)
app.state.auto_reset = AUTO_RESET

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/v1/auth/login")

MIN_PASSWORD_LENGTH = 8


@app.middleware("http")
async def auto_reset(request: Request, call_next):
    store = request.app.state.store
    if request.app.state.auto_reset and store.should_reset():
        logger.info("Automatic reset interval elapsed")
        await run_in_threadpool(store.reset_to_bootstrap)
    return await call_next(request)


# Helpers

def get_store(request: Request) -> VinylStore:
    return request.app.state.store


def get_current_user(token: str = Depends(oauth2_scheme), store: VinylStore = Depends(get_store)) -> User:
    credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
    try:
        payload = decode_access_token(token)
        user_id = payload.get("userId")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception
    user = store.get_user(int(user_id))
    if not user:
        raise credentials_exception
    return user


def require_role(*roles: str):
    def role_dep(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return current_user
    return role_dep


def user_out(user: User) -> UserResponse:
    return UserResponse(**user.model_dump())


def patch_of(payload) -> dict:
    # Omitted and null fields both mean "leave unchanged"
    return {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}


def require_text(value: Optional[str], message: str) -> None:
    if value is not None and not value.strip():
        raise HTTPException(status_code=422, detail=message)


def verify_password_policy(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=422, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def parse_choice(value: Optional[str], choices) -> Optional[str]:
    """Upper-cased value when it names one of choices, else None (unknown filter values are ignored)."""
    if value is None:
        return None
    value = value.upper()
    return value if value in choices else None


def format_duration(seconds: float) -> str:
    total = max(int(seconds), 0)
    return f"{total // 3600:02d}:{total % 3600 // 60:02d}:{total % 60:02d}"


def filter_years(items, year: Optional[int], min_year: Optional[int], max_year: Optional[int]):
    # An exact year wins over the range
    if year is not None:
        return [i for i in items if i.year == year]
    if min_year is not None:
        items = [i for i in items if i.year >= min_year]
    if max_year is not None:
        items = [i for i in items if i.year <= max_year]
    return items


def vinyl_v2(store: VinylStore, vinyl: Vinyl) -> Optional[VinylWithDetailsV2]:
    """Embed artists, label and genre; None when any of them is missing."""
    artists = store.get_artists_for_vinyl(vinyl.id)
    label = store.get_label(vinyl.label_id)
    genre = store.get_genre_for_vinyl(vinyl.id)
    if not artists or label is None or genre is None:
        return None
    return VinylWithDetailsV2(
        id=vinyl.id,
        title=vinyl.title,
        year=vinyl.year,
        condition_media=vinyl.condition_media,
        condition_sleeve=vinyl.condition_sleeve,
        artists=artists,
        label=label,
        genre=genre,
        created_at=vinyl.created_at,
        updated_at=vinyl.updated_at,
    )


def inventory_v2(inventory: Inventory) -> InventoryV2:
    return InventoryV2(
        total_quantity=inventory.total_quantity,
        reserved_quantity=inventory.reserved_quantity,
        available_quantity=inventory.available_quantity,
        created_at=inventory.created_at,
        updated_at=inventory.updated_at,
    )


def listing_v2(listing: Listing, vinyl: VinylWithDetailsV2, inventory: Inventory) -> ListingV2Response:
    return ListingV2Response(
        id=listing.id,
        status=listing.status,
        price=listing.price,
        currency=listing.currency,
        created_at=listing.created_at,
        updated_at=listing.updated_at,
        inventory=inventory_v2(inventory),
        vinyl=vinyl,
    )


def inventory_with_listing_v2(
    inventory: Inventory, listing: Listing, vinyl: Vinyl, artists: List[Artist]
) -> InventoryWithListingV2Response:
    return InventoryWithListingV2Response(
        id=inventory.id,
        total_quantity=inventory.total_quantity,
        reserved_quantity=inventory.reserved_quantity,
        available_quantity=inventory.available_quantity,
        created_at=inventory.created_at,
        updated_at=inventory.updated_at,
        listing=ListingContextV2(
            id=listing.id,
            status=listing.status,
            price=listing.price,
            currency=listing.currency,
            vinyl=VinylContextV2(id=vinyl.id, title=vinyl.title, artists=artists),
        ),
    )


# Health & admin

@app.get("/health", response_model=HealthResponse)
def health(request: Request, store: VinylStore = Depends(get_store)):
    uptime = store.uptime_seconds()
    next_reset = format_duration(RESET_INTERVAL_SECONDS - uptime) if request.app.state.auto_reset else None
    return HealthResponse(status="OK", uptime=format_duration(uptime), next_reset_in=next_reset)


@app.post("/admin/reset", response_model=MessageResponse)
def admin_reset(store: VinylStore = Depends(get_store), admin=Depends(require_role("ADMIN"))):
    logger.info("Reset requested by %s", admin.email)
    store.reset_to_bootstrap()
    return MessageResponse(message="Data reset to bootstrap state")


# Auth Routes

@app.post("/v1/auth/register", response_model=LoginResponse, status_code=201)
def register(payload: RegisterRequest, store: VinylStore = Depends(get_store)):
    verify_password_policy(payload.password)
    if store.get_user_by_email(payload.email):
        raise HTTPException(status_code=409, detail="Email already exists")
    user = store.create_user(payload.email, payload.password, "CUSTOMER")
    return LoginResponse(token=create_access_token(user), user=user_out(user))


@app.post("/v1/auth/login", response_model=LoginResponse)
def login(payload: LoginRequest, store: VinylStore = Depends(get_store)):
    user = store.get_user_by_email(payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is not active")
    return LoginResponse(token=create_access_token(user), user=user_out(user))


@app.get("/v1/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return user_out(current_user)


@app.get("/v2/auth/me", response_model=UserV2Response)
def me_v2(current_user: User = Depends(get_current_user), store: VinylStore = Depends(get_store)):
    return UserV2Response(
        **current_user.model_dump(),
        addresses=store.list_addresses(current_user.id),
        stats=UserStatsV2(total_orders=0, account_created=current_user.created_at),
    )


# User Routes (admin only)

@app.get("/v1/users", response_model=UsersResponse)
def list_users(
    role: Optional[str] = None,
    is_active: Optional[bool] = Query(None, alias="isActive"),
    store: VinylStore = Depends(get_store),
    admin=Depends(require_role("ADMIN")),
):
    users = store.list_users()
    role = parse_choice(role, ROLES)
    if role:
        users = [u for u in users if u.role == role]
    if is_active is not None:
        users = [u for u in users if u.is_active == is_active]
    return UsersResponse(users=[user_out(u) for u in users], total=len(users))


@app.get("/v1/users/{user_id}", response_model=UserResponse)
def get_user(user_id: int, store: VinylStore = Depends(get_store), admin=Depends(require_role("ADMIN"))):
    user = store.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user_out(user)


@app.post("/v1/users", response_model=UserResponse, status_code=201)
def create_user(payload: CreateUserRequest, store: VinylStore = Depends(get_store), admin=Depends(require_role("ADMIN"))):
    verify_password_policy(payload.password)
    if store.get_user_by_email(payload.email):
        raise HTTPException(status_code=409, detail="User with this email already exists")
    return user_out(store.create_user(payload.email, payload.password, payload.role))


@app.put("/v1/users/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    payload: UpdateUserRequest,
    store: VinylStore = Depends(get_store),
    admin=Depends(require_role("ADMIN")),
):
    updated = store.update_user(user_id, **patch_of(payload))
    if not updated:
        raise HTTPException(status_code=404, detail="User not found")
    return user_out(updated)


@app.delete("/v1/users/{user_id}", status_code=204)
def delete_user(user_id: int, store: VinylStore = Depends(get_store), admin=Depends(require_role("ADMIN"))):
    if not store.delete_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    return Response(status_code=204)


# Address Routes (the caller's own addresses)

def owned_address(store: VinylStore, address_id: int, user: User) -> Address:
    address = store.get_address(address_id)
    if not address or address.user_id != user.id:
        raise HTTPException(status_code=404, detail="Address not found")
    return address


def check_address_fields(payload) -> None:
    require_text(payload.full_name, "Full name is required")
    require_text(payload.street, "Street is required")
    require_text(payload.city, "City is required")
    require_text(payload.postal_code, "Postal code is required")
    require_text(payload.country, "Country is required")


@app.get("/v1/users/me/addresses", response_model=AddressesResponse)
def list_addresses(
    type: Optional[str] = None,
    is_default: Optional[bool] = Query(None, alias="isDefault"),
    current_user: User = Depends(get_current_user),
    store: VinylStore = Depends(get_store),
):
    addresses = store.list_addresses(current_user.id)
    address_type = parse_choice(type, ADDRESS_TYPES)
    if address_type:
        addresses = [a for a in addresses if a.type == address_type]
    if is_default is not None:
        addresses = [a for a in addresses if a.is_default == is_default]
    return AddressesResponse(addresses=addresses, total=len(addresses))


@app.get("/v1/users/me/addresses/{address_id}", response_model=Address)
def get_address(address_id: int, current_user: User = Depends(get_current_user), store: VinylStore = Depends(get_store)):
    return owned_address(store, address_id, current_user)


@app.post("/v1/users/me/addresses", response_model=Address, status_code=201)
def create_address(
    payload: CreateAddressRequest,
    current_user: User = Depends(get_current_user),
    store: VinylStore = Depends(get_store),
):
    check_address_fields(payload)
    return store.create_address(current_user.id, **payload.model_dump())


@app.put("/v1/users/me/addresses/{address_id}", response_model=Address)
def update_address(
    address_id: int,
    payload: UpdateAddressRequest,
    current_user: User = Depends(get_current_user),
    store: VinylStore = Depends(get_store),
):
    owned_address(store, address_id, current_user)
    check_address_fields(payload)
    return store.update_address(address_id, **patch_of(payload))


@app.delete("/v1/users/me/addresses/{address_id}", status_code=204)
def delete_address(address_id: int, current_user: User = Depends(get_current_user), store: VinylStore = Depends(get_store)):
    owned_address(store, address_id, current_user)
    store.delete_address(address_id)
    return Response(status_code=204)


# Artist Routes

@app.get("/v1/artists", response_model=ArtistsResponse)
def list_artists(name: Optional[str] = None, store: VinylStore = Depends(get_store), current_user=Depends(get_current_user)):
    artists = store.list_artists()
    if name:
        artists = [a for a in artists if contains_ignore_case(a.name, name)]
    return ArtistsResponse(artists=artists, total=len(artists))


@app.get("/v1/artists/{artist_id}", response_model=Artist)
def get_artist(artist_id: int, store: VinylStore = Depends(get_store), current_user=Depends(get_current_user)):
    artist = store.get_artist(artist_id)
    if not artist:
        raise HTTPException(status_code=404, detail="Artist not found")
    return artist


@app.post("/v1/artists", response_model=Artist, status_code=201)
def create_artist(payload: NameRequest, store: VinylStore = Depends(get_store), staff=Depends(require_role("ADMIN", "STAFF"))):
    require_text(payload.name, "Name is required")
    return store.create_artist(payload.name)


@app.put("/v1/artists/{artist_id}", response_model=Artist)
def update_artist(
    artist_id: int,
    payload: NameRequest,
    store: VinylStore = Depends(get_store),
    staff=Depends(require_role("ADMIN", "STAFF")),
):
    require_text(payload.name, "Name is required")
    updated = store.update_artist(artist_id, payload.name)
    if not updated:
        raise HTTPException(status_code=404, detail="Artist not found")
    return updated


@app.delete("/v1/artists/{artist_id}", status_code=204)
def delete_artist(artist_id: int, store: VinylStore = Depends(get_store), staff=Depends(require_role("ADMIN", "STAFF"))):
    if not store.get_artist(artist_id):
        raise HTTPException(status_code=404, detail="Artist not found")
    if store.artist_has_vinyls(artist_id):
        raise HTTPException(status_code=409, detail="Cannot delete artist with associated vinyls")
    store.delete_artist(artist_id)
    return Response(status_code=204)


# Genre Routes

@app.get("/v1/genres", response_model=GenresResponse)
def list_genres(name: Optional[str] = None, store: VinylStore = Depends(get_store), current_user=Depends(get_current_user)):
    genres = store.list_genres()
    if name:
        genres = [g for g in genres if contains_ignore_case(g.name, name)]
    return GenresResponse(genres=genres, total=len(genres))


@app.get("/v1/genres/{genre_id}", response_model=Genre)
def get_genre(genre_id: int, store: VinylStore = Depends(get_store), current_user=Depends(get_current_user)):
    genre = store.get_genre(genre_id)
    if not genre:
        raise HTTPException(status_code=404, detail="Genre not found")
    return genre


@app.post("/v1/genres", response_model=Genre, status_code=201)
def create_genre(payload: NameRequest, store: VinylStore = Depends(get_store), staff=Depends(require_role("ADMIN", "STAFF"))):
    require_text(payload.name, "Name is required")
    return store.create_genre(payload.name)


@app.put("/v1/genres/{genre_id}", response_model=Genre)
def update_genre(
    genre_id: int,
    payload: NameRequest,
    store: VinylStore = Depends(get_store),
    staff=Depends(require_role("ADMIN", "STAFF")),
):
    require_text(payload.name, "Name is required")
    updated = store.update_genre(genre_id, payload.name)
    if not updated:
        raise HTTPException(status_code=404, detail="Genre not found")
    return updated


@app.delete("/v1/genres/{genre_id}", status_code=204)
def delete_genre(genre_id: int, store: VinylStore = Depends(get_store), staff=Depends(require_role("ADMIN", "STAFF"))):
    if not store.get_genre(genre_id):
        raise HTTPException(status_code=404, detail="Genre not found")
    if store.genre_has_vinyls(genre_id):
        raise HTTPException(status_code=409, detail="Cannot delete genre associated with vinyls")
    store.delete_genre(genre_id)
    return Response(status_code=204)


# Label Routes

@app.get("/v1/labels", response_model=LabelsResponse)
def list_labels(name: Optional[str] = None, store: VinylStore = Depends(get_store), current_user=Depends(get_current_user)):
    labels = store.list_labels()
    if name:
        labels = [lbl for lbl in labels if contains_ignore_case(lbl.name, name)]
    return LabelsResponse(labels=labels, total=len(labels))


@app.get("/v1/labels/{label_id}", response_model=Label)
def get_label(label_id: int, store: VinylStore = Depends(get_store), current_user=Depends(get_current_user)):
    label = store.get_label(label_id)
    if not label:
        raise HTTPException(status_code=404, detail="Label not found")
    return label


@app.post("/v1/labels", response_model=Label, status_code=201)
def create_label(payload: NameRequest, store: VinylStore = Depends(get_store), staff=Depends(require_role("ADMIN", "STAFF"))):
    require_text(payload.name, "Name is required")
    return store.create_label(payload.name)


@app.put("/v1/labels/{label_id}", response_model=Label)
def update_label(
    label_id: int,
    payload: NameRequest,
    store: VinylStore = Depends(get_store),
    staff=Depends(require_role("ADMIN", "STAFF")),
):
    require_text(payload.name, "Name is required")
    updated = store.update_label(label_id, payload.name)
    if not updated:
        raise HTTPException(status_code=404, detail="Label not found")
    return updated


@app.delete("/v1/labels/{label_id}", status_code=204)
def delete_label(label_id: int, store: VinylStore = Depends(get_store), staff=Depends(require_role("ADMIN", "STAFF"))):
    if not store.get_label(label_id):
        raise HTTPException(status_code=404, detail="Label not found")
    if store.label_has_vinyls(label_id):
        raise HTTPException(status_code=409, detail="Cannot delete label with associated vinyls")
    store.delete_label(label_id)
    return Response(status_code=204)


# Vinyl Routes

def check_vinyl_references(
    store: VinylStore,
    artist_ids: Sequence[int] = (),
    label_id: Optional[int] = None,
    genre_ids: Sequence[int] = (),
) -> None:
    for artist_id in artist_ids:
        if not store.get_artist(artist_id):
            raise HTTPException(status_code=404, detail=f"Artist {artist_id} not found")
    if label_id is not None and not store.get_label(label_id):
        raise HTTPException(status_code=404, detail=f"Label {label_id} not found")
    for genre_id in genre_ids:
        if not store.get_genre(genre_id):
            raise HTTPException(status_code=404, detail=f"Genre {genre_id} not found")


@app.get("/v1/vinyls", response_model=VinylsResponse)
def list_vinyls(
    artist: Optional[str] = None,
    genre: Optional[str] = None,
    label: Optional[str] = None,
    year: Optional[int] = None,
    min_year: Optional[int] = Query(None, alias="minYear"),
    max_year: Optional[int] = Query(None, alias="maxYear"),
    title: Optional[str] = None,
    store: VinylStore = Depends(get_store),
    current_user=Depends(get_current_user),
):
    vinyls = store.list_vinyls()
    if artist:
        vinyls = [
            v for v in vinyls
            if (a := store.get_artist(v.artist_id)) and matches_id_or_name(artist, a.id, a.name)
        ]
    if genre:
        vinyls = [
            v for v in vinyls
            if (g := store.get_genre_for_vinyl(v.id)) and contains_ignore_case(g.name, genre)
        ]
    if label:
        vinyls = [
            v for v in vinyls
            if (lbl := store.get_label(v.label_id)) and matches_id_or_name(label, lbl.id, lbl.name)
        ]
    vinyls = filter_years(vinyls, year, min_year, max_year)
    if title:
        vinyls = [v for v in vinyls if contains_ignore_case(v.title, title)]
    return VinylsResponse(vinyls=vinyls, total=len(vinyls))


@app.get("/v1/vinyls/{vinyl_id}", response_model=VinylDetailResponse)
def get_vinyl(vinyl_id: int, store: VinylStore = Depends(get_store), current_user=Depends(get_current_user)):
    vinyl = store.get_vinyl(vinyl_id)
    if not vinyl:
        raise HTTPException(status_code=404, detail="Vinyl not found")
    return VinylDetailResponse(
        vinyl=vinyl,
        artist=expect(store.get_artist(vinyl.artist_id), f"vinyl {vinyl.id} has no artist {vinyl.artist_id}"),
        label=expect(store.get_label(vinyl.label_id), f"vinyl {vinyl.id} has no label {vinyl.label_id}"),
        genre=expect(store.get_genre_for_vinyl(vinyl.id), f"vinyl {vinyl.id} has no genre link"),
    )


@app.post("/v1/vinyls", response_model=Vinyl, status_code=201)
def create_vinyl(payload: CreateVinylRequest, store: VinylStore = Depends(get_store), staff=Depends(require_role("ADMIN", "STAFF"))):
    require_text(payload.title, "Title is required")
    artist_ids = list(dict.fromkeys([payload.artist_id, *payload.artist_ids]))
    check_vinyl_references(store, artist_ids, payload.label_id, [payload.genre_id])

    vinyl = store.create_vinyl(
        title=payload.title,
        artist_id=payload.artist_id,
        label_id=payload.label_id,
        genre_id=payload.genre_id,
        year=payload.year,
        condition_media=payload.condition_media,
        condition_sleeve=payload.condition_sleeve,
    )
    for artist_id in artist_ids:
        store.link_vinyl_artist(vinyl.id, artist_id)
    store.link_vinyl_genre(vinyl.id, payload.genre_id)
    return vinyl


@app.put("/v1/vinyls/{vinyl_id}", response_model=Vinyl)
def update_vinyl(
    vinyl_id: int,
    payload: UpdateVinylRequest,
    store: VinylStore = Depends(get_store),
    staff=Depends(require_role("ADMIN", "STAFF")),
):
    if not store.get_vinyl(vinyl_id):
        raise HTTPException(status_code=404, detail="Vinyl not found")
    require_text(payload.title, "Title is required")
    changes = patch_of(payload)
    genre_ids = changes.pop("genre_ids", None)
    if genre_ids == []:
        raise HTTPException(status_code=422, detail="At least one genre is required")
    check_vinyl_references(
        store,
        [changes["artist_id"]] if "artist_id" in changes else [],
        changes.get("label_id"),
        genre_ids or [],
    )

    updated = store.update_vinyl(vinyl_id, **changes)
    if not updated:
        raise HTTPException(status_code=404, detail="Vinyl not found")
    if genre_ids is not None:
        store.unlink_all_vinyl_genres(vinyl_id)
        for genre_id in genre_ids:
            store.link_vinyl_genre(vinyl_id, genre_id)
    return updated


@app.delete("/v1/vinyls/{vinyl_id}", status_code=204)
def delete_vinyl(vinyl_id: int, store: VinylStore = Depends(get_store), staff=Depends(require_role("ADMIN", "STAFF"))):
    if not store.get_vinyl(vinyl_id):
        raise HTTPException(status_code=404, detail="Vinyl not found")
    if store.vinyl_has_listings(vinyl_id):
        raise HTTPException(status_code=409, detail="Cannot delete vinyl with associated listings")
    store.delete_vinyl(vinyl_id)
    return Response(status_code=204)


@app.post("/v1/vinyls/{vinyl_id}/listings", response_model=Listing, status_code=201)
def create_listing(
    vinyl_id: int,
    payload: CreateListingRequest,
    store: VinylStore = Depends(get_store),
    staff=Depends(require_role("ADMIN", "STAFF")),
):
    if not store.get_vinyl(vinyl_id):
        raise HTTPException(status_code=404, detail="Vinyl not found")
    if payload.price <= 0:
        raise HTTPException(status_code=422, detail="Price must be positive")
    if payload.initial_stock <= 0:
        raise HTTPException(status_code=422, detail="Initial stock must be positive")
    require_text(payload.currency, "Currency is required")
    return store.create_listing(vinyl_id, payload.price, payload.currency, payload.initial_stock)


@app.get("/v2/vinyls", response_model=VinylsV2Response)
def list_vinyls_v2(
    artist: Optional[str] = None,
    genre: Optional[str] = None,
    label: Optional[str] = None,
    year: Optional[int] = None,
    min_year: Optional[int] = Query(None, alias="minYear"),
    max_year: Optional[int] = Query(None, alias="maxYear"),
    title: Optional[str] = None,
    store: VinylStore = Depends(get_store),
    current_user=Depends(get_current_user),
):
    vinyls = [d for d in (vinyl_v2(store, v) for v in store.list_vinyls()) if d is not None]
    if artist:
        vinyls = [v for v in vinyls if any(matches_id_or_name(artist, a.id, a.name) for a in v.artists)]
    if genre:
        vinyls = [v for v in vinyls if contains_ignore_case(v.genre.name, genre)]
    if label:
        vinyls = [v for v in vinyls if matches_id_or_name(label, v.label.id, v.label.name)]
    vinyls = filter_years(vinyls, year, min_year, max_year)
    if title:
        vinyls = [v for v in vinyls if contains_ignore_case(v.title, title)]
    return VinylsV2Response(vinyls=vinyls, total=len(vinyls))


# Listing Routes (browsing is public)

def listing_matches(
    price: float,
    status: str,
    vinyl,
    artists: List[Artist],
    genre: Genre,
    label: Label,
    filters: dict,
) -> bool:
    wanted_status = parse_choice(filters["status"], LISTING_STATUSES)
    if wanted_status and status != wanted_status:
        return False
    if filters["min_price"] is not None and price < filters["min_price"]:
        return False
    if filters["max_price"] is not None and price > filters["max_price"]:
        return False
    if filters["artist"] and not any(matches_id_or_name(filters["artist"], a.id, a.name) for a in artists):
        return False
    if filters["genre"] and not contains_ignore_case(genre.name, filters["genre"]):
        return False
    if filters["label"] and not matches_id_or_name(filters["label"], label.id, label.name):
        return False
    if filters["year"] is not None and vinyl.year != filters["year"]:
        return False
    condition = filters["condition"]
    if condition and not (
        contains_ignore_case(vinyl.condition_media, condition) or contains_ignore_case(vinyl.condition_sleeve, condition)
    ):
        return False
    return True


def listing_filters(
    status: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    artist: Optional[str] = None,
    genre: Optional[str] = None,
    label: Optional[str] = None,
    year: Optional[int] = None,
    condition: Optional[str] = None,
) -> dict:
    return {
        "status": status,
        "min_price": min_price,
        "max_price": max_price,
        "artist": artist,
        "genre": genre,
        "label": label,
        "year": year,
        "condition": condition,
    }


@app.get("/v1/listings", response_model=ListingsResponse)
def list_listings(filters: dict = Depends(listing_filters), store: VinylStore = Depends(get_store)):
    details = []
    for listing in store.list_published_listings():
        vinyl = store.get_vinyl(listing.vinyl_id)
        if not vinyl:
            continue
        artist = store.get_artist(vinyl.artist_id)
        label = store.get_label(vinyl.label_id)
        genre = store.get_genre_for_vinyl(vinyl.id)
        inventory = store.get_inventory(listing.id)
        if not (artist and label and genre and inventory) or inventory.available_quantity <= 0:
            continue
        if listing_matches(listing.price, listing.status, vinyl, [artist], genre, label, filters):
            details.append(
                ListingDetailResponse(
                    listing=listing, vinyl=vinyl, artist=artist, genre=genre, label=label, inventory=inventory
                )
            )
    return ListingsResponse(listings=details, total=len(details))


@app.get("/v1/listings/{listing_id}", response_model=ListingDetailResponse)
def get_listing(listing_id: int, store: VinylStore = Depends(get_store)):
    listing = store.get_listing(listing_id)
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    vinyl = expect(store.get_vinyl(listing.vinyl_id), f"listing {listing.id} has no vinyl {listing.vinyl_id}")
    return ListingDetailResponse(
        listing=listing,
        vinyl=vinyl,
        artist=expect(store.get_artist(vinyl.artist_id), f"vinyl {vinyl.id} has no artist {vinyl.artist_id}"),
        genre=expect(store.get_genre_for_vinyl(vinyl.id), f"vinyl {vinyl.id} has no genre link"),
        label=expect(store.get_label(vinyl.label_id), f"vinyl {vinyl.id} has no label {vinyl.label_id}"),
        inventory=expect(store.get_inventory(listing.id), f"listing {listing.id} has no inventory"),
    )


@app.put("/v1/listings/{listing_id}", response_model=Listing)
def update_listing(
    listing_id: int,
    payload: UpdateListingRequest,
    store: VinylStore = Depends(get_store),
    staff=Depends(require_role("ADMIN", "STAFF")),
):
    if payload.price is not None and payload.price <= 0:
        raise HTTPException(status_code=422, detail="Price must be positive")
    updated = store.update_listing(listing_id, **patch_of(payload))
    if not updated:
        raise HTTPException(status_code=404, detail="Listing not found")
    return updated


@app.delete("/v1/listings/{listing_id}", status_code=204)
def delete_listing(listing_id: int, store: VinylStore = Depends(get_store), staff=Depends(require_role("ADMIN", "STAFF"))):
    if not store.delete_listing(listing_id):
        raise HTTPException(status_code=404, detail="Listing not found")
    return Response(status_code=204)


@app.get("/v2/listings", response_model=ListingsV2Response)
def list_listings_v2(filters: dict = Depends(listing_filters), store: VinylStore = Depends(get_store)):
    details = []
    for listing in store.list_published_listings():
        vinyl = store.get_vinyl(listing.vinyl_id)
        embedded = vinyl_v2(store, vinyl) if vinyl else None
        inventory = store.get_inventory(listing.id)
        if embedded is None or inventory is None or inventory.available_quantity <= 0:
            continue
        if listing_matches(
            listing.price, listing.status, embedded, embedded.artists, embedded.genre, embedded.label, filters
        ):
            details.append(listing_v2(listing, embedded, inventory))
    return ListingsV2Response(listings=details, total=len(details))


@app.get("/v2/listings/{listing_id}", response_model=ListingV2Response)
def get_listing_v2(listing_id: int, store: VinylStore = Depends(get_store)):
    listing = store.get_listing(listing_id)
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    vinyl = store.get_vinyl(listing.vinyl_id)
    if not vinyl:
        raise HTTPException(status_code=404, detail="Vinyl not found")
    if not store.get_artists_for_vinyl(vinyl.id):
        raise HTTPException(status_code=404, detail="Artists not found")
    if not store.get_label(vinyl.label_id):
        raise HTTPException(status_code=404, detail="Label not found")
    if not store.get_genre_for_vinyl(vinyl.id):
        raise HTTPException(status_code=404, detail="Genre not found")
    inventory = store.get_inventory(listing.id)
    if not inventory:
        raise HTTPException(status_code=404, detail="Inventory not found")
    return listing_v2(listing, vinyl_v2(store, vinyl), inventory)


# Inventory Routes (staff only)

@app.get("/v1/inventory", response_model=InventoryResponse)
def list_inventory(
    min_available: Optional[int] = Query(None, alias="minAvailable"),
    max_available: Optional[int] = Query(None, alias="maxAvailable"),
    min_total: Optional[int] = Query(None, alias="minTotal"),
    listing_status: Optional[str] = Query(None, alias="listingStatus"),
    store: VinylStore = Depends(get_store),
    staff=Depends(require_role("ADMIN", "STAFF")),
):
    items = store.list_inventory()
    if min_available is not None:
        items = [i for i in items if i.available_quantity >= min_available]
    if max_available is not None:
        items = [i for i in items if i.available_quantity <= max_available]
    if min_total is not None:
        items = [i for i in items if i.total_quantity >= min_total]
    status = parse_choice(listing_status, LISTING_STATUSES)
    if status:
        items = [i for i in items if (lst := store.get_listing(i.listing_id)) and lst.status == status]
    return InventoryResponse(inventory=items, total=len(items))


@app.get("/v1/inventory/{listing_id}", response_model=Inventory)
def get_inventory(listing_id: int, store: VinylStore = Depends(get_store), staff=Depends(require_role("ADMIN", "STAFF"))):
    inventory = store.get_inventory(listing_id)
    if not inventory:
        raise HTTPException(status_code=404, detail="Inventory not found")
    return inventory


@app.put("/v1/inventory/{listing_id}", response_model=Inventory)
def update_inventory(
    listing_id: int,
    payload: UpdateInventoryRequest,
    store: VinylStore = Depends(get_store),
    staff=Depends(require_role("ADMIN", "STAFF")),
):
    if not store.get_inventory(listing_id):
        raise HTTPException(status_code=404, detail="Inventory not found")
    if payload.total_quantity is not None and payload.total_quantity < 0:
        raise HTTPException(status_code=422, detail="Total quantity cannot be negative")
    if payload.reserved_quantity is not None and payload.reserved_quantity < 0:
        raise HTTPException(status_code=422, detail="Reserved quantity cannot be negative")
    try:
        updated = store.update_inventory(listing_id, payload.total_quantity, payload.reserved_quantity)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not updated:
        raise HTTPException(status_code=404, detail="Inventory not found")
    return updated


@app.get("/v2/inventory", response_model=InventoriesV2Response)
def list_inventory_v2(
    out_of_stock: bool = Query(False, alias="outOfStock"),
    artist: Optional[str] = None,
    title: Optional[str] = None,
    min_available: Optional[int] = Query(None, alias="minAvailable"),
    max_available: Optional[int] = Query(None, alias="maxAvailable"),
    store: VinylStore = Depends(get_store),
    staff=Depends(require_role("ADMIN", "STAFF")),
):
    items = []
    for inventory in store.list_inventory():
        listing = store.get_listing(inventory.listing_id)
        vinyl = store.get_vinyl(listing.vinyl_id) if listing else None
        artists = store.get_artists_for_vinyl(vinyl.id) if vinyl else []
        if not artists:
            continue
        items.append(inventory_with_listing_v2(inventory, listing, vinyl, artists))

    if out_of_stock:
        items = [i for i in items if i.available_quantity == 0]
    if min_available is not None:
        items = [i for i in items if i.available_quantity >= min_available]
    if max_available is not None:
        items = [i for i in items if i.available_quantity <= max_available]
    if artist:
        items = [i for i in items if any(matches_id_or_name(artist, a.id, a.name) for a in i.listing.vinyl.artists)]
    if title:
        items = [i for i in items if contains_ignore_case(i.listing.vinyl.title, title)]
    return InventoriesV2Response(inventory=items, total=len(items))


@app.get("/v2/inventory/{listing_id}", response_model=InventoryWithListingV2Response)
def get_inventory_v2(listing_id: int, store: VinylStore = Depends(get_store), staff=Depends(require_role("ADMIN", "STAFF"))):
    inventory = store.get_inventory(listing_id)
    if not inventory:
        raise HTTPException(status_code=404, detail="Inventory not found")
    listing = store.get_listing(listing_id)
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    vinyl = store.get_vinyl(listing.vinyl_id)
    if not vinyl:
        raise HTTPException(status_code=404, detail="Vinyl not found")
    artists = store.get_artists_for_vinyl(vinyl.id)
    if not artists:
        raise HTTPException(status_code=404, detail="Artists not found")
    return inventory_with_listing_v2(inventory, listing, vinyl, artists)


# Utility endpoints
@app.get("/")
def root():
    return {"message": "Vinyl Store API running", "docs": "/docs"}


if __name__ == "__main__":
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="Run the Vinyl Store API")
    parser.add_argument("--auto-reset", action="store_true", help="reset to bootstrap data every hour")
    parser.add_argument("--port", type=int, default=PORT)
    args = parser.parse_args()

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if args.auto_reset:
        app.state.auto_reset = True
    logger.info("Vinyl Store API running on http://localhost:%d", args.port)
    logger.info("Admin credentials: admin@vinylstore.com / admin123")
    uvicorn.run(app, host="0.0.0.0", port=args.port)
