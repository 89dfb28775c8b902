"""
Schemas for the Vinyl Store API

Stored records are immutable pydantic models; the store replaces a record
wholesale on every update. Field names are snake_case in Python and camelCase
on the wire (User.is_active -> "isActive").

Collections held by the store:
- user, address: accounts and their shipping/billing addresses
- artist, genre, label: catalog reference data, deduplicated by name
- vinyl: records, plus the vinyl_artist and vinyl_genre association tables
- listing: a vinyl offered at a price, with exactly one inventory record
- inventory: stock for a listing; available = total - reserved
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field
from pydantic.alias_generators import to_camel

Role = Literal["CUSTOMER", "STAFF", "ADMIN"]
AddressType = Literal["SHIPPING", "BILLING"]
ListingStatus = Literal["DRAFT", "PUBLISHED", "ARCHIVED"]

ROLES = ("CUSTOMER", "STAFF", "ADMIN")
ADDRESS_TYPES = ("SHIPPING", "BILLING")
LISTING_STATUSES = ("DRAFT", "PUBLISHED", "ARCHIVED")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Record(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# Stored records

class User(Record):
    id: int
    email: str
    password_hash: str = Field(..., exclude=True, description="BCrypt hash of password")
    role: Role = "CUSTOMER"
    is_active: bool = True
    created_at: str
    updated_at: str


class Address(Record):
    id: int
    user_id: int = Field(..., description="Owner of the address")
    type: AddressType
    full_name: str
    street: str
    city: str
    postal_code: str
    country: str
    is_default: bool = False
    created_at: str
    updated_at: str


class Artist(Record):
    id: int
    name: str


class Genre(Record):
    id: int
    name: str


class Label(Record):
    id: int
    name: str


class Vinyl(Record):
    id: int
    title: str
    artist_id: int = Field(..., description="Primary artist; all artists live in vinyl_artist")
    label_id: int
    genre_id: int = Field(..., description="Primary genre; all genres live in vinyl_genre")
    year: int
    condition_media: str
    condition_sleeve: str
    created_at: str
    updated_at: str


class VinylArtist(Record):
    vinyl_id: int
    artist_id: int


class VinylGenre(Record):
    vinyl_id: int
    genre_id: int


class Listing(Record):
    id: int
    vinyl_id: int
    status: ListingStatus = "PUBLISHED"
    price: float = Field(..., gt=0)
    currency: str = "EUR"
    created_at: str
    updated_at: str


class Inventory(Record):
    id: int
    listing_id: int
    total_quantity: int = Field(..., ge=0)
    reserved_quantity: int = Field(0, ge=0)
    created_at: str
    updated_at: str

    @computed_field(alias="availableQuantity")
    @property
    def available_quantity(self) -> int:
        return self.total_quantity - self.reserved_quantity


# Requests
# Update payloads are merge patches: a field that is omitted or null keeps its current value.

class RegisterRequest(CamelModel):
    email: EmailStr
    password: str


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class CreateUserRequest(CamelModel):
    email: EmailStr
    password: str
    role: Role = "CUSTOMER"


class UpdateUserRequest(CamelModel):
    role: Optional[Role] = None
    is_active: Optional[bool] = None


class CreateAddressRequest(CamelModel):
    type: AddressType
    full_name: str
    street: str
    city: str
    postal_code: str
    country: str
    is_default: bool = False


class UpdateAddressRequest(CamelModel):
    type: Optional[AddressType] = None
    full_name: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    is_default: Optional[bool] = None


class NameRequest(CamelModel):
    name: str


class CreateVinylRequest(CamelModel):
    title: str
    artist_id: int
    label_id: int
    genre_id: int
    year: int
    condition_media: str
    condition_sleeve: str
    artist_ids: List[int] = Field(default_factory=list, description="Additional collaborating artists")


class UpdateVinylRequest(CamelModel):
    title: Optional[str] = None
    artist_id: Optional[int] = None
    label_id: Optional[int] = None
    year: Optional[int] = None
    condition_media: Optional[str] = None
    condition_sleeve: Optional[str] = None
    genre_ids: Optional[List[int]] = Field(None, description="Replaces every genre link of the vinyl")


class CreateListingRequest(CamelModel):
    price: float
    currency: str = "EUR"
    initial_stock: int


class UpdateListingRequest(CamelModel):
    price: Optional[float] = None
    status: Optional[ListingStatus] = None


class UpdateInventoryRequest(CamelModel):
    total_quantity: Optional[int] = None
    reserved_quantity: Optional[int] = None


# Responses (v1: flat references by id)

class UserResponse(CamelModel):
    id: int
    email: str
    role: Role
    is_active: bool
    created_at: str
    updated_at: str


class LoginResponse(CamelModel):
    token: str
    user: UserResponse


class MessageResponse(CamelModel):
    message: str


class HealthResponse(CamelModel):
    status: str
    uptime: str
    next_reset_in: Optional[str] = None


class UsersResponse(CamelModel):
    users: List[UserResponse]
    total: int


class AddressesResponse(CamelModel):
    addresses: List[Address]
    total: int


class ArtistsResponse(CamelModel):
    artists: List[Artist]
    total: int


class GenresResponse(CamelModel):
    genres: List[Genre]
    total: int


class LabelsResponse(CamelModel):
    labels: List[Label]
    total: int


class VinylsResponse(CamelModel):
    vinyls: List[Vinyl]
    total: int


class VinylDetailResponse(CamelModel):
    vinyl: Vinyl
    artist: Artist
    label: Label
    genre: Genre


class ListingDetailResponse(CamelModel):
    listing: Listing
    vinyl: Vinyl
    artist: Artist
    genre: Genre
    label: Label
    inventory: Inventory


class ListingsResponse(CamelModel):
    listings: List[ListingDetailResponse]
    total: int


class InventoryResponse(CamelModel):
    inventory: List[Inventory]
    total: int


# Responses (v2: embedded entities)

class VinylWithDetailsV2(CamelModel):
    id: int
    title: str
    year: int
    condition_media: str
    condition_sleeve: str
    artists: List[Artist]
    label: Label
    genre: Genre
    created_at: str
    updated_at: str


class VinylsV2Response(CamelModel):
    vinyls: List[VinylWithDetailsV2]
    total: int


class InventoryV2(CamelModel):
    total_quantity: int
    reserved_quantity: int
    available_quantity: int
    created_at: str
    updated_at: str


class ListingV2Response(CamelModel):
    id: int
    status: ListingStatus
    price: float
    currency: str
    created_at: str
    updated_at: str
    inventory: InventoryV2
    vinyl: VinylWithDetailsV2


class ListingsV2Response(CamelModel):
    listings: List[ListingV2Response]
    total: int


class VinylContextV2(CamelModel):
    id: int
    title: str
    artists: List[Artist]


class ListingContextV2(CamelModel):
    id: int
    status: ListingStatus
    price: float
    currency: str
    vinyl: VinylContextV2


class InventoryWithListingV2Response(CamelModel):
    id: int
    total_quantity: int
    reserved_quantity: int
    available_quantity: int
    created_at: str
    updated_at: str
    listing: ListingContextV2


class InventoriesV2Response(CamelModel):
    inventory: List[InventoryWithListingV2Response]
    total: int


class UserStatsV2(CamelModel):
    total_orders: int = 0
    account_created: str


class UserV2Response(CamelModel):
    id: int
    email: str
    role: Role
    is_active: bool
    created_at: str
    updated_at: str
    addresses: List[Address]
    stats: UserStatsV2
