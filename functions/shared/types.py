# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import List, Optional


class StorageType(StrEnum):
    IN_HOUSE = "In House"
    BASEMENT = "Basement"
    OFF_LOCATION = "Off Location"


class RentType(StrEnum):
    SUMMER = "Summer"
    MONTHLY = "Monthly"
    DAILY = "Daily"


@dataclass(frozen=True)
class ImageBlob:
    """Decoded image bytes as served to clients."""

    data: bytes
    format: str
    width: int
    height: int

    @property
    def media_type(self) -> str:
        return f"image/{self.format.lower()}"


@dataclass(frozen=True)
class StorableObject:
    """An item type a student can put into storage."""

    name: str


@dataclass
class StorageCompany:
    """A storage vendor with its flattened price index."""

    name: str
    price_index: dict[str, float] = field(default_factory=dict)
    pickup_times: List[datetime] = field(default_factory=list)
    dropoff_times: List[datetime] = field(default_factory=list)
    image: Optional[ImageBlob] = None


@dataclass
class Listing:
    """
    A storage space offered by a user.

    Every scalar is optional; an unset field means the listing has not been
    filled in yet, not that it is invalid.
    """

    uid: Optional[str] = None
    listing_id: Optional[str] = None
    location: Optional[str] = None
    storage_type: StorageType = StorageType.IN_HOUSE
    square_feet: Optional[str] = None
    rent_type: RentType = RentType.SUMMER
    rent: Optional[str] = None
    dates: List[date] = field(default_factory=list)
    restricted_items: List[StorableObject] = field(default_factory=list)
    allowed_items: List[StorableObject] = field(default_factory=list)
    images: List[ImageBlob] = field(default_factory=list)
    description: str = ""

    def as_record(self) -> dict:
        """Returns the record-store representation (images are stored separately)."""
        record = {
            "uid": self.uid,
            "listingID": self.listing_id,
            "location": self.location,
            "storageType": self.storage_type.value,
            "squareFeet": self.square_feet,
            "rentType": self.rent_type.value,
            "rent": self.rent,
            "dates": [d.isoformat() for d in self.dates],
            "restrictedItems": [item.name for item in self.restricted_items],
            "allowedItems": [item.name for item in self.allowed_items],
            "description": self.description,
        }
        return {key: value for key, value in record.items() if value is not None}

    @classmethod
    def from_record(cls, record: dict) -> "Listing":
        """Builds a listing from a record-store value, ignoring malformed fields."""

        def _optional_str(key: str) -> Optional[str]:
            value = record.get(key)
            return value if isinstance(value, str) else None

        def _items(key: str) -> List[StorableObject]:
            values = record.get(key) or []
            if isinstance(values, dict):
                values = list(values.values())
            if not isinstance(values, list):
                return []
            return [StorableObject(name=v) for v in values if isinstance(v, str)]

        dates = []
        raw_dates = record.get("dates") or []
        if isinstance(raw_dates, list):
            for raw in raw_dates:
                try:
                    dates.append(date.fromisoformat(raw))
                except (TypeError, ValueError):
                    continue

        try:
            storage_type = StorageType(record.get("storageType"))
        except ValueError:
            storage_type = StorageType.IN_HOUSE
        try:
            rent_type = RentType(record.get("rentType"))
        except ValueError:
            rent_type = RentType.SUMMER

        return cls(
            uid=_optional_str("uid"),
            listing_id=_optional_str("listingID"),
            location=_optional_str("location"),
            storage_type=storage_type,
            square_feet=_optional_str("squareFeet"),
            rent_type=rent_type,
            rent=_optional_str("rent"),
            dates=dates,
            restricted_items=_items("restrictedItems"),
            allowed_items=_items("allowedItems"),
            description=_optional_str("description") or "",
        )


@dataclass(frozen=True)
class Card:
    """A tokenized card source attached to a payment customer."""

    id: str
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None


@dataclass
class Customer:
    id: str
    default_source: Optional[Card] = None
    sources: List[Card] = field(default_factory=list)
