"""
Pydantic schemas for the MyDorm BFF API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class CardPayload(BaseModel):
    id: str = Field(..., min_length=1)
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None


class ChargeRequest(BaseModel):
    source: str = Field(..., min_length=1)
    amount: int = Field(..., ge=0)


class SourceRequest(BaseModel):
    source: CardPayload


class StatusResponse(BaseModel):
    status: Literal["ok"]


class CustomerResponse(BaseModel):
    id: str
    default_source: Optional[CardPayload] = None
    sources: list[CardPayload]


class StorableObjectResponse(BaseModel):
    name: str


class StorableObjectsResponse(BaseModel):
    objects: list[StorableObjectResponse]


class StorageCompanyResponse(BaseModel):
    name: str
    price_index: dict[str, float]
    pickup_times: list[str]
    dropoff_times: list[str]
    image_path: str


class StorageCompaniesResponse(BaseModel):
    companies: list[StorageCompanyResponse]


class RecordFieldsRequest(BaseModel):
    fields: dict[str, str]


class HealthResponse(BaseModel):
    payments: str
    records: str
    blobs: str


class ErrorResponse(BaseModel):
    error: str
    detail: str
