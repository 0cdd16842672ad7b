"""
HTTP routes for the MyDorm BFF.

Handlers are plain functions (run in FastAPI's threadpool) that wait on the
component futures. Typed errors raised by those futures are turned into
responses by the handlers registered in `mydorm.app`.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, Response

from mydorm.blobs import BlobCache, BlobNamespace, normalize_blob_name
from mydorm.dependencies import (
    Services,
    get_blob_cache,
    get_payment_gateway,
    get_record_store,
    get_services,
)
from mydorm.payments import DemoModeGateway, PaymentGateway
from mydorm.records import RecordStore
from mydorm.schemas import (
    CardPayload,
    ChargeRequest,
    CustomerResponse,
    ErrorResponse,
    HealthResponse,
    RecordFieldsRequest,
    SourceRequest,
    StatusResponse,
    StorableObjectResponse,
    StorableObjectsResponse,
    StorageCompaniesResponse,
    StorageCompanyResponse,
)
from shared.types import Card

logger = logging.getLogger(__name__)

router = APIRouter(
    responses={
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    }
)


def _card(payload: CardPayload) -> Card:
    return Card(**payload.model_dump())


def _card_payload(card: Card | None) -> CardPayload | None:
    if card is None:
        return None
    return CardPayload(
        id=card.id,
        brand=card.brand,
        last4=card.last4,
        exp_month=card.exp_month,
        exp_year=card.exp_year,
    )


@router.post("/payments/charge", response_model=StatusResponse)
def complete_charge(
    payload: ChargeRequest, gateway: PaymentGateway = Depends(get_payment_gateway)
):
    gateway.complete_charge(payload.source, payload.amount).result()
    logger.info("Charged %s to source %s", payload.amount, payload.source)
    return StatusResponse(status="ok")


@router.post("/payments/customer", response_model=CustomerResponse)
def retrieve_customer(gateway: PaymentGateway = Depends(get_payment_gateway)):
    customer = gateway.retrieve_customer().result()
    return CustomerResponse(
        id=customer.id,
        default_source=_card_payload(customer.default_source),
        sources=[_card_payload(card) for card in customer.sources],
    )


@router.post("/payments/customer/default_source", response_model=StatusResponse)
def select_default_source(
    payload: SourceRequest, gateway: PaymentGateway = Depends(get_payment_gateway)
):
    gateway.select_default_customer_source(_card(payload.source)).result()
    return StatusResponse(status="ok")


@router.post("/payments/customer/sources", response_model=StatusResponse)
def attach_source(
    payload: SourceRequest, gateway: PaymentGateway = Depends(get_payment_gateway)
):
    gateway.attach_source_to_customer(_card(payload.source)).result()
    return StatusResponse(status="ok")


@router.get("/catalog/objects", response_model=StorableObjectsResponse)
def list_storable_objects(records: RecordStore = Depends(get_record_store)):
    return StorableObjectsResponse(
        objects=[
            StorableObjectResponse(name=obj.name) for obj in records.storable_objects
        ]
    )


@router.get("/catalog/companies", response_model=StorageCompaniesResponse)
def list_companies(services: Services = Depends(get_services)):
    image_prefix = f"{services.settings.api_prefix}/images/{BlobNamespace.COMPANY_IMAGES.value}"
    companies = [
        StorageCompanyResponse(
            name=company.name,
            price_index=company.price_index,
            pickup_times=[t.isoformat() for t in company.pickup_times],
            dropoff_times=[t.isoformat() for t in company.dropoff_times],
            image_path=f"{image_prefix}/{quote(normalize_blob_name(company.name))}",
        )
        for company in services.records.storage_companies
    ]
    return StorageCompaniesResponse(companies=companies)


@router.get("/images/{namespace}/{name:path}")
def get_image(
    namespace: BlobNamespace, name: str, blobs: BlobCache = Depends(get_blob_cache)
):
    image = blobs.get_blob(name, namespace).result()
    return Response(content=image.data, media_type=image.media_type)


@router.put("/users/{uid}", response_model=StatusResponse)
def create_user(
    uid: str,
    payload: RecordFieldsRequest,
    records: RecordStore = Depends(get_record_store),
):
    records.create_user(uid, payload.fields).result()
    return StatusResponse(status="ok")


@router.put("/orders/{uid}", response_model=StatusResponse)
def create_order(
    uid: str,
    payload: RecordFieldsRequest,
    records: RecordStore = Depends(get_record_store),
):
    records.create_order(uid, payload.fields).result()
    return StatusResponse(status="ok")


@router.get("/health", response_model=HealthResponse)
def health(services: Services = Depends(get_services)):
    return HealthResponse(
        payments="demo" if isinstance(services.payments, DemoModeGateway) else "http",
        records=services.record_backend.__class__.__name__,
        blobs=services.blob_store.__class__.__name__,
    )
