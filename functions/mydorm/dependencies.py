"""
Dependency wiring for the FastAPI app.

`build_services` is the composition root: it constructs every component once
and the app owns the result on `app.state.services`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import firebase_admin
from fastapi import Request
from firebase_admin import credentials

from mydorm.blobs import (
    BlobCache,
    BlobStore,
    FirebaseBlobStore,
    InMemoryBlobStore,
    load_default_image,
)
from mydorm.config import Settings, get_settings
from mydorm.dispatcher import Dispatcher
from mydorm.payments import PaymentGateway, create_payment_gateway
from mydorm.records import (
    FirebaseRecordBackend,
    InMemoryRecordBackend,
    RecordBackend,
    RecordStore,
)

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "mydorm"


@dataclass
class Services:
    settings: Settings
    dispatcher: Dispatcher
    payments: PaymentGateway
    records: RecordStore
    blobs: BlobCache
    record_backend: RecordBackend
    blob_store: BlobStore

    def close(self) -> None:
        self.dispatcher.shutdown()


def init_firebase_app(settings: Settings) -> firebase_admin.App:
    """Initializes (or reuses) the named Firebase app for this service."""
    try:
        return firebase_admin.get_app(FIREBASE_APP_NAME)
    except ValueError:
        pass
    credential = (
        credentials.Certificate(settings.firebase_credentials_path)
        if settings.firebase_credentials_path
        else credentials.ApplicationDefault()
    )
    options = {}
    if settings.firebase_database_url:
        options["databaseURL"] = settings.firebase_database_url
    if settings.firebase_storage_bucket:
        options["storageBucket"] = settings.firebase_storage_bucket
    return firebase_admin.initialize_app(credential, options, name=FIREBASE_APP_NAME)


def build_services(
    settings: Optional[Settings] = None,
    *,
    record_backend: Optional[RecordBackend] = None,
    blob_store: Optional[BlobStore] = None,
) -> Services:
    settings = settings or get_settings()
    dispatcher = Dispatcher(io_workers=settings.io_workers)

    firebase_app = None
    if (record_backend is None and settings.use_firebase_records) or (
        blob_store is None and settings.use_firebase_blobs
    ):
        firebase_app = init_firebase_app(settings)

    if record_backend is None:
        if settings.use_firebase_records:
            record_backend = FirebaseRecordBackend(app=firebase_app)
        elif settings.demo_seed_path:
            record_backend = InMemoryRecordBackend.from_seed_file(settings.demo_seed_path)
        else:
            record_backend = InMemoryRecordBackend()

    if blob_store is None:
        if settings.use_firebase_blobs:
            blob_store = FirebaseBlobStore(
                settings.firebase_storage_bucket, app=firebase_app
            )
        else:
            blob_store = InMemoryBlobStore()

    logger.info(
        "Services: records=%s blobs=%s payments=%s",
        record_backend.__class__.__name__,
        blob_store.__class__.__name__,
        "http" if settings.payment_base_url else "demo",
    )
    return Services(
        settings=settings,
        dispatcher=dispatcher,
        payments=create_payment_gateway(settings, dispatcher),
        records=RecordStore(record_backend, dispatcher),
        blobs=BlobCache(
            blob_store,
            dispatcher,
            load_default_image(settings.default_image_path),
            max_size=settings.blob_max_bytes,
        ),
        record_backend=record_backend,
        blob_store=blob_store,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_payment_gateway(request: Request) -> PaymentGateway:
    return get_services(request).payments


def get_record_store(request: Request) -> RecordStore:
    return get_services(request).records


def get_blob_cache(request: Request) -> BlobCache:
    return get_services(request).blobs
