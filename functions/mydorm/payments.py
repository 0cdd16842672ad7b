"""
Payment gateway: bridges checkout actions to the payment backend.

Two strategies share one interface. `HttpPaymentGateway` talks to the
configured backend; `DemoModeGateway` keeps customer state in memory so the
app stays usable when no backend URL is configured.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Any, Optional, Protocol

import requests
from dacite import Config, DaciteError, from_dict

from mydorm.config import Settings
from mydorm.dispatcher import Dispatcher
from mydorm.errors import ConfigurationError, DecodeError, PaymentError
from shared.constants import (
    DEMO_CUSTOMER_ID,
    PAYMENT_REQUEST_TIMEOUT,
    PUBLISHABLE_KEY_PLACEHOLDER_MARKER,
)
from shared.types import Card, Customer

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    """Operations the checkout flow needs from the payment backend."""

    def complete_charge(self, source_id: str, amount: int) -> Future:
        ...

    def retrieve_customer(self) -> Future:
        ...

    def select_default_customer_source(self, source: Card) -> Future:
        ...

    def attach_source_to_customer(self, source: Card) -> Future:
        ...


def require_publishable_key(key: Optional[str]) -> str:
    """Rejects a missing key or one still holding the placeholder marker."""
    if not key or PUBLISHABLE_KEY_PLACEHOLDER_MARKER in key:
        raise ConfigurationError(
            "Set STRIPE_PUBLISHABLE_KEY to your account's test publishable key"
        )
    return key


def _decode_card(payload: Any) -> Card:
    if not isinstance(payload, dict):
        raise DecodeError("retrieve_customer", "card is not an object")
    return from_dict(Card, payload, config=Config(check_types=True))


def decode_customer(payload: Any) -> Customer:
    """
    Decodes a customer response body.

    `sources` may be a plain list or a list object with a `data` array;
    `default_source` may be a card object or the id of one of the sources.
    """
    operation = "retrieve_customer"
    if not isinstance(payload, dict):
        raise DecodeError(operation, "customer body is not an object")
    customer_id = payload.get("id")
    if not isinstance(customer_id, str):
        raise DecodeError(operation, "customer id missing")

    raw_sources = payload.get("sources") or []
    if isinstance(raw_sources, dict):
        raw_sources = raw_sources.get("data") or []
    if not isinstance(raw_sources, list):
        raise DecodeError(operation, "customer sources is not a list")

    try:
        sources = [_decode_card(raw) for raw in raw_sources]
        raw_default = payload.get("default_source")
        if raw_default is None:
            default_source = None
        elif isinstance(raw_default, str):
            default_source = next(
                (card for card in sources if card.id == raw_default),
                Card(id=raw_default),
            )
        else:
            default_source = _decode_card(raw_default)
    except DaciteError as exc:
        raise DecodeError(operation, f"malformed card: {exc}", cause=exc) from exc

    return Customer(id=customer_id, default_source=default_source, sources=sources)


class HttpPaymentGateway:
    """Delegates every operation to the payment backend over HTTP."""

    def __init__(
        self,
        base_url: str,
        publishable_key: Optional[str],
        dispatcher: Dispatcher,
        *,
        timeout: float = PAYMENT_REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.publishable_key = publishable_key
        self.timeout = timeout
        self._dispatcher = dispatcher
        self._session = session or requests.Session()

    def _post(self, operation: str, path: str, body: Optional[dict] = None):
        url = f"{self.base_url}/{path}"
        try:
            response = self._session.post(url, json=body, timeout=self.timeout)
        except requests.Timeout as exc:
            logger.warning("%s timed out after %ss", operation, self.timeout)
            raise PaymentError(
                operation, "request timed out", timed_out=True, cause=exc
            ) from exc
        except requests.RequestException as exc:
            logger.warning("%s transport error: %s", operation, exc)
            raise PaymentError(operation, str(exc), cause=exc) from exc

        if response.status_code != 200:
            logger.warning("%s returned HTTP %s", operation, response.status_code)
            cause = requests.HTTPError(
                f"{response.status_code} for {url}", response=response
            )
            raise PaymentError(
                operation,
                f"backend returned HTTP {response.status_code}",
                status_code=response.status_code,
                cause=cause,
            )
        return response

    def complete_charge(self, source_id: str, amount: int) -> Future:
        body = {"source": source_id, "amount": amount}
        return self._dispatcher.run_io(
            lambda: self._post("complete_charge", "charge", body),
            then=lambda _response: None,
        )

    def retrieve_customer(self) -> Future:
        try:
            require_publishable_key(self.publishable_key)
        except ConfigurationError as exc:
            return self._dispatcher.failed(exc)

        def _fetch():
            response = self._post("retrieve_customer", "customer")
            try:
                return response.json()
            except ValueError as exc:
                raise DecodeError(
                    "retrieve_customer", "body is not JSON", cause=exc
                ) from exc

        return self._dispatcher.run_io(_fetch, then=decode_customer)

    def select_default_customer_source(self, source: Card) -> Future:
        return self._dispatcher.run_io(
            lambda: self._post(
                "select_default_customer_source",
                "customer/default_source",
                {"source": source.id},
            ),
            then=lambda _response: None,
        )

    def attach_source_to_customer(self, source: Card) -> Future:
        return self._dispatcher.run_io(
            lambda: self._post(
                "attach_source_to_customer",
                "customer/sources",
                {"source": source.id},
            ),
            then=lambda _response: None,
        )


class DemoModeGateway:
    """
    Keeps a single fake customer in memory. Used when no payment backend URL
    is configured; never touches the network.
    """

    def __init__(self, publishable_key: Optional[str], dispatcher: Dispatcher):
        self.publishable_key = publishable_key
        self._dispatcher = dispatcher
        self._default_source: Optional[Card] = None
        self._sources: list[Card] = []

    def complete_charge(self, source_id: str, amount: int) -> Future:
        return self._dispatcher.failed(ConfigurationError("baseURL not set"))

    def retrieve_customer(self) -> Future:
        try:
            require_publishable_key(self.publishable_key)
        except ConfigurationError as exc:
            return self._dispatcher.failed(exc)
        return self._dispatcher.call_soon(
            lambda: Customer(
                id=DEMO_CUSTOMER_ID,
                default_source=self._default_source,
                sources=list(self._sources),
            )
        )

    def select_default_customer_source(self, source: Card) -> Future:
        def _select():
            self._default_source = source

        return self._dispatcher.call_soon(_select)

    def attach_source_to_customer(self, source: Card) -> Future:
        def _attach():
            self._sources.append(source)
            self._default_source = source

        return self._dispatcher.call_soon(_attach)


def create_payment_gateway(
    settings: Settings,
    dispatcher: Dispatcher,
    session: Optional[requests.Session] = None,
) -> PaymentGateway:
    """Selects the gateway strategy from whether a backend URL is configured."""
    if not settings.payment_base_url:
        logger.info("No payment backend configured; using demo gateway")
        return DemoModeGateway(settings.stripe_publishable_key, dispatcher)
    return HttpPaymentGateway(
        settings.payment_base_url,
        settings.stripe_publishable_key,
        dispatcher,
        timeout=settings.payment_timeout_seconds,
        session=session,
    )
