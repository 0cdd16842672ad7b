import copy
import io
import unittest
from unittest.mock import MagicMock

import requests
from fastapi.testclient import TestClient
from PIL import Image

from mydorm.app import create_app
from mydorm.blobs import InMemoryBlobStore
from mydorm.config import Settings
from mydorm.dependencies import build_services
from mydorm.payments import HttpPaymentGateway
from mydorm.records import InMemoryRecordBackend


def _jpeg(color=(255, 0, 0)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (2, 2), color).save(buffer, format="JPEG")
    return buffer.getvalue()


SEED = {
    "storableobjects": {"a": "Mini Fridge", "b": 7},
    "Companies": {
        "c1": {
            "name": "Dorm Storage",
            "Price Index": {"i1": {"name": "Box", "small": {"price": 5}}},
            "Pickup Times": ["2017-05-01T10:00:00"],
        },
        "c2": {"name": "Broken"},
    },
}


class BffApiTests(unittest.TestCase):
    def setUp(self):
        settings = Settings(
            _env_file=None,
            stripe_publishable_key="pk_test_123",
            use_in_memory_backends=True,
        )
        self.backend = InMemoryRecordBackend(tree=copy.deepcopy(SEED))
        self.image = _jpeg()
        self.blob_store = InMemoryBlobStore(objects={"dormstorage.jpg": self.image})
        self.services = build_services(
            settings, record_backend=self.backend, blob_store=self.blob_store
        )
        self.addCleanup(self.services.close)
        self.client = TestClient(create_app(services=self.services))
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)
        self.services.dispatcher.drain()

    def test_health_reports_demo_mode(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                "payments": "demo",
                "records": "InMemoryRecordBackend",
                "blobs": "InMemoryBlobStore",
            },
        )

    def test_catalog_objects(self):
        response = self.client.get("/api/catalog/objects")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"objects": [{"name": "Mini Fridge"}]})

    def test_catalog_follows_record_updates(self):
        self.backend.set("storableobjects/c", "Desk")
        self.services.dispatcher.drain()
        names = [o["name"] for o in self.client.get("/api/catalog/objects").json()["objects"]]
        self.assertEqual(names, ["Mini Fridge", "Desk"])

    def test_catalog_companies(self):
        response = self.client.get("/api/catalog/companies")
        self.assertEqual(response.status_code, 200)
        companies = response.json()["companies"]
        self.assertEqual(len(companies), 1)
        company = companies[0]
        self.assertEqual(company["name"], "Dorm Storage")
        self.assertEqual(company["price_index"], {"Box": 5.0})
        self.assertEqual(company["pickup_times"], ["2017-05-01T10:00:00"])
        self.assertEqual(company["image_path"], "/api/images/companies/dormstorage")

    def test_company_image(self):
        response = self.client.get("/api/images/companies/Dorm Storage")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-type"], "image/jpeg")
        self.assertEqual(response.content, self.image)

    def test_company_image_path_serves_the_company_image(self):
        slashed = _jpeg((0, 0, 255))
        self.blob_store.objects["a/bstorage.jpg"] = slashed
        self.backend.set(
            "Companies/c3",
            {
                "name": "A/B Storage",
                "Price Index": {"i1": {"name": "Box", "s": {"price": 3}}},
            },
        )
        self.services.dispatcher.drain()

        companies = self.client.get("/api/catalog/companies").json()["companies"]
        paths = {c["name"]: c["image_path"] for c in companies}
        self.assertEqual(paths["A/B Storage"], "/api/images/companies/a/bstorage")

        for name, expected in [("Dorm Storage", self.image), ("A/B Storage", slashed)]:
            with self.subTest(name=name):
                response = self.client.get(paths[name])
                self.assertEqual(response.status_code, 200)
                self.assertEqual(response.content, expected)

    def test_missing_image_serves_default(self):
        response = self.client.get("/api/images/objects/Unknown Thing")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, self.services.blobs.default_image.data)

    def test_unknown_image_namespace(self):
        response = self.client.get("/api/images/avatars/me")
        self.assertEqual(response.status_code, 422)

    def test_demo_customer_flow(self):
        response = self.client.post("/api/payments/customer")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(), {"id": "cus_test", "default_source": None, "sources": []}
        )

        card = {"id": "card_1", "brand": "Visa", "last4": "4242"}
        response = self.client.post("/api/payments/customer/sources", json={"source": card})
        self.assertEqual(response.json(), {"status": "ok"})

        customer = self.client.post("/api/payments/customer").json()
        self.assertEqual(customer["default_source"]["id"], "card_1")
        self.assertEqual([s["id"] for s in customer["sources"]], ["card_1"])

    def test_demo_charge_is_configuration_error(self):
        response = self.client.post(
            "/api/payments/charge", json={"source": "card_1", "amount": 100}
        )
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["error"], "ConfigurationError")

    def test_error_body_matches_error_schema(self):
        response = self.client.post(
            "/api/payments/charge", json={"source": "card_1", "amount": 100}
        )
        self.assertEqual(response.status_code, 503)
        self.assertEqual(set(response.json()), {"error", "detail"})

        schema = self.client.get("/openapi.json").json()
        self.assertIn("ErrorResponse", schema["components"]["schemas"])
        charge_responses = schema["paths"]["/api/payments/charge"]["post"]["responses"]
        for status in ("502", "503", "504"):
            self.assertEqual(
                charge_responses[status]["content"]["application/json"]["schema"],
                {"$ref": "#/components/schemas/ErrorResponse"},
            )

    def test_charge_backend_failure(self):
        session = MagicMock()
        session.post.return_value = MagicMock(status_code=500)
        self.services.payments = HttpPaymentGateway(
            "https://x", "pk_test_123", self.services.dispatcher, session=session
        )

        response = self.client.post(
            "/api/payments/charge", json={"source": "card_1", "amount": 100}
        )

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["error"], "PaymentError")
        self.assertIn("500", response.json()["detail"])

    def test_charge_timeout(self):
        session = MagicMock()
        session.post.side_effect = requests.Timeout("slow")
        self.services.payments = HttpPaymentGateway(
            "https://x", "pk_test_123", self.services.dispatcher, session=session
        )

        response = self.client.post(
            "/api/payments/charge", json={"source": "card_1", "amount": 100}
        )

        self.assertEqual(response.status_code, 504)

    def test_create_user_and_order(self):
        response = self.client.put("/api/users/u1", json={"fields": {"name": "Ana"}})
        self.assertEqual(response.json(), {"status": "ok"})
        response = self.client.put("/api/orders/u1", json={"fields": {"item": "Box"}})
        self.assertEqual(response.json(), {"status": "ok"})

        self.assertEqual(self.backend.get("users/u1"), {"name": "Ana"})
        self.assertEqual(self.backend.get("order/u1"), {"item": "Box"})


if __name__ == "__main__":
    unittest.main()
