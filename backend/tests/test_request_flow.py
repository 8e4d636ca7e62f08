"""API flow: wizard submission, payment attempts, lifecycle and the Stripe webhook."""

import os
import unittest
import uuid
from datetime import datetime, timedelta
from itertools import count
from unittest.mock import patch

from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import CurrentUser, get_current_user
from app.core.config import get_settings
from app.core.dependencies import get_db
from app.main import app
from app.models.request import (
    AuditLog,
    Base,
    CompanyAssociate,
    CompanyRequest,
    Payment,
    PublicTracking,
    ServiceRequest,
)
from app.services.errors import ExternalServiceError
from app.services.payment_service import PAYMENT_ERROR_MESSAGE, CheckoutSession, get_payment_gateway
from app.utils.rate_limit import rate_limiter

CLIENT_HEADERS = {"X-Test-Role": "CLIENT", "X-Test-Sub": "client-1"}
OTHER_CLIENT_HEADERS = {"X-Test-Role": "CLIENT", "X-Test-Sub": "client-2"}
ADMIN_HEADERS = {"X-Test-Role": "ADMIN", "X-Test-Sub": "admin-1"}


def _wizard_payload(structure_type="sarl", city="Abidjan", services=None, associates=None):
    return {
        "identification": {
            "structure_type": structure_type,
            "company_name": "Baobab Services",
            "capital": "1000000",
            "activities": "Conseil",
        },
        "location": {"city": city, "commune": "Cocody", "neighborhood": "Riviera 3"},
        "manager": {"full_name": "Awa Koné", "phone": "0701020304", "email": "awa@example.ci"},
        "associates": associates
        or [
            {"full_name": "Awa Koné", "phone": "0701020304", "percentage": 60, "is_manager": True},
            {"full_name": "Yao Kouassi", "phone": "0505050505", "percentage": 40},
        ],
        "additional_services": services or [],
    }


class StubGateway:
    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.calls = []
        self._ids = count(1)

    def initiate(self, **kwargs):
        self.calls.append(kwargs)
        if self.fail:
            raise ExternalServiceError(PAYMENT_ERROR_MESSAGE)
        session_id = f"cs_test_{next(self._ids)}"
        return CheckoutSession(session_id=session_id, payment_url=f"https://checkout.stripe.test/{session_id}")


class RequestFlowTestBase(unittest.TestCase):
    env = {}

    def setUp(self):
        self._env = patch.dict(os.environ, self.env, clear=False)
        self._env.start()
        get_settings.cache_clear()
        rate_limiter.reset()
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self.gateway = StubGateway()

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        def override_get_current_user(request: Request):
            return CurrentUser(
                id=request.headers.get("x-test-sub", "client-1"),
                role=request.headers.get("x-test-role", "CLIENT"),
                email="tests@example.com",
            )

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_current_user] = override_get_current_user
        app.dependency_overrides[get_payment_gateway] = lambda: self.gateway
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        app.dependency_overrides.clear()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()
        self._env.stop()
        get_settings.cache_clear()

    def _submit_company(self, **kwargs):
        resp = self.client.post("/api/v1/requests/company", json=_wizard_payload(**kwargs), headers=CLIENT_HEADERS)
        self.assertEqual(resp.status_code, 201, resp.text)
        return resp.json()

    def _actions(self, entity_id):
        db = self.SessionLocal()
        try:
            rows = db.execute(
                select(AuditLog.action).where(AuditLog.entity_id == entity_id).order_by(AuditLog.timestamp)
            ).scalars()
            return list(rows)
        finally:
            db.close()

    def _payments(self):
        db = self.SessionLocal()
        try:
            return db.execute(select(Payment)).scalars().all()
        finally:
            db.close()


class CompanySubmissionTests(RequestFlowTestBase):
    def test_capital_submission_opens_checkout(self):
        body = self._submit_company(city="Abidjan - Cocody")

        self.assertFalse(body["quote_required"])
        self.assertEqual(body["payment_url"], "https://checkout.stripe.test/cs_test_1")
        self.assertIsNone(body["payment_error"])
        request = body["request"]
        self.assertEqual(request["estimated_price"], 180000)
        self.assertEqual(request["status"], "pending")
        self.assertEqual(request["payment_status"], "pending")
        self.assertRegex(request["tracking_number"], r"^CE-\d{6}-[0-9A-Z]{6}$")

        self.assertEqual(len(self.gateway.calls), 1)
        call = self.gateway.calls[0]
        self.assertEqual(call["amount"], 180000)
        self.assertEqual(call["currency"], "XOF")
        self.assertEqual(call["request_type"], "company")

        payments = self._payments()
        self.assertEqual(len(payments), 1)
        self.assertEqual(payments[0].status, "pending")
        self.assertEqual(payments[0].transaction_id, "cs_test_1")

        actions = self._actions(request["id"])
        self.assertIn("REQUEST_CREATED", actions)
        self.assertEqual(actions.count("ASSOCIATE_ADDED"), 2)
        self.assertIn("PAYMENT_INITIATED", actions)

    def test_submission_writes_associates_and_tracking_entry(self):
        body = self._submit_company()
        db = self.SessionLocal()
        try:
            associates = db.execute(select(CompanyAssociate)).scalars().all()
            entries = db.execute(select(PublicTracking)).scalars().all()
        finally:
            db.close()
        self.assertEqual(len(associates), 2)
        self.assertEqual(len(entries), 1)
        self.assertEqual(str(entries[0].request_id), body["request"]["id"])
        self.assertEqual(entries[0].phone, "0701020304")

    def test_sole_owner_structure_records_unique_owner(self):
        self._submit_company(
            structure_type="sasu",
            associates=[{"full_name": "Awa Koné", "phone": "0701020304"}],
        )
        db = self.SessionLocal()
        try:
            associate = db.execute(select(CompanyAssociate)).scalar_one()
        finally:
            db.close()
        self.assertTrue(associate.is_unique_owner)
        self.assertEqual(float(associate.percentage), 100.0)

    def test_sole_owner_structure_with_two_associates_is_rejected(self):
        resp = self.client.post(
            "/api/v1/requests/company",
            json=_wizard_payload(structure_type="ei"),
            headers=CLIENT_HEADERS,
        )
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(resp.json()["fields"], ["associates"])
        self.assertEqual(self.gateway.calls, [])

    def test_interior_submission_uses_interior_tariff(self):
        body = self._submit_company(city="Daloa")
        self.assertEqual(body["request"]["estimated_price"], 150000)

    def test_additional_service_requires_quote_and_skips_payment(self):
        body = self._submit_company(city="Daloa", services=["immobilier"])
        self.assertTrue(body["quote_required"])
        self.assertIsNone(body["payment_url"])
        self.assertIsNone(body["request"]["estimated_price"])
        self.assertEqual(self.gateway.calls, [])
        self.assertEqual(self._payments(), [])

    def test_fixed_tariff_cannot_be_requoted(self):
        request = self._submit_company(city="Abidjan")["request"]
        resp = self.client.post(
            f"/api/v1/admin/requests/company/{request['id']}/quote",
            json={"amount": 5},
            headers=ADMIN_HEADERS,
        )
        self.assertEqual(resp.status_code, 409)
        detail = self.client.get(f"/api/v1/requests/company/{request['id']}", headers=CLIENT_HEADERS).json()
        self.assertEqual(detail["request"]["estimated_price"], 180000)

    def test_gateway_failure_keeps_request_and_records_failed_attempt(self):
        self.gateway.fail = True
        body = self._submit_company()

        self.assertEqual(body["payment_error"], PAYMENT_ERROR_MESSAGE)
        self.assertIsNone(body["payment_url"])
        self.assertEqual(body["request"]["status"], "pending")

        payments = self._payments()
        self.assertEqual(len(payments), 1)
        self.assertEqual(payments[0].status, "failed")
        self.assertIn("PAYMENT_INITIATION_FAILED", self._actions(body["request"]["id"]))

        # The owner can retry from the dashboard.
        self.gateway.fail = False
        retry = self.client.post(f"/api/v1/requests/company/{body['request']['id']}/pay", headers=CLIENT_HEADERS)
        self.assertEqual(retry.status_code, 200, retry.text)
        self.assertTrue(retry.json()["payment_url"].startswith("https://checkout.stripe.test/"))

    def test_missing_wizard_fields_are_listed(self):
        payload = _wizard_payload()
        payload["manager"]["email"] = ""
        payload["location"]["commune"] = ""
        resp = self.client.post("/api/v1/requests/company", json=payload, headers=CLIENT_HEADERS)
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(resp.json()["fields"], ["location.commune", "manager.email"])

    def test_validate_step_endpoint(self):
        payload = {"step": 1, "data": _wizard_payload(structure_type="sarlu")}
        resp = self.client.post("/api/v1/intake/company/validate-step", json=payload)
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["can_advance"])
        self.assertEqual(body["next_step"], 2)
        self.assertTrue(body["single_associate"])

    def test_price_endpoint(self):
        resp = self.client.post("/api/v1/intake/company/price", json={"city": "Abidjan", "additional_services": []})
        self.assertEqual(resp.json(), {"amount": 180000, "currency": "XOF", "quote_required": False})
        resp = self.client.post(
            "/api/v1/intake/company/price",
            json={"city": "Daloa", "additional_services": ["transport"]},
        )
        self.assertEqual(resp.json()["quote_required"], True)


class ServiceRequestTests(RequestFlowTestBase):
    def _submit_service(self):
        resp = self.client.post(
            "/api/v1/requests/service",
            json={
                "service_type": "dfe",
                "contact_name": "Yao Kouassi",
                "phone": "0505050505",
                "email": "yao@example.ci",
                "service_details": {"company": "Baobab"},
            },
            headers=CLIENT_HEADERS,
        )
        self.assertEqual(resp.status_code, 201, resp.text)
        return resp.json()["request"]

    def test_service_request_waits_for_quote(self):
        request = self._submit_service()
        self.assertEqual(request["status"], "pending_quote")
        self.assertIsNone(request["estimated_price"])
        self.assertTrue(request["quote_required"])
        self.assertTrue(request["tracking_number"].startswith("SV-"))

        pay = self.client.post(f"/api/v1/requests/service/{request['id']}/pay", headers=CLIENT_HEADERS)
        self.assertEqual(pay.status_code, 422)

    def test_quote_then_pay(self):
        request = self._submit_service()
        quoted = self.client.post(
            f"/api/v1/admin/requests/service/{request['id']}/quote",
            json={"amount": 75000},
            headers=ADMIN_HEADERS,
        )
        self.assertEqual(quoted.status_code, 200, quoted.text)
        self.assertEqual(quoted.json()["request"]["status"], "pending")
        self.assertEqual(quoted.json()["request"]["estimated_price"], 75000)

        pay = self.client.post(f"/api/v1/requests/service/{request['id']}/pay", headers=CLIENT_HEADERS)
        self.assertEqual(pay.status_code, 200)
        self.assertEqual(pay.json()["amount"], 75000)


class LifecycleTests(RequestFlowTestBase):
    def test_sequential_admin_transitions_are_visible_to_owner(self):
        request_id = self._submit_company()["request"]["id"]

        for status in ("in_progress", "completed"):
            resp = self.client.post(
                f"/api/v1/admin/requests/company/{request_id}/transition",
                json={"new_status": status},
                headers=ADMIN_HEADERS,
            )
            self.assertEqual(resp.status_code, 200, resp.text)

        detail = self.client.get(f"/api/v1/requests/company/{request_id}", headers=CLIENT_HEADERS)
        self.assertEqual(detail.status_code, 200)
        body = detail.json()
        self.assertEqual(body["request"]["status"], "completed")
        self.assertIsNotNone(body["request"]["closed_at"])
        self.assertIsNone(body["audit_logs"])
        self.assertEqual(self._actions(request_id).count("STATUS_CHANGE"), 2)

    def test_client_cannot_transition(self):
        request_id = self._submit_company()["request"]["id"]
        resp = self.client.post(
            f"/api/v1/admin/requests/company/{request_id}/transition",
            json={"new_status": "in_progress"},
            headers=CLIENT_HEADERS,
        )
        self.assertEqual(resp.status_code, 403)
        detail = self.client.get(f"/api/v1/requests/company/{request_id}", headers=CLIENT_HEADERS)
        self.assertEqual(detail.json()["request"]["status"], "pending")

    def test_disallowed_transition_is_conflict(self):
        request_id = self._submit_company()["request"]["id"]
        resp = self.client.post(
            f"/api/v1/admin/requests/company/{request_id}/transition",
            json={"new_status": "completed"},
            headers=ADMIN_HEADERS,
        )
        self.assertEqual(resp.status_code, 409)

    def test_feedback_after_completion(self):
        request_id = self._submit_company()["request"]["id"]
        early = self.client.post(
            f"/api/v1/requests/company/{request_id}/feedback",
            json={"rating": 5},
            headers=CLIENT_HEADERS,
        )
        self.assertEqual(early.status_code, 409)

        for status in ("in_progress", "completed"):
            self.client.post(
                f"/api/v1/admin/requests/company/{request_id}/transition",
                json={"new_status": status},
                headers=ADMIN_HEADERS,
            )
        resp = self.client.post(
            f"/api/v1/requests/company/{request_id}/feedback",
            json={"rating": 4, "review": "Rapide et clair"},
            headers=CLIENT_HEADERS,
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertEqual(resp.json()["request"]["client_rating"], 4)

    def test_other_client_gets_not_found(self):
        request_id = self._submit_company()["request"]["id"]
        resp = self.client.get(f"/api/v1/requests/company/{request_id}", headers=OTHER_CLIENT_HEADERS)
        self.assertEqual(resp.status_code, 404)
        malformed = self.client.get("/api/v1/requests/company/not-a-uuid", headers=CLIENT_HEADERS)
        self.assertEqual(malformed.status_code, 404)

    def test_admin_detail_includes_audit_trail(self):
        request_id = self._submit_company()["request"]["id"]
        detail = self.client.get(f"/api/v1/requests/company/{request_id}", headers=ADMIN_HEADERS)
        body = detail.json()
        self.assertIsNotNone(body["audit_logs"])
        self.assertEqual(len(body["associates"]), 2)
        audit = self.client.get(f"/api/v1/admin/requests/company/{request_id}/audit", headers=ADMIN_HEADERS)
        self.assertEqual(audit.status_code, 200)
        self.assertIn("REQUEST_CREATED", [row["action"] for row in audit.json()])

    def test_owner_and_admin_listings(self):
        self._submit_company()
        self._submit_company(city="Daloa", services=["transport"])
        mine = self.client.get("/api/v1/requests", headers=CLIENT_HEADERS).json()
        self.assertEqual(mine["total"], 2)
        other = self.client.get("/api/v1/requests", headers=OTHER_CLIENT_HEADERS).json()
        self.assertEqual(other["total"], 0)

        forbidden = self.client.get("/api/v1/admin/requests", headers=CLIENT_HEADERS)
        self.assertEqual(forbidden.status_code, 403)

        filtered = self.client.get(
            "/api/v1/admin/requests",
            params={"kind": "company", "q": "baobab"},
            headers=ADMIN_HEADERS,
        ).json()
        self.assertEqual(filtered["total"], 2)


    def test_listings_are_newest_first_across_kinds(self):
        start = datetime(2026, 10, 1, 9, 0)
        db = self.SessionLocal()
        common = {"user_id": "client-1", "contact_name": "Awa", "phone": "0701020304", "email": "awa@example.ci"}
        db.add_all(
            [
                CompanyRequest(
                    tracking_number="CE-261001-AAAAA1",
                    structure_type="sarl",
                    additional_services=[],
                    estimated_price=180000,
                    created_at=start,
                    **common,
                ),
                ServiceRequest(
                    tracking_number="SV-261001-BBBBB2",
                    service_type="ncc",
                    service_details={},
                    status="pending_quote",
                    created_at=start + timedelta(days=2),
                    **common,
                ),
                CompanyRequest(
                    tracking_number="CE-261001-CCCCC3",
                    structure_type="sas",
                    additional_services=[],
                    estimated_price=150000,
                    created_at=start + timedelta(days=1),
                    **common,
                ),
            ]
        )
        db.commit()
        db.close()

        expected = ["SV-261001-BBBBB2", "CE-261001-CCCCC3", "CE-261001-AAAAA1"]
        mine = self.client.get("/api/v1/requests", headers=CLIENT_HEADERS).json()["items"]
        self.assertEqual([item["tracking_number"] for item in mine], expected)
        everyone = self.client.get("/api/v1/admin/requests", headers=ADMIN_HEADERS).json()["items"]
        self.assertEqual([item["tracking_number"] for item in everyone], expected)


class ManualPaymentTests(RequestFlowTestBase):
    def test_manual_payment_marks_request_paid(self):
        request_id = self._submit_company()["request"]["id"]
        resp = self.client.post(
            f"/api/v1/admin/requests/company/{request_id}/payments/manual",
            json={"payment_method": "cash"},
            headers=ADMIN_HEADERS,
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertEqual(resp.json()["status"], "paid")
        # The pending checkout attempt was reused.
        self.assertEqual(len(self._payments()), 1)

        detail = self.client.get(f"/api/v1/requests/company/{request_id}", headers=CLIENT_HEADERS).json()
        self.assertEqual(detail["request"]["payment_status"], "paid")

        again = self.client.post(
            f"/api/v1/admin/requests/company/{request_id}/payments/manual",
            json={"payment_method": "cash"},
            headers=ADMIN_HEADERS,
        )
        self.assertEqual(again.status_code, 409)

        pay = self.client.post(f"/api/v1/requests/company/{request_id}/pay", headers=CLIENT_HEADERS)
        self.assertEqual(pay.status_code, 422)

    def test_manual_payment_requires_admin(self):
        request_id = self._submit_company()["request"]["id"]
        resp = self.client.post(
            f"/api/v1/admin/requests/company/{request_id}/payments/manual",
            json={"payment_method": "cash"},
            headers=CLIENT_HEADERS,
        )
        self.assertEqual(resp.status_code, 403)


class StripeWebhookTests(RequestFlowTestBase):
    env = {
        "ENABLE_STRIPE": "true",
        "STRIPE_SECRET_KEY": "sk_test_dummy",
        "STRIPE_WEBHOOK_SECRET": "whsec_dummy",
    }

    def _event(self, event_type, session_id, **extra):
        return {
            "id": f"evt_{session_id}",
            "type": event_type,
            "data": {"object": {"id": session_id, "payment_intent": "pi_test", **extra}},
        }

    def _post_event(self, event):
        with patch("stripe.Webhook.construct_event", return_value=event):
            return self.client.post("/api/v1/webhook/stripe", content="{}", headers={"stripe-signature": "sig"})

    def test_checkout_completed_marks_paid_once(self):
        request_id = self._submit_company()["request"]["id"]
        event = self._event("checkout.session.completed", "cs_test_1", payment_status="paid")

        first = self._post_event(event)
        second = self._post_event(event)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 200)
        db = self.SessionLocal()
        try:
            request = db.get(CompanyRequest, uuid.UUID(request_id))
            payment = db.execute(select(Payment)).scalar_one()
        finally:
            db.close()
        self.assertEqual(request.payment_status, "paid")
        self.assertEqual(payment.status, "paid")
        self.assertEqual(payment.payment_method, "card")
        self.assertEqual(self._actions(request_id).count("PAYMENT_CONFIRMED"), 1)

    def test_unpaid_completion_is_ignored(self):
        request_id = self._submit_company()["request"]["id"]
        resp = self._post_event(self._event("checkout.session.completed", "cs_test_1", payment_status="unpaid"))
        self.assertEqual(resp.status_code, 200)
        db = self.SessionLocal()
        try:
            self.assertEqual(db.get(CompanyRequest, uuid.UUID(request_id)).payment_status, "pending")
        finally:
            db.close()

    def test_expired_session_fails_attempt(self):
        request_id = self._submit_company()["request"]["id"]
        resp = self._post_event(self._event("checkout.session.expired", "cs_test_1"))
        self.assertEqual(resp.status_code, 200)
        payment = self._payments()[0]
        self.assertEqual(payment.status, "failed")
        self.assertIn("PAYMENT_FAILED", self._actions(request_id))

    def test_unknown_session_is_acknowledged(self):
        resp = self._post_event(self._event("checkout.session.completed", "cs_unknown", payment_status="paid"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"received": True})

    def test_bad_signature_is_rejected(self):
        import stripe

        error = stripe.SignatureVerificationError("bad signature", "sig")
        with patch("stripe.Webhook.construct_event", side_effect=error):
            resp = self.client.post("/api/v1/webhook/stripe", content="{}", headers={"stripe-signature": "sig"})
        self.assertEqual(resp.status_code, 400)

    def test_service_request_paid_through_webhook(self):
        created = self.client.post(
            "/api/v1/requests/service",
            json={
                "service_type": "ncc",
                "contact_name": "Yao Kouassi",
                "phone": "0505050505",
                "email": "yao@example.ci",
            },
            headers=CLIENT_HEADERS,
        ).json()["request"]
        self.client.post(
            f"/api/v1/admin/requests/service/{created['id']}/quote",
            json={"amount": 50000},
            headers=ADMIN_HEADERS,
        )
        self.client.post(f"/api/v1/requests/service/{created['id']}/pay", headers=CLIENT_HEADERS)

        self._post_event(self._event("checkout.session.completed", "cs_test_1", payment_status="paid"))

        db = self.SessionLocal()
        try:
            self.assertEqual(db.get(ServiceRequest, uuid.UUID(created["id"])).payment_status, "paid")
        finally:
            db.close()


if __name__ == "__main__":
    unittest.main()
