"""Tests for the admin IP allowlist and the security headers middleware."""

import os
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import CurrentUser, get_current_user
from app.core.config import get_settings
from app.core.dependencies import get_db
from app.main import app
from app.models.request import Base
from app.utils.rate_limit import ip_in_allowlist


class IPAllowlistHelperTests(unittest.TestCase):
    def test_exact_match(self):
        self.assertTrue(ip_in_allowlist("192.168.1.1", ["192.168.1.1"]))

    def test_exact_no_match(self):
        self.assertFalse(ip_in_allowlist("10.0.0.1", ["192.168.1.1"]))

    def test_cidr_match(self):
        self.assertTrue(ip_in_allowlist("192.168.1.100", ["192.168.0.0/16"]))

    def test_cidr_no_match(self):
        self.assertFalse(ip_in_allowlist("10.0.0.1", ["192.168.0.0/16"]))

    def test_empty_ip(self):
        self.assertFalse(ip_in_allowlist("", ["192.168.1.1"]))

    def test_invalid_ip(self):
        self.assertFalse(ip_in_allowlist("not-an-ip", ["192.168.1.1"]))

    def test_empty_allowlist(self):
        self.assertFalse(ip_in_allowlist("192.168.1.1", []))

    def test_invalid_entries_are_skipped(self):
        self.assertTrue(ip_in_allowlist("172.16.5.10", ["garbage", "172.16.0.0/12"]))
        self.assertFalse(ip_in_allowlist("8.8.8.8", ["garbage", "172.16.0.0/12"]))


class IPAllowlistMiddlewareTests(unittest.TestCase):
    def setUp(self):
        get_settings.cache_clear()
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_current_user] = lambda: CurrentUser(id="admin-1", role="ADMIN")
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        app.dependency_overrides.clear()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()
        get_settings.cache_clear()

    def _get(self, path, env, headers=None):
        with patch.dict(os.environ, env, clear=False):
            get_settings.cache_clear()
            return self.client.get(path, headers=headers or {})

    def test_empty_allowlist_allows_all(self):
        resp = self._get("/api/v1/admin/dashboard", {"ADMIN_IP_ALLOWLIST": ""})
        self.assertEqual(resp.status_code, 200)

    def test_non_admin_routes_unaffected(self):
        resp = self._get("/health", {"ADMIN_IP_ALLOWLIST": "10.0.0.1"})
        self.assertEqual(resp.status_code, 200)
        resp = self._get("/api/v1/public/testimonials", {"ADMIN_IP_ALLOWLIST": "10.0.0.1"})
        self.assertEqual(resp.status_code, 200)

    def test_admin_route_blocked_returns_403(self):
        # TestClient reports the peer as "testclient".
        resp = self._get("/api/v1/admin/dashboard", {"ADMIN_IP_ALLOWLIST": "10.0.0.1"})
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["detail"], "Adresse IP non autorisée")

    def test_admin_route_allowed_for_listed_peer(self):
        resp = self._get("/api/v1/admin/dashboard", {"ADMIN_IP_ALLOWLIST": "10.0.0.1,testclient"})
        self.assertEqual(resp.status_code, 200)

    def test_forwarded_address_used_behind_trusted_proxy(self):
        env = {"ADMIN_IP_ALLOWLIST": "203.0.113.0/24", "TRUSTED_PROXY_CIDRS": "testclient"}
        resp = self._get("/api/v1/admin/dashboard", env, headers={"X-Forwarded-For": "198.51.100.1, 203.0.113.9"})
        self.assertEqual(resp.status_code, 200)

    def test_forwarded_address_ignored_without_trusted_proxy(self):
        env = {"ADMIN_IP_ALLOWLIST": "203.0.113.0/24", "TRUSTED_PROXY_CIDRS": ""}
        resp = self._get("/api/v1/admin/dashboard", env, headers={"X-Forwarded-For": "203.0.113.9"})
        self.assertEqual(resp.status_code, 403)


class SecurityHeadersMiddlewareTests(unittest.TestCase):
    def setUp(self):
        get_settings.cache_clear()
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        get_settings.cache_clear()

    @patch.dict(os.environ, {"SECURITY_HEADERS_ENABLED": "true"}, clear=False)
    def test_all_six_headers_present(self):
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        h = resp.headers
        self.assertEqual(h.get("X-Content-Type-Options"), "nosniff")
        self.assertEqual(h.get("X-Frame-Options"), "DENY")
        self.assertEqual(h.get("Referrer-Policy"), "strict-origin-when-cross-origin")
        self.assertEqual(h.get("Permissions-Policy"), "geolocation=(), microphone=(), camera=()")
        self.assertEqual(h.get("Strict-Transport-Security"), "max-age=31536000; includeSubDomains")
        self.assertIn("default-src 'none'", h.get("Content-Security-Policy", ""))

    @patch.dict(os.environ, {"SECURITY_HEADERS_ENABLED": "false"}, clear=False)
    def test_headers_disabled_not_present(self):
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertNotIn("Referrer-Policy", resp.headers)
        self.assertNotIn("Permissions-Policy", resp.headers)

    @patch.dict(os.environ, {"SECURITY_HEADERS_ENABLED": "true"}, clear=False)
    def test_headers_on_error_responses(self):
        resp = self.client.get("/api/v1/no-such-route")
        self.assertEqual(resp.status_code, 404)
        self.assertIn("X-Content-Type-Options", resp.headers)
        self.assertIn("Strict-Transport-Security", resp.headers)


if __name__ == "__main__":
    unittest.main()
