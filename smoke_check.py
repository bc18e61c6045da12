#!/usr/bin/env python3
"""
WhatsApp Sessions API smoke tester.

Runs the instance lifecycle against a deployed backend:
create -> connect -> status -> webhook -> send -> delete.

Environment:
    SMOKE_BACKEND_URL   base URL including /api (default http://localhost:8001/api)
    SMOKE_TOKEN         bearer token; when absent one is minted with JWT_SECRET
    SMOKE_TENANT_ID     tenant used when minting the token
    SMOKE_PHONE         destination for the test message (skipped when empty)
"""

import os
import sys
import time
from typing import Any, Optional

import requests

BACKEND_URL = (os.getenv("SMOKE_BACKEND_URL") or "http://localhost:8001/api").rstrip("/")
TENANT_ID = os.getenv("SMOKE_TENANT_ID") or "smoke-tenant"
TEST_PHONE = (os.getenv("SMOKE_PHONE") or "").strip()


def _token() -> str:
    token = (os.getenv("SMOKE_TOKEN") or "").strip()
    if token:
        return token
    from amplie_backend.utils.auth_helpers import create_token

    return create_token("smoke-user", "smoke@localhost", "admin", TENANT_ID, ttl_s=3600)


class SessionsTester:
    def __init__(self):
        self.session = requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {_token()}"})
        self.instance_name = f"smoke-{int(time.time())}"
        self.test_results = []

    def log_result(self, test_name: str, success: bool, message: str, details: Any = None):
        status = "✅ PASS" if success else "❌ FAIL"
        print(f"{status} {test_name}: {message}")
        self.test_results.append({"test": test_name, "success": success, "message": message, "details": details})

    def _check(self, test_name: str, response: requests.Response, expected: int = 200) -> Optional[dict]:
        if response.status_code != expected:
            self.log_result(test_name, False, f"HTTP {response.status_code}: {response.text}")
            return None
        data = response.json()
        return data if isinstance(data, dict) else {"items": data}

    def test_health_check(self) -> bool:
        try:
            data = self._check("Health Check", self.session.get(f"{BACKEND_URL}/health", timeout=10))
        except requests.RequestException as e:
            self.log_result("Health Check", False, f"Connection error: {e}")
            return False
        if data is None:
            return False
        ok = data.get("status") == "healthy"
        self.log_result("Health Check", ok, "API is healthy" if ok else f"Unhealthy status: {data}")
        return ok

    def test_create_instance(self) -> bool:
        try:
            response = self.session.post(
                f"{BACKEND_URL}/instances",
                json={"instanceName": self.instance_name, "webhook": {}},
                timeout=60,
            )
        except requests.RequestException as e:
            self.log_result("Create Instance", False, f"Request error: {e}")
            return False
        data = self._check("Create Instance", response, expected=201)
        if data is None:
            return False
        ok = data.get("status") == "awaiting_pairing" and bool(data.get("pairingCode"))
        self.log_result("Create Instance", ok, f"{self.instance_name} -> {data.get('status')}")
        return ok

    def test_connect(self) -> bool:
        try:
            response = self.session.post(f"{BACKEND_URL}/instances/{self.instance_name}/connect", json={}, timeout=30)
        except requests.RequestException as e:
            self.log_result("Connect", False, f"Request error: {e}")
            return False
        data = self._check("Connect", response)
        if data is None:
            return False
        self.log_result("Connect", True, f"Pairing artifact refreshed ({len(data.get('pairingCode') or '')} chars)")
        return True

    def test_status(self) -> bool:
        try:
            response = self.session.post(f"{BACKEND_URL}/instances/{self.instance_name}/status", timeout=30)
        except requests.RequestException as e:
            self.log_result("Status", False, f"Request error: {e}")
            return False
        data = self._check("Status", response)
        if data is None:
            return False
        self.log_result("Status", True, f"Status: {data.get('status')}")
        return True

    def test_webhook_check(self) -> bool:
        try:
            response = self.session.post(f"{BACKEND_URL}/instances/{self.instance_name}/webhook/check", timeout=30)
        except requests.RequestException as e:
            self.log_result("Webhook Check", False, f"Request error: {e}")
            return False
        data = self._check("Webhook Check", response)
        if data is None:
            return False
        self.log_result("Webhook Check", True, f"ok={data.get('lastCheckOk')} ({data.get('lastCheckDetail')})")
        return True

    def test_send_text(self) -> bool:
        if not TEST_PHONE:
            self.log_result("Send Text", True, "Skipped (SMOKE_PHONE not set)")
            return True
        try:
            response = self.session.post(
                f"{BACKEND_URL}/instances/{self.instance_name}/messages",
                json={"phone": TEST_PHONE, "text": "Smoke test", "correlationId": self.instance_name},
                timeout=30,
            )
        except requests.RequestException as e:
            self.log_result("Send Text", False, f"Request error: {e}")
            return False
        data = self._check("Send Text", response)
        if data is None:
            return False
        self.log_result("Send Text", True, f"Message id: {data.get('messageId')}")
        return True

    def test_delete(self) -> bool:
        try:
            first = self.session.delete(f"{BACKEND_URL}/instances/{self.instance_name}", timeout=30)
            second = self.session.delete(f"{BACKEND_URL}/instances/{self.instance_name}", timeout=30)
        except requests.RequestException as e:
            self.log_result("Delete", False, f"Request error: {e}")
            return False
        a = self._check("Delete", first)
        b = self._check("Delete", second)
        if a is None or b is None:
            return False
        ok = a.get("deleted") is True and b.get("deleted") is False
        self.log_result("Delete", ok, f"first={a.get('deleted')} second={b.get('deleted')}")
        return ok

    def run_all_tests(self):
        print("=" * 60)
        print("WhatsApp Sessions API Smoke Test")
        print("=" * 60)
        print(f"Backend URL: {BACKEND_URL}")
        print(f"Instance: {self.instance_name}")
        print("=" * 60)

        tests = [
            ("Health Check", self.test_health_check),
            ("Create Instance", self.test_create_instance),
            ("Connect", self.test_connect),
            ("Status", self.test_status),
            ("Webhook Check", self.test_webhook_check),
            ("Send Text", self.test_send_text),
            ("Delete", self.test_delete),
        ]

        passed = 0
        for test_name, test_func in tests:
            print(f"\n--- Testing {test_name} ---")
            if test_func():
                passed += 1

        total = len(tests)
        print("\n" + "=" * 60)
        print(f"Passed: {passed}/{total}")
        failed_tests = [r for r in self.test_results if not r["success"]]
        for test in failed_tests:
            print(f"❌ {test['test']}: {test['message']}")
        print("=" * 60)
        return passed, total, self.test_results


if __name__ == "__main__":
    tester = SessionsTester()
    passed, total, _ = tester.run_all_tests()
    sys.exit(0 if passed == total else 1)
