import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

import requests
from fastapi import HTTPException
from fastapi.testclient import TestClient

from church_api.app import create_app
from church_api.config import Settings, get_settings
from church_api.dependencies import (
    get_content_store,
    get_identity_provider,
    get_storage_client,
)
from church_api.errors import ContentStoreError
from church_api.identity import InMemoryIdentityProvider, SupabaseIdentityProvider
from church_api.routes import upload_file
from church_api.storage import InMemoryStorageClient
from church_api.store import InMemoryContentStore

COLLECTIONS = {
    "events": ("event:", {"title": "Revival Night", "date": "2025-12-01"}),
    "news": ("news:", {"title": "Building fund update"}),
    "media": ("media:", {"title": "Sunday service", "type": "video"}),
    "testimonies": ("testimony:", {"name": "Ada", "testimony": "Healed"}),
    "leaders": ("leader:", {"name": "Tunde", "role": "Senior Pastor"}),
}


class FailingStore(InMemoryContentStore):
    def get_by_prefix(self, prefix):
        raise ContentStoreError("connection refused")


class CrashingStore(InMemoryContentStore):
    def get_by_prefix(self, prefix):
        raise RuntimeError("unexpected row shape")


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.app = create_app()
        self.store = InMemoryContentStore()
        self.identity = InMemoryIdentityProvider()
        self.storage = InMemoryStorageClient()
        self.app.dependency_overrides[get_content_store] = lambda: self.store
        self.app.dependency_overrides[get_identity_provider] = lambda: self.identity
        self.app.dependency_overrides[get_storage_client] = lambda: self.storage
        self.client = TestClient(self.app)

        self.identity.create_user("admin@example.com", "secret123", "Admin")
        token, self.user = self.identity.sign_in("admin@example.com", "secret123")
        self.auth = {"Authorization": f"Bearer {token}"}


class AuthApiTests(ApiTestCase):
    def test_signup_then_login(self):
        response = self.client.post(
            "/api/auth/signup",
            json={"email": "pastor@example.com", "password": "hunter22", "name": "Pastor"},
        )
        self.assertEqual(response.status_code, 200)
        user = response.json()["user"]
        self.assertEqual(user["user_metadata"], {"name": "Pastor", "role": "admin"})

        login = self.client.post(
            "/api/auth/login",
            json={"email": "pastor@example.com", "password": "hunter22"},
        )
        self.assertEqual(login.status_code, 200)
        token = login.json()["access_token"]

        me = self.client.get("/api/auth/user", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["user"]["id"], user["id"])

    def test_signup_requires_all_fields(self):
        response = self.client.post(
            "/api/auth/signup", json={"email": "a@example.com", "password": "secret123"}
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("name", response.json()["error"])

    def test_signup_duplicate_is_bad_request(self):
        response = self.client.post(
            "/api/auth/signup",
            json={"email": "admin@example.com", "password": "secret123", "name": "Again"},
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("already been registered", response.json()["error"])

    def test_login_bad_password(self):
        response = self.client.post(
            "/api/auth/login", json={"email": "admin@example.com", "password": "nope"}
        )
        self.assertEqual(response.status_code, 401)

    def test_user_without_token(self):
        response = self.client.get("/api/auth/user")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"error": "No authorization token provided"})

    def test_user_with_bad_token(self):
        response = self.client.get(
            "/api/auth/user", headers={"Authorization": "Bearer not-a-token"}
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"error": "Unauthorized"})


class CollectionApiTests(ApiTestCase):
    def test_list_is_empty_for_every_collection(self):
        for route in COLLECTIONS:
            response = self.client.get(f"/api/{route}")
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json(), {route: []})

    def test_create_then_list_for_every_collection(self):
        for route, (prefix, payload) in COLLECTIONS.items():
            response = self.client.post(f"/api/{route}", json=payload, headers=self.auth)
            self.assertEqual(response.status_code, 200, response.text)
            record_id = response.json()["id"]
            self.assertTrue(record_id.startswith(prefix))

            records = self.client.get(f"/api/{route}").json()[route]
            self.assertEqual([r["id"] for r in records], [record_id])
            for field, value in payload.items():
                self.assertEqual(records[0][field], value)
            self.assertEqual(records[0]["createdBy"], self.user.id)

    def test_revival_night_scenario(self):
        created = self.client.post(
            "/api/events",
            json={"title": "Revival Night", "date": "2025-12-01", "featured": True},
            headers=self.auth,
        )
        event_id = created.json()["id"]

        events = self.client.get("/api/events").json()["events"]
        self.assertEqual(len(events), 1)
        self.assertTrue(events[0]["featured"])

        updated = self.client.put(
            f"/api/events/{event_id}", json={"featured": False}, headers=self.auth
        )
        self.assertEqual(updated.json(), {"success": True})
        events = self.client.get("/api/events").json()["events"]
        self.assertEqual(events[0]["title"], "Revival Night")
        self.assertFalse(events[0]["featured"])
        self.assertEqual(events[0]["updatedBy"], self.user.id)

        deleted = self.client.delete(f"/api/events/{event_id}", headers=self.auth)
        self.assertEqual(deleted.json(), {"success": True})
        self.assertEqual(self.client.get("/api/events").json(), {"events": []})

    def test_create_missing_required_field(self):
        response = self.client.post(
            "/api/events", json={"title": "No date"}, headers=self.auth
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("date", response.json()["error"])

    def test_create_rejects_non_object_body(self):
        response = self.client.post("/api/news", json=["title"], headers=self.auth)
        self.assertEqual(response.status_code, 400)

    def test_update_missing_record(self):
        response = self.client.put(
            "/api/news/news:123", json={"title": "x"}, headers=self.auth
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "News not found"})

    def test_delete_missing_record_succeeds(self):
        response = self.client.delete("/api/leaders/leader:123", headers=self.auth)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": True})

    def test_list_limit_returns_latest(self):
        for title in ("first", "second", "third"):
            self.store.set(
                f"news:{title}",
                {"id": f"news:{title}", "title": title,
                 "createdAt": {"first": "2025-01-01", "second": "2025-02-01",
                               "third": "2025-03-01"}[title]},
            )
        response = self.client.get("/api/news", params={"limit": 2})
        self.assertEqual([r["title"] for r in response.json()["news"]], ["third", "second"])

    def test_mutations_without_token_change_nothing(self):
        created = self.client.post(
            "/api/events", json={"title": "Keep", "date": "2025-01-01"}, headers=self.auth
        )
        event_id = created.json()["id"]

        for headers in ({}, {"Authorization": "Bearer bogus"}, {"Authorization": "Basic abc"}):
            attempts = [
                self.client.post("/api/events", json={"title": "New", "date": "x"}, headers=headers),
                self.client.put(f"/api/events/{event_id}", json={"title": "Changed"}, headers=headers),
                self.client.delete(f"/api/events/{event_id}", headers=headers),
                self.client.put("/api/settings", json={"churchName": "X"}, headers=headers),
            ]
            for response in attempts:
                self.assertEqual(response.status_code, 401)
                self.assertEqual(response.json(), {"error": "Unauthorized"})

        events = self.client.get("/api/events").json()["events"]
        self.assertEqual([(e["id"], e["title"]) for e in events], [(event_id, "Keep")])
        self.assertEqual(self.client.get("/api/settings").json(), {"settings": {}})

    def test_store_fault_surfaces_message(self):
        self.app.dependency_overrides[get_content_store] = lambda: FailingStore()
        response = self.client.get("/api/events")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "connection refused"})

    def test_unexpected_fault_keeps_error_body(self):
        self.app.dependency_overrides[get_content_store] = lambda: CrashingStore()
        client = TestClient(self.app, raise_server_exceptions=False)
        response = client.get("/api/events")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "unexpected row shape"})

    def test_garbled_identity_response_keeps_error_body(self):
        provider = SupabaseIdentityProvider(
            url="https://project.supabase.co", service_role_key="service-key"
        )
        garbled = MagicMock(spec=requests.Response)
        garbled.status_code = 200
        garbled.ok = True
        garbled.text = "<html>gateway</html>"
        garbled.json.side_effect = ValueError("Expecting value")
        provider._session = MagicMock()
        provider._session.request.return_value = garbled
        self.app.dependency_overrides[get_identity_provider] = lambda: provider

        response = self.client.post(
            "/api/events",
            json={"title": "Revival Night", "date": "2025-12-01"},
            headers={"Authorization": "Bearer tok"},
        )
        self.assertEqual(response.status_code, 500)
        self.assertIn("non-JSON", response.json()["error"])
        self.assertEqual(self.store.get_by_prefix("event:"), [])


class SettingsApiTests(ApiTestCase):
    def test_settings_default_empty(self):
        response = self.client.get("/api/settings")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"settings": {}})

    def test_put_replaces_document(self):
        self.client.put(
            "/api/settings",
            json={"churchName": "Grace", "tagline": "Hope"},
            headers=self.auth,
        )
        response = self.client.put(
            "/api/settings", json={"churchName": "Grace Chapel"}, headers=self.auth
        )
        self.assertEqual(response.json(), {"success": True})

        settings = self.client.get("/api/settings").json()["settings"]
        self.assertEqual(settings["churchName"], "Grace Chapel")
        self.assertNotIn("tagline", settings)
        self.assertEqual(settings["updatedBy"], self.user.id)


class UploadApiTests(ApiTestCase):
    def test_upload_returns_url_and_path(self):
        response = self.client.post(
            "/api/upload",
            files={"file": ("flyer.PNG", b"\x89PNG data", "image/png")},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertRegex(payload["path"], r"^\d+-[0-9a-z]{6}\.png$")
        self.assertIn(payload["path"], payload["url"])
        self.assertTrue(self.storage.bucket_ready)
        self.assertEqual(self.storage.get_bytes(payload["path"]), b"\x89PNG data")
        self.assertEqual(self.storage.content_types[payload["path"]], "image/png")

    def test_upload_requires_file(self):
        response = self.client.post(
            "/api/upload", data={"other": "value"}, headers=self.auth
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "No file provided"})

    def test_upload_requires_auth(self):
        response = self.client.post(
            "/api/upload", files={"file": ("a.jpg", b"data", "image/jpeg")}
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(self.storage.stored_objects, {})

    def test_upload_rejects_oversize_file(self):
        self.app.dependency_overrides[get_settings] = lambda: Settings(upload_max_bytes=4)
        response = self.client.post(
            "/api/upload",
            files={"file": ("a.jpg", b"too large", "image/jpeg")},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.storage.stored_objects, {})

    def test_upload_at_size_limit_is_accepted(self):
        self.app.dependency_overrides[get_settings] = lambda: Settings(upload_max_bytes=4)
        response = self.client.post(
            "/api/upload",
            files={"file": ("a.jpg", b"four", "image/jpeg")},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(self.storage.get_bytes(response.json()["path"]), b"four")

    def test_upload_reads_no_more_than_limit_plus_one(self):
        upload = MagicMock()
        upload.size = None
        upload.read = AsyncMock(return_value=b"x" * 5)
        with self.assertRaises(HTTPException) as ctx:
            asyncio.run(
                upload_file(
                    file=upload,
                    user=self.user,
                    storage=self.storage,
                    settings=Settings(upload_max_bytes=4),
                )
            )
        self.assertEqual(ctx.exception.status_code, 400)
        upload.read.assert_awaited_once_with(5)
        self.assertEqual(self.storage.stored_objects, {})

    def test_upload_with_declared_oversize_skips_read(self):
        upload = MagicMock()
        upload.size = 10 * 1024 * 1024 + 1
        upload.read = AsyncMock()
        with self.assertRaises(HTTPException) as ctx:
            asyncio.run(
                upload_file(
                    file=upload,
                    user=self.user,
                    storage=self.storage,
                    settings=Settings(_env_file=None),
                )
            )
        self.assertEqual(ctx.exception.detail, "File size must be less than 10MB")
        upload.read.assert_not_awaited()


class HealthApiTests(ApiTestCase):
    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["status"], "ok")
        self.assertTrue(payload["timestamp"].endswith("Z"))

    def test_unknown_route_uses_error_body(self):
        response = self.client.get("/api/sermons")
        self.assertEqual(response.status_code, 404)
        self.assertIn("error", response.json())


if __name__ == "__main__":
    unittest.main()
