import base64
import shutil
import tempfile
import unittest

from fastapi.testclient import TestClient

from menu_backend.app import create_app
from menu_backend.config import Settings
from menu_backend.db import PostgresRecordStore
from menu_backend.dependencies import build_services
from menu_backend.file_store import FileRecordStore
from menu_backend.storage import LocalStorageClient

PNG_DATA_URL = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


def section(section_id, name, items):
    return {
        "id": section_id,
        "name": name,
        "type": "food",
        "columns": ["Dish", "Price"],
        "titleColumns": ["Dish"],
        "items": items,
    }


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        data_dir = tempfile.mkdtemp()
        uploads_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, data_dir, ignore_errors=True)
        self.addCleanup(shutil.rmtree, uploads_dir, ignore_errors=True)
        settings = Settings(
            _env_file=None,
            database_url=None,
            data_dir=data_dir,
            uploads_dir=uploads_dir,
            public_base_url="https://menus.example",
            admin_username="admin",
            admin_password="admin-pass-123",
        )
        services = build_services(
            settings,
            store=self.make_store(data_dir),
            storage=LocalStorageClient(root=uploads_dir),
            bcrypt_rounds=4,
        )
        self.services = services
        self.client = TestClient(create_app(services))

    def make_store(self, data_dir):
        return FileRecordStore(data_dir)

    def register(self, email="chef@example.com", password="password123", name="Chef"):
        resp = self.client.post(
            "/api/auth/register",
            json={"email": email, "password": password, "name": name},
        )
        self.assertEqual(resp.status_code, 201, resp.text)
        return resp.json()

    def bearer(self, token):
        return {"Authorization": f"Bearer {token}"}


class StatusTests(ApiTestCase):
    def test_status(self):
        resp = self.client.get("/api/status")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "OK")
        self.assertEqual(body["version"], "2.0")
        self.assertEqual(body["message"], "Menu Editor API is working")


class AuthApiTests(ApiTestCase):
    def test_register_sets_session_cookie(self):
        body = self.register()
        self.assertTrue(body["success"])
        self.assertEqual(body["user"]["email"], "chef@example.com")
        self.assertNotIn("passwordHash", body["user"])
        self.assertEqual(self.client.cookies.get("session"), body["sessionId"])

        resp = self.client.get("/api/auth/verify")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["user"]["id"], body["user"]["id"])

    def test_register_duplicate_email(self):
        self.register()
        resp = self.client.post(
            "/api/auth/register",
            json={"email": "CHEF@example.com", "password": "password456", "name": "Two"},
        )
        self.assertEqual(resp.status_code, 409)
        self.assertFalse(resp.json()["success"])

    def test_register_short_password(self):
        resp = self.client.post(
            "/api/auth/register",
            json={"email": "chef@example.com", "password": "short", "name": "Chef"},
        )
        self.assertEqual(resp.status_code, 400)

    def test_login_with_bearer_token(self):
        self.register()
        self.client.cookies.clear()
        resp = self.client.post(
            "/api/auth/login",
            json={"email": "chef@example.com", "password": "password123"},
        )
        self.assertEqual(resp.status_code, 200)
        token = resp.json()["sessionId"]
        self.client.cookies.clear()

        resp = self.client.post("/api/auth/verify", headers=self.bearer(token))
        self.assertEqual(resp.status_code, 200)
        self.assertIsNotNone(resp.json()["user"]["lastActive"])

    def test_login_bad_password(self):
        self.register()
        resp = self.client.post(
            "/api/auth/login",
            json={"email": "chef@example.com", "password": "wrong-password"},
        )
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["error"], "Invalid credentials")
        self.assertEqual(resp.headers.get("www-authenticate"), "Bearer")

    def test_verify_without_session(self):
        resp = self.client.get("/api/auth/verify")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["error"], "Authentication required")

    def test_logout_revokes_session(self):
        token = self.register()["sessionId"]
        resp = self.client.post("/api/auth/logout")
        self.assertEqual(resp.status_code, 200)
        self.assertIsNone(self.client.cookies.get("session"))
        resp = self.client.get("/api/auth/verify", headers=self.bearer(token))
        self.assertEqual(resp.status_code, 401)

    def test_update_profile(self):
        self.register()
        resp = self.client.patch(
            "/api/auth/profile", json={"restaurant": "Bistro", "zipCode": "69001"}
        )
        self.assertEqual(resp.status_code, 200)
        user = resp.json()["user"]
        self.assertEqual(user["restaurant"], "Bistro")
        self.assertEqual(user["zipCode"], "69001")


class MenuApiTests(ApiTestCase):
    def create_menu(self, name="Dinner", sections=None):
        resp = self.client.post(
            "/api/menus", json={"name": name, "sections": sections or []}
        )
        self.assertEqual(resp.status_code, 201, resp.text)
        return resp.json()["menu"]

    def test_requires_authentication(self):
        self.assertEqual(self.client.get("/api/menus").status_code, 401)
        self.assertEqual(
            self.client.post("/api/menus", json={"name": "Dinner"}).status_code, 401
        )

    def test_menu_lifecycle(self):
        self.register()
        menu = self.create_menu(
            sections=[section(1, "Starters", [{"Dish": "Soup", "Price": "8"}])]
        )
        self.assertEqual(menu["status"], "draft")
        self.assertEqual(menu["sections"][0]["titleColumns"], ["Dish"])
        self.assertEqual(menu["revision"], 1)

        resp = self.client.get("/api/menus")
        self.assertEqual([m["id"] for m in resp.json()["menus"]], [menu["id"]])

        resp = self.client.patch(
            f"/api/menus/{menu['id']}",
            json={"colorPalette": "ocean", "fontFamily": "Lora"},
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["menu"]["colorPalette"], "ocean")

        resp = self.client.put(
            f"/api/menus/{menu['id']}/sections",
            json={
                "sections": [
                    section(2, "Mains", [{"Dish": "Duck", "Price": "26"}]),
                    section(1, "Starters", []),
                ],
                "revision": 1,
            },
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertEqual(resp.json()["revision"], 2)

        resp = self.client.put(
            f"/api/menus/{menu['id']}/sections",
            json={"sections": [], "revision": 1},
        )
        self.assertEqual(resp.status_code, 409)

        resp = self.client.get(f"/api/menus/{menu['id']}")
        self.assertEqual(
            [s["name"] for s in resp.json()["menu"]["sections"]], ["Starters", "Mains"]
        )

    def test_publish_and_public_page(self):
        self.register()
        menu = self.create_menu(
            sections=[section(1, "Courses", [{"Dish": "Lamb", "Price": "30"}])]
        )
        resp = self.client.post(
            f"/api/menus/{menu['id']}/publish",
            json={"slug": "chefs-table", "title": "Chef's Table", "subtitle": "Tonight"},
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertEqual(body["publishedUrl"], "https://menus.example/menu/chefs-table")
        self.assertEqual(body["title"], "Chef's Table")

        self.client.cookies.clear()
        resp = self.client.get("/api/menus/published/chefs-table")
        self.assertEqual(resp.status_code, 200)
        public = resp.json()
        self.assertEqual(public["title"], "Chef's Table")
        self.assertEqual(public["sections"][0]["items"], [{"Dish": "Lamb", "Price": "30"}])

        resp = self.client.post(
            "/api/menus/check-availability", json={"slug": "chefs-table"}
        )
        self.assertFalse(resp.json()["available"])
        resp = self.client.post(
            "/api/menus/check-availability",
            json={"slug": "chefs-table", "menuId": menu["id"]},
        )
        self.assertTrue(resp.json()["available"])

    def test_publish_taken_slug(self):
        self.register()
        first = self.create_menu("First")
        self.client.post(
            f"/api/menus/{first['id']}/publish",
            json={"slug": "chefs-table", "title": "First"},
        )
        self.client.cookies.clear()
        self.register(email="rival@example.com")
        second = self.create_menu("Second")
        resp = self.client.post(
            f"/api/menus/{second['id']}/publish",
            json={"slug": "chefs-table", "title": "Second"},
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "This URL path is already taken")

    def test_unknown_public_slug(self):
        self.assertEqual(self.client.get("/api/menus/published/nobody").status_code, 404)

    def test_foreign_menu_is_forbidden(self):
        self.register()
        menu = self.create_menu(sections=[section(1, "Starters", [])])
        self.client.cookies.clear()
        self.register(email="rival@example.com")
        self.assertEqual(self.client.get(f"/api/menus/{menu['id']}").status_code, 403)
        resp = self.client.patch(f"/api/menus/{menu['id']}", json={"name": "Mine now"})
        self.assertEqual(resp.status_code, 403)
        resp = self.client.put(
            f"/api/menus/{menu['id']}/sections",
            json={"sections": [section(9, "Takeover", [])]},
        )
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(self.client.delete(f"/api/menus/{menu['id']}").status_code, 403)

        stored = self.services.store.get_menu(menu["id"])
        self.assertEqual(stored.name, "Dinner")
        self.assertEqual([s.name for s in stored.sections], ["Starters"])

    def test_delete_menu(self):
        self.register()
        menu = self.create_menu()
        resp = self.client.delete(f"/api/menus/{menu['id']}")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.client.get(f"/api/menus/{menu['id']}").status_code, 404)
        self.assertEqual(self.client.get("/api/menus").json()["menus"], [])


class NullFieldApiContract:
    """Explicit nulls on required columns are rejected without touching the record."""

    def test_null_menu_style_field(self):
        self.register()
        menu = self.client.post("/api/menus", json={"name": "Dinner"}).json()["menu"]
        for field in ("fontFamily", "colorPalette", "logoSize", "sectionCounter"):
            resp = self.client.patch(f"/api/menus/{menu['id']}", json={field: None})
            self.assertEqual(resp.status_code, 400, field)
            self.assertFalse(resp.json()["success"])

        resp = self.client.get("/api/menus")
        self.assertEqual(resp.status_code, 200)
        listed = resp.json()["menus"][0]
        self.assertEqual(listed["fontFamily"], menu["fontFamily"])
        self.assertEqual(listed["revision"], menu["revision"])

    def test_null_marketing_opt_in(self):
        self.register()
        resp = self.client.patch("/api/auth/profile", json={"marketingOptIn": None})
        self.assertEqual(resp.status_code, 400)

        resp = self.client.get("/api/auth/verify")
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.json()["user"]["marketingOptIn"])


class FileNullFieldApiTests(NullFieldApiContract, ApiTestCase):
    pass


class PostgresNullFieldApiTests(NullFieldApiContract, ApiTestCase):
    def make_store(self, data_dir):
        return PostgresRecordStore("sqlite+pysqlite:///:memory:")


class UploadApiTests(ApiTestCase):
    def test_logo_upload_attaches_to_menu(self):
        self.register()
        menu = self.client.post("/api/menus", json={"name": "Dinner"}).json()["menu"]
        resp = self.client.post(
            "/api/uploads/logo",
            json={"fileData": PNG_DATA_URL, "fileName": "logo.png", "menuId": menu["id"]},
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertEqual(body["filename"], "logo.png")
        self.assertTrue(body["url"].startswith("/uploads/logos/"))
        menu = self.client.get(f"/api/menus/{menu['id']}").json()["menu"]
        self.assertEqual(menu["menuLogo"], body["url"])

    def test_rejects_non_image(self):
        self.register()
        resp = self.client.post(
            "/api/uploads/background",
            json={"fileData": "data:text/plain;base64,aGVsbG8=", "fileName": "a.txt"},
        )
        self.assertEqual(resp.status_code, 400)


class AdminApiTests(ApiTestCase):
    def test_admin_users(self):
        self.register()
        self.client.post("/api/menus", json={"name": "Dinner"})
        resp = self.client.post(
            "/api/admin/users", json={"username": "admin", "password": "admin-pass-123"}
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["stats"]["totalUsers"], 1)
        self.assertEqual(body["stats"]["totalMenus"], 1)
        self.assertEqual(body["stats"]["publishedMenus"], 0)
        self.assertEqual(body["users"][0]["menuCount"], 1)
        self.assertNotIn("passwordHash", body["users"][0])

    def test_admin_bad_credentials(self):
        resp = self.client.post(
            "/api/admin/users", json={"username": "admin", "password": "guess"}
        )
        self.assertEqual(resp.status_code, 401)


if __name__ == "__main__":
    unittest.main()
