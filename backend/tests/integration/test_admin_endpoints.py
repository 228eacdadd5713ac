"""
Integration Tests for the admin security and backup endpoints
"""
import json
import re
import pytest
from httpx import AsyncClient
from faker import Faker

from portal.core.config import settings
from portal.services.activity_logger import ACTIVITY_COLLECTION
from portal.services.guard.policy import POLICY_COLLECTION, POLICY_DOCUMENT_ID

fake = Faker()


class TestAdminAccess:
    """Test operator identity checks"""

    @pytest.mark.asyncio
    async def test_missing_identity_forbidden(self, client: AsyncClient):
        """Test admin endpoints need X-Admin-Email"""
        response = await client.get("/api/v1/admin/security/policy")

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "NOT_AUTHORIZED"

    @pytest.mark.asyncio
    async def test_token_required_when_configured(self, client: AsyncClient, admin_headers, monkeypatch):
        """Test X-Admin-Token must match ADMIN_API_TOKEN"""
        monkeypatch.setattr(settings, "ADMIN_API_TOKEN", "s3cret-token")

        wrong = await client.get(
            "/api/v1/admin/security/policy", headers={**admin_headers, "X-Admin-Token": "nope"}
        )
        right = await client.get(
            "/api/v1/admin/security/policy", headers={**admin_headers, "X-Admin-Token": "s3cret-token"}
        )

        assert wrong.status_code == 403
        assert right.status_code == 200


class TestSecurityPolicyEndpoints:
    """Test the security rules screen API"""

    @pytest.mark.asyncio
    async def test_get_default_policy(self, client: AsyncClient, admin_headers):
        """Test an unconfigured site reports the defaults"""
        response = await client.get("/api/v1/admin/security/policy", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["active"] is False
        assert data["max_refreshes"] == 5
        assert data["refresh_window_seconds"] == 15
        assert data["block_duration_minutes"] == 30

    @pytest.mark.asyncio
    async def test_update_policy(self, client: AsyncClient, admin_headers, store, policy_provider):
        """Test saving rules writes settings/security and takes effect"""
        response = await client.put(
            "/api/v1/admin/security/policy",
            json={"active": True, "max_refreshes": 8, "refresh_window_seconds": 20},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["max_refreshes"] == 8
        assert policy_provider.current().max_refreshes == 8

        stored = await store.get(POLICY_COLLECTION, POLICY_DOCUMENT_ID)
        assert stored["isActive"] is True
        assert stored["config"]["refreshWindow"] == 20

    @pytest.mark.asyncio
    async def test_update_policy_logs_activity(self, client: AsyncClient, admin_headers, store):
        """Test the change is recorded in activity_logs"""
        await client.put("/api/v1/admin/security/policy", json={"active": True}, headers=admin_headers)

        entries = [fields for _, fields in await store.list(ACTIVITY_COLLECTION)]
        assert len(entries) == 1
        assert entries[0]["action"] == "SECURITY_TOGGLE"
        assert entries[0]["adminEmail"] == admin_headers["X-Admin-Email"]

    @pytest.mark.asyncio
    async def test_out_of_range_rejected(self, client: AsyncClient, admin_headers, store):
        """Test thresholds outside the form bounds answer 400 without writing"""
        response = await client.put(
            "/api/v1/admin/security/policy", json={"max_refreshes": 100}, headers=admin_headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_POLICY"
        assert await store.get(POLICY_COLLECTION, POLICY_DOCUMENT_ID) is None

    @pytest.mark.asyncio
    async def test_migration_mode_toggle(self, client: AsyncClient, admin_headers, store):
        """Test the migration flag is merged into settings/security"""
        response = await client.patch(
            "/api/v1/admin/security/migration-mode", json={"enabled": True}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["migration_mode"] is True
        assert (await store.get(POLICY_COLLECTION, POLICY_DOCUMENT_ID))["migrationMode"] is True


class TestSessionEndpoints:
    """Test operator control over live guard sessions"""

    @pytest.mark.asyncio
    async def test_list_sessions(self, client: AsyncClient, visitor: AsyncClient, admin_headers, html_headers):
        """Test a visitor's session shows up"""
        await visitor.get("/", headers=html_headers)
        sid = visitor.cookies[settings.GUARD_SESSION_COOKIE]

        response = await client.get("/api/v1/admin/security/sessions", headers=admin_headers)

        assert response.status_code == 200
        sessions = {s["session_id"]: s for s in response.json()["sessions"]}
        assert sid in sessions
        assert sessions[sid]["blocked"] is False

    @pytest.mark.asyncio
    async def test_block_and_unblock_visitor(
        self, client: AsyncClient, visitor: AsyncClient, admin_headers, html_headers, set_policy
    ):
        """Test an operator-issued block and its removal"""
        await set_policy(active=True)
        await visitor.get("/", headers=html_headers)
        sid = visitor.cookies[settings.GUARD_SESSION_COOKIE]

        blocked = await client.post(
            f"/api/v1/admin/security/sessions/{sid}/block",
            json={"message": "Reported for scraping", "duration_minutes": 5},
            headers=admin_headers,
        )
        assert blocked.status_code == 200
        assert blocked.json()["reason"] == "external"
        assert blocked.json()["remaining_seconds"] == 300

        page = await visitor.get("/", headers=html_headers)
        assert page.status_code == 429
        assert "Reported for scraping" in page.text

        unblocked = await client.delete(f"/api/v1/admin/security/sessions/{sid}/block", headers=admin_headers)
        assert unblocked.status_code == 200
        assert (await visitor.get("/", headers=html_headers)).status_code == 200

    @pytest.mark.asyncio
    async def test_block_unknown_session(self, client: AsyncClient, admin_headers):
        """Test blocking a session that is not live"""
        response = await client.post(
            "/api/v1/admin/security/sessions/not-a-live-session/block", json={}, headers=admin_headers
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "SESSION_NOT_FOUND"


async def seed_site(store):
    await store.set("news", "n1", {"title": fake.sentence()})
    await store.set("news", "n2", {"title": fake.sentence()})
    await store.set("courses", "bca", {"name": "BCA", "seats": 60})


class TestBackupEndpoints:
    """Test Download Backup and Upload & Restore"""

    @pytest.mark.asyncio
    async def test_download_backup(self, client: AsyncClient, admin_headers, store):
        """Test the attachment, its name, and the stats header"""
        await seed_site(store)

        response = await client.get("/api/v1/admin/backup/download", headers=admin_headers)

        assert response.status_code == 200
        disposition = response.headers["content-disposition"]
        assert re.search(r'filename="pvm-backup-\d{4}-\d{2}-\d{2}\.json"', disposition)
        stats = json.loads(response.headers["x-backup-stats"])
        assert stats["news"] == 2
        assert stats["courses"] == 1

        manifest = response.json()
        assert manifest["metadata"]["exportedBy"] == admin_headers["X-Admin-Email"]
        assert {"id": "bca", "name": "BCA", "seats": 60} in manifest["collections"]["courses"]

    @pytest.mark.asyncio
    async def test_download_logs_activity(self, client: AsyncClient, admin_headers, store):
        """Test downloads are recorded in activity_logs"""
        await client.get("/api/v1/admin/backup/download", headers=admin_headers)

        entries = [fields for _, fields in await store.list(ACTIVITY_COLLECTION)]
        assert [e["target"] for e in entries] == ["backup"]
        assert entries[0]["action"] == "EXPORT_DATA"

    @pytest.mark.asyncio
    async def test_export_json(self, client: AsyncClient, admin_headers, store):
        """Test the inline export carries stats and unlisted collections"""
        await seed_site(store)
        await store.set("alumni", "a1", {"name": fake.name()})

        response = await client.get("/api/v1/admin/backup/export", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total_documents"] == 3
        assert data["unlisted_collections"] == ["alumni"]

    @pytest.mark.asyncio
    async def test_collections(self, client: AsyncClient, admin_headers):
        """Test the backed-up collection list"""
        response = await client.get("/api/v1/admin/backup/collections", headers=admin_headers)

        assert response.status_code == 200
        assert len(response.json()["collections"]) == 17

    @pytest.mark.asyncio
    async def test_restore_upload(self, client: AsyncClient, admin_headers, store):
        """Test uploading a backup writes every record"""
        payload = {
            "metadata": {"exportedBy": "old-admin@pvm.edu"},
            "collections": {
                "news": [{"id": "n1", "title": "Restored"}],
                "courses": [{"id": "bca", "name": "BCA"}, {"id": "bba", "name": "BBA"}],
            },
        }

        response = await client.post(
            "/api/v1/admin/backup/restore",
            files={"file": ("pvm-backup-2024-01-01.json", json.dumps(payload), "application/json")},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total_restored"] == 3
        assert data["collections_touched"] == 2
        assert data["message"] == "Successfully restored 3 documents across 2 collections."
        assert data["warnings"]
        assert await store.get("courses", "bba") == {"name": "BBA"}

    @pytest.mark.asyncio
    async def test_restore_invalid_file(self, client: AsyncClient, admin_headers, store):
        """Test a file without collections answers 400 and writes nothing"""
        await seed_site(store)
        before = await store.list("news")

        response = await client.post(
            "/api/v1/admin/backup/restore",
            files={"file": ("notes.json", json.dumps({"news": []}), "application/json")},
            headers=admin_headers,
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_BACKUP"
        assert error["message"] == "Invalid backup file format"
        assert await store.list("news") == before

    @pytest.mark.asyncio
    async def test_restore_unlisted_needs_flag(self, client: AsyncClient, admin_headers, store):
        """Test unlisted collections are refused unless allowed"""
        content = json.dumps({"collections": {"alumni": [{"id": "a1", "name": "Asha"}]}})

        refused = await client.post(
            "/api/v1/admin/backup/restore",
            files={"file": ("backup.json", content, "application/json")},
            headers=admin_headers,
        )
        allowed = await client.post(
            "/api/v1/admin/backup/restore",
            files={"file": ("backup.json", content, "application/json")},
            data={"allow_unlisted": "true"},
            headers=admin_headers,
        )

        assert refused.status_code == 400
        assert refused.json()["error"]["details"]["collections"] == ["alumni"]
        assert allowed.status_code == 200
        assert await store.get("alumni", "a1") == {"name": "Asha"}

    @pytest.mark.asyncio
    async def test_backup_requires_admin(self, client: AsyncClient):
        """Test anonymous callers cannot download backups"""
        response = await client.get("/api/v1/admin/backup/download")

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_export_rate_limited(self, client: AsyncClient, admin_headers):
        """Test the strict backup limit"""
        statuses = [
            (await client.get("/api/v1/admin/backup/export", headers=admin_headers)).status_code
            for _ in range(6)
        ]

        assert statuses[:5] == [200] * 5
        assert statuses[5] == 429
