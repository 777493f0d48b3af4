"""
Admin endpoints: user management, label settings, backups and the backup schedule.
"""
import io
import json
import zipfile

import pytest


BACKUP_SECRET = "test-backup-secret"


class TestUserManagement:
    def test_cannot_demote_self(self, admin_client, admin_user):
        resp = admin_client.patch(f"/api/admin/users/{admin_user.id}", json={"role": "user"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot remove your own admin role"
        me = admin_client.get("/api/auth/me").json()
        assert me["role"] == "admin"

    def test_promote_then_demote(self, admin_client, regular_user):
        url = f"/api/admin/users/{regular_user.id}"
        assert admin_client.patch(url, json={"role": "admin"}).json()["user"]["role"] == "admin"
        assert admin_client.patch(url, json={"role": "user"}).json()["user"]["role"] == "user"

    def test_unknown_role(self, admin_client, regular_user):
        resp = admin_client.patch(f"/api/admin/users/{regular_user.id}", json={"role": "owner"})
        assert resp.status_code == 400

    def test_cannot_delete_self(self, admin_client, admin_user):
        resp = admin_client.delete(f"/api/admin/users/{admin_user.id}")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot delete your own account"

    def test_delete_user_removes_their_projects(self, admin_client, user_client, regular_user, project):
        user_client.post("/api/projects", json={"name": "Theirs"})
        assert admin_client.delete(f"/api/admin/users/{regular_user.id}").json() == {"success": True}

        names = [p["name"] for p in admin_client.get("/api/projects").json()["projects"]]
        assert names == ["P1"]
        emails = [u["email"] for u in admin_client.get("/api/admin/users").json()["users"]]
        assert emails == ["admin@example.com"]

    def test_delete_user_keeps_assigned_work(self, admin_client, regular_user, milestone):
        task = admin_client.post(
            "/api/tasks",
            json={"milestone_id": milestone["id"], "name": "T", "assigned_to_id": str(regular_user.id)},
        ).json()["task"]
        admin_client.delete(f"/api/admin/users/{regular_user.id}")
        resp = admin_client.get(f"/api/tasks/{task['id']}")
        assert resp.status_code == 200
        assert resp.json()["task"]["assigned_to"] is None

    def test_user_counts(self, admin_client, user_client):
        user_client.post("/api/projects", json={"name": "Theirs"})
        rows = {u["email"]: u for u in admin_client.get("/api/admin/users").json()["users"]}
        assert rows["tech@example.com"]["project_count"] == 1
        assert rows["admin@example.com"]["project_count"] == 0


class TestLabelSettings:
    def test_defaults_created_on_read(self, admin_client):
        settings = admin_client.get("/api/admin/label-settings").json()["settings"]
        assert settings["label_width"] == 2.0
        assert settings["label_template"] == "standard"
        assert settings["show_qr_code"] is True

    def test_partial_update(self, admin_client):
        resp = admin_client.put("/api/admin/label-settings", json={"font_size": 14, "show_serial_number": False})
        assert resp.status_code == 200
        settings = resp.json()["settings"]
        assert settings["font_size"] == 14
        assert settings["show_serial_number"] is False
        assert settings["qr_code_size"] == 80

    def test_rejects_non_positive_size(self, admin_client):
        assert admin_client.put("/api/admin/label-settings", json={"label_width": 0}).status_code == 400

    def test_admin_only(self, user_client):
        assert user_client.get("/api/admin/label-settings").status_code == 403


class TestBackupRestore:
    def test_backup_zip(self, admin_client):
        resp = admin_client.post("/api/admin/backup")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/zip"
        file_name = resp.headers["x-backup-filename"]
        assert file_name.startswith("lvportal-backup-")
        assert file_name in resp.headers["content-disposition"]

        with zipfile.ZipFile(io.BytesIO(resp.content)) as archive:
            assert sorted(archive.namelist()) == ["metadata.json", "test.db"]
            metadata = json.loads(archive.read("metadata.json"))
        assert metadata["type"] == "manual"
        assert metadata["version"] == "1.0"

    def test_restore_brings_back_earlier_state(self, admin_client):
        admin_client.post("/api/inventory", json={"name": "A", "quantity": 1})
        backup = admin_client.post("/api/admin/backup").content
        admin_client.post("/api/inventory", json={"name": "B", "quantity": 1})

        resp = admin_client.post(
            "/api/admin/restore", files={"file": ("backup.zip", backup, "application/zip")}
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["success"] is True
        assert body["restart_required"] is True
        assert body["snapshot"].startswith("test.db.pre-restore-")

        names = [i["name"] for i in admin_client.get("/api/inventory").json()["items"]]
        assert names == ["A"]

    def test_restore_rejects_non_zip(self, admin_client):
        resp = admin_client.post(
            "/api/admin/restore", files={"file": ("backup.zip", b"not a zip", "application/zip")}
        )
        assert resp.status_code == 400

    def test_restore_rejects_zip_without_database(self, admin_client):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr("metadata.json", "{}")
        resp = admin_client.post(
            "/api/admin/restore", files={"file": ("backup.zip", buffer.getvalue(), "application/zip")}
        )
        assert resp.status_code == 400


    def test_restore_rejects_broken_metadata(self, admin_client):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr("test.db", b"SQLite format 3\x00")
            archive.writestr("metadata.json", "{not json")
        resp = admin_client.post(
            "/api/admin/restore", files={"file": ("backup.zip", buffer.getvalue(), "application/zip")}
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid backup file - metadata is not valid JSON"
        # the live database is untouched
        assert admin_client.get("/api/auth/me").status_code == 200


class TestScheduledBackup:
    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer wrong"}, {"Authorization": BACKUP_SECRET}])
    def test_rejects_bad_secret(self, anon_client, headers):
        resp = anon_client.post("/api/admin/scheduled-backup", headers=headers)
        assert resp.status_code == 401

    def test_requires_microsoft_admin(self, anon_client, admin_user):
        resp = anon_client.post(
            "/api/admin/scheduled-backup", headers={"Authorization": f"Bearer {BACKUP_SECRET}"}
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "No admin user with Microsoft credentials found"

    def test_sharepoint_listing_needs_microsoft_account(self, admin_client):
        resp = admin_client.get("/api/admin/sharepoint-backups")
        assert resp.status_code == 400


class TestBackupSchedule:
    def test_empty(self, admin_client):
        body = admin_client.get("/api/admin/backup-schedule").json()
        assert body == {"schedule": None, "is_running": False}

    def test_disabled_schedule_is_saved_without_timer(self, admin_client):
        resp = admin_client.post("/api/admin/backup-schedule", json={"enabled": False, "frequency": "daily"})
        assert resp.status_code == 200
        schedule = resp.json()["schedule"]
        assert schedule["enabled"] is False
        assert schedule["next_run"] is None
        assert admin_client.get("/api/admin/backup-schedule").json()["is_running"] is False

    def test_enable_then_delete(self, admin_client):
        resp = admin_client.post("/api/admin/backup-schedule", json={"enabled": True, "frequency": "hourly"})
        assert resp.json()["schedule"]["next_run"] is not None
        body = admin_client.get("/api/admin/backup-schedule").json()
        assert body["is_running"] is True
        assert body["schedule"]["frequency"] == "hourly"

        assert admin_client.delete("/api/admin/backup-schedule").json() == {"success": True}
        assert admin_client.get("/api/admin/backup-schedule").json() == {"schedule": None, "is_running": False}

    def test_future_start_time_is_next_run(self, admin_client):
        resp = admin_client.post(
            "/api/admin/backup-schedule",
            json={"enabled": True, "frequency": "weekly", "start_time": "2099-05-01T08:00:00"},
        )
        assert resp.json()["schedule"]["next_run"].startswith("2099-05-01T08:00:00")

    def test_update_keeps_single_row(self, admin_client):
        first = admin_client.post("/api/admin/backup-schedule", json={"frequency": "daily"}).json()["schedule"]
        second = admin_client.post("/api/admin/backup-schedule", json={"frequency": "weekly"}).json()["schedule"]
        assert first["id"] == second["id"]
        assert second["frequency"] == "weekly"

    def test_frequency_required(self, admin_client):
        resp = admin_client.post("/api/admin/backup-schedule", json={"enabled": True})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "frequency is required"

    def test_unknown_frequency(self, admin_client):
        resp = admin_client.post("/api/admin/backup-schedule", json={"enabled": True, "frequency": "yearly"})
        assert resp.status_code == 400
