"""
Project file uploads on local storage.
"""
import pytest

from app.storage.local_provider import LocalStorageProvider
from app.storage.provider import InvalidStoragePath


def _upload(client, project_id, content=b"floor plan", name="Plan A.pdf", **form):
    return client.post(
        "/api/files",
        data={"project_id": project_id, **form},
        files={"file": (name, content, "application/pdf")},
    )


class TestUpload:
    def test_upload_and_fetch(self, admin_client, project):
        resp = _upload(admin_client, project["id"])
        assert resp.status_code == 201, resp.text
        record = resp.json()["file"]
        assert record["name"] == "Plan A.pdf"
        assert record["file_size"] == len(b"floor plan")
        assert record["file_url"].startswith(f"/uploads/{project['id']}/")
        assert record["file_url"].endswith("-plan-a.pdf")

        fetched = admin_client.get(record["file_url"])
        assert fetched.status_code == 200
        assert fetched.content == b"floor plan"

        listed = admin_client.get("/api/files", params={"project_id": project["id"]}).json()["files"]
        assert [f["id"] for f in listed] == [record["id"]]

    def test_empty_file(self, admin_client, project):
        resp = _upload(admin_client, project["id"], content=b"")
        assert resp.status_code == 400

    def test_foreign_milestone(self, admin_client, project):
        other = admin_client.post("/api/projects", json={"name": "P2"}).json()["project"]
        m = admin_client.post("/api/milestones", json={"project_id": other["id"], "name": "M"}).json()["milestone"]
        resp = _upload(admin_client, project["id"], milestone_id=m["id"])
        assert resp.status_code == 404

    def test_out_of_scope_project(self, user_client, project):
        assert _upload(user_client, project["id"]).status_code == 404

    def test_delete_removes_stored_object(self, admin_client, project):
        record = _upload(admin_client, project["id"]).json()["file"]
        assert admin_client.delete(f"/api/files/{record['id']}").json() == {"success": True}
        assert admin_client.get(record["file_url"]).status_code == 404


class TestServeUploads:
    def test_missing_file(self, anon_client):
        assert anon_client.get("/uploads/nothing/here.txt").status_code == 404

    def test_traversal_rejected(self, anon_client):
        assert anon_client.get("/uploads/..%2F..%2Fetc%2Fpasswd").status_code == 400


class TestLocalStorageProvider:
    def test_resolve_rejects_escape(self, tmp_path):
        storage = LocalStorageProvider(str(tmp_path))
        with pytest.raises(InvalidStoragePath):
            storage.resolve("../../etc/passwd")

    def test_save_exists_delete(self, tmp_path):
        storage = LocalStorageProvider(str(tmp_path))
        stored = storage.save("p/readme.txt", b"hi", "text/plain")
        assert stored.url == "/uploads/p/readme.txt"
        assert storage.exists("p/readme.txt")
        storage.delete("p/readme.txt")
        assert not storage.exists("p/readme.txt")
        assert not storage.exists("../outside.txt")
