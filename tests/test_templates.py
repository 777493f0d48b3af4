"""
Project templates: CRUD, defaults, JSON export/import and instantiation.
"""
import json

import pytest


TEMPLATE = {
    "name": "Retail install",
    "description": "Standard store",
    "milestones": [
        {
            "name": "Pre-wire",
            "category": "Install",
            "tasks": [{"name": "Survey"}, {"name": "Pull cable"}],
        },
        {
            "name": "Trim-out",
            "tasks": [{"name": "Terminate"}, {"name": "Label", "order": 5}],
        },
    ],
}


def _tree(template):
    return [
        (m["name"], m["order"], [(t["name"], t["order"]) for t in m["tasks"]])
        for m in template["milestones"]
    ]


@pytest.fixture
def template(admin_client):
    resp = admin_client.post("/api/templates", json=TEMPLATE)
    assert resp.status_code == 201, resp.text
    return resp.json()["template"]


class TestTemplateCrud:
    def test_order_defaults_to_index(self, template):
        assert _tree(template) == [
            ("Pre-wire", 0, [("Survey", 0), ("Pull cable", 1)]),
            ("Trim-out", 1, [("Terminate", 0), ("Label", 5)]),
        ]

    def test_duplicate_name(self, admin_client, template):
        assert admin_client.post("/api/templates", json={"name": TEMPLATE["name"]}).status_code == 400

    def test_put_replaces_children(self, admin_client, template):
        resp = admin_client.put(
            f"/api/templates/{template['id']}",
            json={"milestones": [{"name": "Only", "tasks": [{"name": "One"}]}]},
        )
        assert resp.status_code == 200
        assert _tree(resp.json()["template"]) == [("Only", 0, [("One", 0)])]
        assert resp.json()["template"]["description"] == "Standard store"

    def test_single_default(self, admin_client, template):
        other = admin_client.post("/api/templates", json={"name": "Other", "isDefault": True}).json()["template"]
        admin_client.put(f"/api/templates/{template['id']}", json={"is_default": True})
        assert admin_client.get(f"/api/templates/{other['id']}").json()["template"]["is_default"] is False
        assert admin_client.get(f"/api/templates/{template['id']}").json()["template"]["is_default"] is True

    def test_cannot_delete_default(self, admin_client, template):
        admin_client.put(f"/api/templates/{template['id']}", json={"is_default": True})
        resp = admin_client.delete(f"/api/templates/{template['id']}")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot delete the default template"


class TestTemplateInterchange:
    def test_single_export_import_round_trip(self, admin_client, template):
        exported = admin_client.get("/api/templates/export", params={"id": template["id"]})
        assert exported.status_code == 200
        assert exported.headers["content-disposition"].startswith('attachment; filename="template-')
        payload = json.loads(exported.content)
        assert set(payload) == {"name", "description", "isDefault", "milestones"}

        admin_client.delete(f"/api/templates/{template['id']}")
        resp = admin_client.post("/api/templates/import", json=payload)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "imported": 1, "updated": 0, "errors": []}

        restored = admin_client.get("/api/templates").json()["templates"]
        assert len(restored) == 1
        assert _tree(restored[0]) == _tree(template)

    def test_bulk_import_upserts_by_name(self, admin_client, template):
        bundle = json.loads(admin_client.get("/api/templates/export").content)
        assert bundle["version"] == "1.0"
        assert "exportedAt" in bundle

        bundle["templates"][0]["milestones"] = [{"name": "Replaced", "tasks": []}]
        bundle["templates"].append({"name": "Brand new", "milestones": []})
        resp = admin_client.post("/api/templates/import", json=bundle)
        assert resp.json()["imported"] == 1
        assert resp.json()["updated"] == 1

        updated = admin_client.get(f"/api/templates/{template['id']}").json()["template"]
        assert [m["name"] for m in updated["milestones"]] == ["Replaced"]

    def test_duplicate_names_in_file_reported(self, admin_client):
        bundle = {"templates": [{"name": "Twice"}, {"name": "Twice"}]}
        body = admin_client.post("/api/templates/import", json=bundle).json()
        assert body["imported"] == 1
        assert len(body["errors"]) == 1


class TestInstantiation:
    def test_project_from_template(self, admin_client, template):
        resp = admin_client.post("/api/projects", json={"name": "Store 12", "template_id": template["id"]})
        assert resp.status_code == 201
        milestones = resp.json()["project"]["milestones"]
        assert [m["name"] for m in milestones] == ["Pre-wire", "Trim-out"]
        assert {m["status"] for m in milestones} == {"PENDING"}
        assert [t["name"] for t in milestones[0]["tasks"]] == ["Survey", "Pull cable"]

    def test_unknown_template(self, admin_client):
        resp = admin_client.post(
            "/api/projects", json={"name": "X", "template_id": "00000000-0000-0000-0000-000000000001"}
        )
        assert resp.status_code == 404
