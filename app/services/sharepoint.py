"""
Microsoft Graph client for SharePoint / OneDrive file storage.
Backups live in a top-level "Backups" folder, project files under "Projects/<project>".
"""
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
import structlog
from slugify import slugify

from ..config import settings


log = structlog.get_logger()

BACKUPS_FOLDER = "Backups"
PROJECTS_FOLDER = "Projects"


class GraphError(Exception):
    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Graph request failed ({status_code}): {body}")


class GraphClient:
    """Client for the Graph drive endpoints on behalf of a signed-in user"""

    def __init__(self, access_token: str, site_id: Optional[str] = None, drive_id: Optional[str] = None):
        if not access_token:
            raise ValueError("Microsoft access token is required")
        self.access_token = access_token
        self.site_id = site_id if site_id is not None else settings.sharepoint_site_id
        self.drive_id = drive_id if drive_id is not None else settings.sharepoint_drive_id
        self.base_url = settings.graph_base_url.rstrip("/")

    @property
    def drive_path(self) -> str:
        if self.site_id:
            return f"/sites/{self.site_id}/drive"
        if self.drive_id:
            return f"/drives/{self.drive_id}"
        # default OneDrive for Business of the signed-in user
        return "/me/drive"

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {self.access_token}"}
        headers.update(kwargs.pop("headers", {}))
        with httpx.Client(timeout=kwargs.pop("timeout", 60.0), follow_redirects=True) as client:
            response = client.request(method, url, headers=headers, **kwargs)
        if response.status_code >= 400:
            raise GraphError(response.status_code, response.text)
        return response

    def _json(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = self._request(method, path, **kwargs)
        return response.json() if response.content else {}

    # ---------- folders ----------
    def get_or_create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        lookup = (
            f"{self.drive_path}/items/{parent_id}:/{quote(name)}"
            if parent_id
            else f"{self.drive_path}/root:/{quote(name)}"
        )
        try:
            return self._json("GET", lookup)["id"]
        except GraphError as e:
            if e.status_code != 404:
                raise
        children = f"{self.drive_path}/items/{parent_id}/children" if parent_id else f"{self.drive_path}/root/children"
        try:
            created = self._json("POST", children, json={
                "name": name,
                "folder": {},
                "@microsoft.graph.conflictBehavior": "fail",
            })
            log.info("sharepoint_folder_created", name=name)
            return created["id"]
        except GraphError as e:
            if e.status_code != 409:
                raise
            # created concurrently
            return self._json("GET", lookup)["id"]

    # ---------- files ----------
    def upload(self, folder_id: str, file_name: str, content: bytes, content_type: str = "application/octet-stream") -> Dict[str, Optional[str]]:
        uploaded = self._json(
            "PUT",
            f"{self.drive_path}/items/{folder_id}:/{quote(file_name)}:/content",
            content=content,
            headers={"Content-Type": content_type},
            timeout=300.0,
        )
        details = self._json("GET", f"{self.drive_path}/items/{uploaded['id']}")
        return {
            "id": uploaded["id"],
            "web_url": details.get("webUrl"),
            "download_url": details.get("@microsoft.graph.downloadUrl") or details.get("webUrl"),
        }

    def upload_backup(self, content: bytes, file_name: str) -> Dict[str, Optional[str]]:
        folder_id = self.get_or_create_folder(BACKUPS_FOLDER)
        result = self.upload(folder_id, file_name, content, "application/zip")
        log.info("sharepoint_backup_uploaded", file_name=file_name, web_url=result.get("web_url"))
        return result

    def upload_project_file(self, project_name: str, file_name: str, content: bytes, content_type: str) -> Dict[str, Optional[str]]:
        projects_id = self.get_or_create_folder(PROJECTS_FOLDER)
        folder_id = self.get_or_create_folder(slugify(project_name) or "project", parent_id=projects_id)
        return self.upload(folder_id, file_name, content, content_type)

    def list_backups(self, prefixes: tuple) -> List[Dict[str, Any]]:
        folder_id = self.get_or_create_folder(BACKUPS_FOLDER)
        items = self._json("GET", f"{self.drive_path}/items/{folder_id}/children").get("value", [])
        backups = [
            {
                "id": f["id"],
                "name": f["name"],
                "size": f.get("size"),
                "created_at": f.get("createdDateTime") or f.get("lastModifiedDateTime"),
                "web_url": f.get("webUrl"),
            }
            for f in items
            if "folder" not in f and f.get("name", "").endswith(".zip") and f.get("name", "").startswith(prefixes)
        ]
        backups.sort(key=lambda b: b["created_at"] or "", reverse=True)
        return backups

    def download(self, item_id: str) -> bytes:
        return self._request("GET", f"{self.drive_path}/items/{item_id}/content", timeout=300.0).content

    def delete(self, item_id: str) -> None:
        self._request("DELETE", f"{self.drive_path}/items/{item_id}")

    # ---------- profile ----------
    def get_photo(self, user_external_id: Optional[str] = None) -> Optional[bytes]:
        path = f"/users/{user_external_id}/photo/$value" if user_external_id else "/me/photo/$value"
        try:
            return self._request("GET", path).content
        except GraphError as e:
            if e.status_code == 404:
                return None
            raise
