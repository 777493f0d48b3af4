from ..services.sharepoint import GraphClient, GraphError
from .provider import StorageProvider, StoredFile


class SharePointStorageProvider(StorageProvider):
    """Stores project files in SharePoint under Projects/<project>/ on behalf of a user.

    Keys passed to save() are "<project name>/<file name>"; the returned key is the drive item id.
    """

    name = "sharepoint"

    def __init__(self, access_token: str):
        self._graph = GraphClient(access_token)

    def save(self, key: str, content: bytes, content_type: str) -> StoredFile:
        project_name, _, file_name = key.rpartition("/")
        uploaded = self._graph.upload_project_file(project_name or "project", file_name, content, content_type)
        return StoredFile(
            key=uploaded["id"],
            url=uploaded.get("download_url"),
            remote_id=uploaded["id"],
            remote_url=uploaded.get("web_url"),
        )

    def exists(self, key: str) -> bool:
        try:
            self._graph._request("GET", f"{self._graph.drive_path}/items/{key}")
            return True
        except GraphError as e:
            if e.status_code == 404:
                return False
            raise

    def delete(self, key: str) -> None:
        self._graph.delete(key)
