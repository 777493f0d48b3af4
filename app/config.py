from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    # Core
    environment: str = Field(default="dev")
    app_name: str = Field(default="LV Portal API")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Database (backup/restore operate on the sqlite file behind this URL)
    database_url: str = Field(
        default="sqlite:///./var/dev.db",
        alias="DATABASE_URL",
        description="e.g., sqlite:///./var/dev.db",
    )
    auto_create_db: bool = Field(default=True, alias="AUTO_CREATE_DB")

    # Session (JWT in an HTTP-only cookie)
    jwt_secret: str = Field(default="change-me", alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    session_ttl_seconds: int = Field(default=60 * 60 * 24 * 7, alias="SESSION_TTL")  # 7d
    session_cookie_name: str = Field(default="auth-token", alias="SESSION_COOKIE_NAME")
    cookie_secure: bool = Field(default=False, alias="COOKIE_SECURE")

    # Azure AD / Microsoft Graph
    azure_ad_client_id: Optional[str] = Field(default=None, alias="AZURE_AD_CLIENT_ID")
    azure_ad_client_secret: Optional[str] = Field(default=None, alias="AZURE_AD_CLIENT_SECRET")
    azure_ad_tenant_id: Optional[str] = Field(default=None, alias="AZURE_AD_TENANT_ID")
    graph_base_url: str = Field(default="https://graph.microsoft.com/v1.0", alias="GRAPH_BASE_URL")
    sharepoint_site_id: Optional[str] = Field(default=None, alias="SHAREPOINT_SITE_ID")
    sharepoint_drive_id: Optional[str] = Field(default=None, alias="SHAREPOINT_DRIVE_ID")
    initial_admin_email: Optional[str] = Field(default=None, alias="INITIAL_ADMIN_EMAIL")

    # Storage
    storage_provider: str = Field(default="local", alias="STORAGE_PROVIDER")  # local|sharepoint
    upload_dir: str = Field(default="uploads", alias="UPLOAD_DIR")

    # Backups
    admin_backup_secret: Optional[str] = Field(default=None, alias="ADMIN_BACKUP_SECRET")
    backup_scheduler_enabled: bool = Field(default=True, alias="BACKUP_SCHEDULER_ENABLED")
    backup_file_prefix: str = Field(default="lvportal", alias="BACKUP_FILE_PREFIX")

    # Google Maps / Places
    google_places_api_key: Optional[str] = Field(default=None, alias="GOOGLE_PLACES_API_KEY")

    # Public
    public_base_url: str = Field(default="http://localhost:8000", alias="PUBLIC_BASE_URL")

    @property
    def microsoft_enabled(self) -> bool:
        return bool(self.azure_ad_client_id and self.azure_ad_client_secret and self.azure_ad_tenant_id)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


settings = Settings()
