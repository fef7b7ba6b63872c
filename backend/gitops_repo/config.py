from pydantic import BaseModel
from functools import lru_cache
import os


class Settings(BaseModel):
    app_name: str = "GitOps Repository Service"
    database_url: str = "sqlite+aiosqlite:///./gitops.db"
    cors_origins: list[str] = ["http://localhost:5173"]
    root_dir: str = "/gitops"  # clones live under <root_dir>/<namespace>/<host>/<path>
    new_file_perm: int = 0o755
    upload_ttl_seconds: float = 3600.0
    file_size_limit: int = 10 * 1024 * 1024  # 10 MiB, uploads and downloads
    network_timeout: float | None = 60.0
    default_user: str = "admin"
    signer_name: str = "gitops"
    signer_email: str = "gitops@localhost"


@lru_cache
def get_settings() -> Settings:
    timeout = os.getenv("GITOPS_NETWORK_TIMEOUT")
    cors = os.getenv("GITOPS_CORS_ORIGINS")
    overrides = {
        "root_dir": os.getenv("GITOPS_ROOT_DIR"),
        "database_url": os.getenv("GITOPS_DATABASE_URL"),
        "upload_ttl_seconds": os.getenv("GITOPS_UPLOAD_TTL_SECONDS"),
        "default_user": os.getenv("GITOPS_DEFAULT_USER"),
        "signer_name": os.getenv("GITOPS_SIGNER_NAME"),
        "signer_email": os.getenv("GITOPS_SIGNER_EMAIL"),
    }
    settings = Settings(**{k: v for k, v in overrides.items() if v is not None})
    perm = os.getenv("GITOPS_NEW_FILE_PERM")
    if perm:
        settings.new_file_perm = int(perm, 8)
    if timeout is not None:
        settings.network_timeout = float(timeout) if timeout else None
    if cors:
        settings.cors_origins = [origin.strip() for origin in cors.split(",") if origin.strip()]
    return settings
