import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str

    backend: str
    appwrite_endpoint: str
    appwrite_project_id: str
    appwrite_api_key: str
    database_id: str
    projects_collection_id: str
    tasks_collection_id: str
    storage_bucket_id: str
    developers_team_id: str

    # self-hosted backend
    database_url: str
    storage_backend: str
    storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    cookie_secure: bool
    session_ttl_hours: int
    max_attachment_bytes: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from None


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        backend=_getenv("BACKEND", "local").lower(),
        appwrite_endpoint=_getenv("APPWRITE_ENDPOINT", ""),
        appwrite_project_id=_getenv("APPWRITE_PROJECT_ID", ""),
        appwrite_api_key=_getenv("APPWRITE_API_KEY", ""),
        database_id=_getenv("APPWRITE_DATABASE_ID", "feedback-platform-db"),
        projects_collection_id=_getenv("APPWRITE_PROJECTS_COLLECTION_ID", "projects"),
        tasks_collection_id=_getenv("APPWRITE_TASKS_COLLECTION_ID", "tasks"),
        storage_bucket_id=_getenv("APPWRITE_STORAGE_BUCKET_ID", "task-screenshots"),
        developers_team_id=_getenv("APPWRITE_DEVELOPERS_TEAM_ID", "developers-team"),
        database_url=_getenv("DATABASE_URL", "sqlite:///tracker.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_root=_getenv("STORAGE_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        cookie_secure=_getenv("COOKIE_SECURE", "1") not in ("0", "false", "no"),
        session_ttl_hours=_getenv_int("SESSION_TTL_HOURS", 8),
        max_attachment_bytes=_getenv_int("MAX_ATTACHMENT_BYTES", 5 * 1024 * 1024),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "BACKEND": s.backend,
        "APPWRITE_ENDPOINT": s.appwrite_endpoint,
        "APPWRITE_PROJECT_ID": s.appwrite_project_id,
        "APPWRITE_API_KEY": s.appwrite_api_key,
        "DATABASE_ID": s.database_id,
        "PROJECTS_COLLECTION_ID": s.projects_collection_id,
        "TASKS_COLLECTION_ID": s.tasks_collection_id,
        "STORAGE_BUCKET_ID": s.storage_bucket_id,
        "DEVELOPERS_TEAM_ID": s.developers_team_id,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_ROOT": s.storage_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "SESSION_TTL_HOURS": s.session_ttl_hours,
        "MAX_ATTACHMENT_BYTES": s.max_attachment_bytes,
        # The backend credential lives in the "session" cookie; Flask's own
        # signed-session cookie gets a different name so the two never collide.
        "CREDENTIAL_COOKIE_NAME": "session",
        "CREDENTIAL_COOKIE_SECURE": s.cookie_secure,
        "SESSION_COOKIE_NAME": "tracker_flask",
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Strict",
        "SESSION_COOKIE_SECURE": is_production,
        # request body limit: attachment plus form fields
        "MAX_CONTENT_LENGTH": s.max_attachment_bytes + 1024 * 1024,
    }
