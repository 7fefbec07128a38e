import os

from dotenv import load_dotenv
from google.auth import default as google_auth_default
from google.cloud import secretmanager
from google.oauth2 import service_account
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from renovatr.base_utils import logger
from renovatr.entities import Base

load_dotenv()

# --- Configuration ---
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "")

DATABASE_URL        = os.getenv("DATABASE_URL", "")
DB_HOST             = os.getenv("DB_HOST", "localhost")
DB_PORT             = int(os.getenv("DB_PORT", "5432"))
DB_NAME             = os.getenv("DB_NAME", "renovatr")
DB_USER             = os.getenv("DB_USER", "postgres")
DB_PASSWORD         = os.getenv("DB_PASSWORD")
DB_SECRET_ID        = os.getenv("DB_SECRET_ID")

LOCAL_SQLITE_URL = "sqlite:///renovatr.db"


def _build_creds():
    key_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    scopes = ["https://www.googleapis.com/auth/cloud-platform"]
    if key_path and os.path.exists(key_path):
        return service_account.Credentials.from_service_account_file(key_path, scopes=scopes)
    creds, _ = google_auth_default(scopes=scopes)
    return creds


def get_db_password() -> str:
    global DB_PASSWORD

    if DB_PASSWORD:
        return DB_PASSWORD

    if DB_SECRET_ID:
        creds = _build_creds()
        client = secretmanager.SecretManagerServiceClient(credentials=creds)
        name = client.secret_version_path(PROJECT_ID, DB_SECRET_ID, "latest")
        resp = client.access_secret_version(request={"name": name})
        DB_PASSWORD = resp.payload.data.decode("utf-8")
        return DB_PASSWORD

    raise RuntimeError("No DB_PASSWORD and no Secret Manager configured")


def get_database_url() -> str:
    if DATABASE_URL:
        return DATABASE_URL
    if DB_HOST == "localhost":
        return LOCAL_SQLITE_URL
    return f"postgresql+pg8000://{DB_USER}:{get_db_password()}@{DB_HOST}:{DB_PORT}/{DB_NAME}"


def get_db_engine(url: str | None = None):
    url = url or get_database_url()

    if url.startswith("sqlite"):
        logger.info(f"[DB] Using local SQLite: {url}")
        return create_engine(url, connect_args={"check_same_thread": False})

    logger.info(f"[DB] Connecting to Postgres at {DB_HOST}:{DB_PORT}/{DB_NAME}")
    # pg8000 supports 'timeout' in seconds
    return create_engine(
        url,
        pool_pre_ping=True,
        connect_args={"timeout": 10},
    )


def create_session_factory(url: str | None = None, create_tables: bool = True) -> sessionmaker:
    engine = get_db_engine(url)
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
