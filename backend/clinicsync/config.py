"""
Application configuration loaded from environment variables.

Supports switching between local and cloud environments for both
PostgreSQL and Firestore via DATABASE_MODE, plus the FHIR repository
connection used for clinical resource synchronization.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from backend directory
backend_dir = Path(__file__).parent.parent
load_dotenv(backend_dir / ".env")


class Config:
    """Application configuration."""

    # Flask settings
    DEBUG = os.getenv("FLASK_DEBUG", "0") == "1"
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    FLASK_ENV = os.getenv("FLASK_ENV", "development")
    PORT = int(os.getenv("PORT", "5001"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Clinic this deployment serves (used for projection paths and audit)
    CLINIC_ID = os.getenv("CLINIC_ID", "default-clinic")

    # Environment mode: "local" or "cloud"
    # Controls both PostgreSQL and Firestore database selection
    DATABASE_MODE = os.getenv("DATABASE_MODE", "local")

    # Full URL override (e.g. sqlite:// for tests); bypasses the mode switch
    DATABASE_URL = os.getenv("DATABASE_URL", "")

    # PostgreSQL - Local
    POSTGRES_HOST_LOCAL = os.getenv("POSTGRES_HOST_LOCAL", "localhost")
    POSTGRES_PORT_LOCAL = os.getenv("POSTGRES_PORT_LOCAL", "5432")
    POSTGRES_DB_LOCAL = os.getenv("POSTGRES_DB_LOCAL", "clinicsync")
    POSTGRES_USER_LOCAL = os.getenv("POSTGRES_USER_LOCAL", "postgres")
    POSTGRES_PASSWORD_LOCAL = os.getenv("POSTGRES_PASSWORD_LOCAL", "")

    # PostgreSQL - Cloud (GCP Cloud SQL)
    POSTGRES_HOST_CLOUD = os.getenv("POSTGRES_HOST_CLOUD", "")
    POSTGRES_PORT_CLOUD = os.getenv("POSTGRES_PORT_CLOUD", "5432")
    POSTGRES_DB_CLOUD = os.getenv("POSTGRES_DB_CLOUD", "clinicsync")
    POSTGRES_USER_CLOUD = os.getenv("POSTGRES_USER_CLOUD", "postgres")
    POSTGRES_PASSWORD_CLOUD = os.getenv("POSTGRES_PASSWORD_CLOUD", "")

    # FHIR repository (Medplum-compatible R4 server)
    FHIR_BASE_URL = os.getenv("FHIR_BASE_URL", os.getenv("MEDPLUM_BASE_URL", "http://localhost:8103"))
    FHIR_CLIENT_ID = os.getenv("FHIR_CLIENT_ID", "")
    FHIR_CLIENT_SECRET = os.getenv("FHIR_CLIENT_SECRET", "")
    FHIR_TIMEOUT_SECONDS = float(os.getenv("FHIR_TIMEOUT_SECONDS", "10"))

    # Concurrency for per-item order creation
    ORDER_FANOUT_WORKERS = int(os.getenv("ORDER_FANOUT_WORKERS", "4"))

    # Firestore / GCP
    GCP_CREDENTIALS_PATH = os.getenv("GCP_CREDENTIALS_PATH", "./gcp-credentials.json")
    GCP_PROJECT_ID = os.getenv("GCP_PROJECT_ID", "")
    FIRESTORE_DATABASE_LOCAL = os.getenv("FIRESTORE_DATABASE_LOCAL", "clinicsync-dev")
    FIRESTORE_DATABASE_CLOUD = os.getenv("FIRESTORE_DATABASE_CLOUD", "(default)")
    ENABLE_FIRESTORE = os.getenv("ENABLE_FIRESTORE", "false").lower() == "true"

    @classmethod
    def get_database_url(cls) -> str:
        """Build the primary store connection URL based on DATABASE_MODE."""
        if cls.DATABASE_URL:
            return cls.DATABASE_URL

        if cls.DATABASE_MODE == "cloud":
            host = cls.POSTGRES_HOST_CLOUD
            port = cls.POSTGRES_PORT_CLOUD
            db = cls.POSTGRES_DB_CLOUD
            user = cls.POSTGRES_USER_CLOUD
            password = cls.POSTGRES_PASSWORD_CLOUD
            mode_label = "CLOUD"
        else:
            host = cls.POSTGRES_HOST_LOCAL
            port = cls.POSTGRES_PORT_LOCAL
            db = cls.POSTGRES_DB_LOCAL
            user = cls.POSTGRES_USER_LOCAL
            password = cls.POSTGRES_PASSWORD_LOCAL
            mode_label = "LOCAL"

        if password:
            url = f"postgresql://{user}:{password}@{host}:{port}/{db}"
        else:
            url = f"postgresql://{user}@{host}:{port}/{db}"

        print(f"[Config] PostgreSQL: {mode_label} ({host})")
        return url

    @classmethod
    def get_firestore_database(cls) -> str:
        """Get Firestore database ID based on DATABASE_MODE."""
        if cls.DATABASE_MODE == "cloud":
            db = cls.FIRESTORE_DATABASE_CLOUD
            mode_label = "CLOUD"
        else:
            db = cls.FIRESTORE_DATABASE_LOCAL
            mode_label = "LOCAL"

        print(f"[Config] Firestore: {mode_label} ({db})")
        return db

    @classmethod
    def fhir_root(cls) -> str:
        """Base URL for FHIR R4 resource endpoints."""
        return cls.FHIR_BASE_URL.rstrip("/") + "/fhir/R4/"


# Singleton instance
config = Config()
