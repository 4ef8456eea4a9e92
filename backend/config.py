"""
Configuration management for the FastAPI backend
"""

import os
from typing import Optional
from dotenv import load_dotenv
import structlog

# Load environment variables
load_dotenv()

logger = structlog.get_logger()


class Settings:
    """Application settings"""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./story_video.db")

    # Redis
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    REDIS_MAX_CONNECTIONS: int = int(os.getenv("REDIS_MAX_CONNECTIONS", "50"))
    REDIS_SOCKET_TIMEOUT: int = int(os.getenv("REDIS_SOCKET_TIMEOUT", "5"))
    REDIS_SOCKET_CONNECT_TIMEOUT: int = int(os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "5"))
    REDIS_RETRY_ON_TIMEOUT: bool = os.getenv("REDIS_RETRY_ON_TIMEOUT", "true").lower() == "true"
    REDIS_HEALTH_CHECK_INTERVAL: int = int(os.getenv("REDIS_HEALTH_CHECK_INTERVAL", "30"))

    # CORS
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "http://localhost:3000")

    # Application
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))
    API_KEY: str = os.getenv("API_KEY", "")  # Empty disables the X-API-Key check

    # Provider selection (one adapter per vendor, chosen here rather than at call sites)
    SCENE_PROVIDER: str = os.getenv("SCENE_PROVIDER", "replicate")  # Options: "replicate" or "zhipu"
    IMAGE_PROVIDER: str = os.getenv("IMAGE_PROVIDER", "replicate")  # Options: "replicate" or "dashscope"
    VIDEO_PROVIDER: str = os.getenv("VIDEO_PROVIDER", "replicate")  # Options: "replicate" or "dashscope"

    # Model registry names (None = registry default for the provider)
    SCENE_MODEL: Optional[str] = os.getenv("SCENE_MODEL") or None
    IMAGE_MODEL: Optional[str] = os.getenv("IMAGE_MODEL") or None
    VIDEO_MODEL: Optional[str] = os.getenv("VIDEO_MODEL") or None

    # API Keys
    REPLICATE_API_TOKEN: str = os.getenv("REPLICATE_API_TOKEN", "")
    ZHIPU_API_KEY: str = os.getenv("ZHIPU_API_KEY", "")
    DASHSCOPE_API_KEY: str = os.getenv("DASHSCOPE_API_KEY", "")

    # Provider retry policy: attempt n waits n * PROVIDER_RETRY_DELAY seconds
    PROVIDER_MAX_RETRIES: int = int(os.getenv("PROVIDER_MAX_RETRIES", "3"))
    PROVIDER_RETRY_DELAY: float = float(os.getenv("PROVIDER_RETRY_DELAY", "2.0"))

    # Provider timeouts (in seconds)
    TEXT_SUBMIT_TIMEOUT: float = float(os.getenv("TEXT_SUBMIT_TIMEOUT", "60"))
    IMAGE_SUBMIT_TIMEOUT: float = float(os.getenv("IMAGE_SUBMIT_TIMEOUT", "120"))
    VIDEO_SUBMIT_TIMEOUT: float = float(os.getenv("VIDEO_SUBMIT_TIMEOUT", "120"))
    QUERY_TIMEOUT: float = float(os.getenv("QUERY_TIMEOUT", "30"))
    DOWNLOAD_TIMEOUT: float = float(os.getenv("DOWNLOAD_TIMEOUT", "120"))

    # Reconciliation of async video tasks (in seconds)
    RECONCILE_INTERVAL: float = float(os.getenv("RECONCILE_INTERVAL", "5"))
    RECONCILE_CEILING: float = float(os.getenv("RECONCILE_CEILING", "600"))
    RECONCILE_QUEUE_NAME: str = os.getenv("RECONCILE_QUEUE_NAME", "video_reconcile_queue")

    # Storage Configuration
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "local")  # Options: "local" or "s3"
    LOCAL_STORAGE_DIR: str = os.getenv("LOCAL_STORAGE_DIR", "./media")
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000/media")
    STORAGE_BUCKET: str = os.getenv("STORAGE_BUCKET", "")

    # AWS S3 Configuration
    AWS_ACCESS_KEY_ID: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    AWS_SECRET_ACCESS_KEY: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")
    PRESIGNED_URL_EXPIRY: int = int(os.getenv("PRESIGNED_URL_EXPIRY", "3600"))  # 1 hour in seconds

    @property
    def cors_origins_list(self) -> list:
        """Parse CORS origins into a list"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    def validate_provider_config(self) -> list:
        """
        Check that the selected providers have credentials.

        Missing keys are reported, not fatal: adapters raise AIGenerationError
        on first use, so the CRUD surface stays usable without vendor keys.

        Returns:
            List of missing environment variable names
        """
        required = {
            "replicate": "REPLICATE_API_TOKEN",
            "zhipu": "ZHIPU_API_KEY",
            "dashscope": "DASHSCOPE_API_KEY",
        }
        missing = []
        for provider in {self.SCENE_PROVIDER, self.IMAGE_PROVIDER, self.VIDEO_PROVIDER}:
            key_name = required.get(provider.lower())
            if key_name is None:
                raise ValueError(f"Unknown provider: {provider}")
            if not getattr(self, key_name) and key_name not in missing:
                missing.append(key_name)

        if missing:
            logger.warning("provider_credentials_missing", missing=missing)
        return missing

    def validate_storage_config(self) -> None:
        """
        Validate storage configuration at startup.
        Raises ValueError if the S3 backend lacks a bucket.
        """
        backend = self.STORAGE_BACKEND.lower()
        if backend not in ("local", "s3"):
            raise ValueError(f"Invalid STORAGE_BACKEND: {backend}. Must be 'local' or 's3'")
        if backend == "s3" and not self.STORAGE_BUCKET:
            raise ValueError("STORAGE_BUCKET is required when STORAGE_BACKEND=s3")


# Global settings instance
settings = Settings()
