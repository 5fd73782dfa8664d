from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """
    Application configuration loaded from Environment Variables or .env file.
    Every value can be overridden with the APPREC_ prefix, e.g. APPREC_NODE_PORT.
    """

    NAMESPACE: str | None = None  # None watches every namespace
    KUBECONFIG: Path | None = None  # Only used outside the cluster

    API_GROUP: str = "op.service.cdl4566.com"
    API_VERSION: str = "v1alpha1"
    KIND: str = "OpServiceApplication"
    PLURAL: str = "opserviceapplications"

    SNAPSHOT_ANNOTATION: str = "old/spec"

    CONTAINER_PORT: int = 80
    SERVICE_PORT: int = 80
    NODE_PORT: int | None = 30080  # None lets the cluster allocate one
    PORT_NAME: str = "http"
    IMAGE_PULL_POLICY: str = "IfNotPresent"

    CONFLICT_RETRY_STEPS: int = 5
    CONFLICT_RETRY_DELAY: float = 0.01
    CONFLICT_RETRY_JITTER: float = 0.1

    REQUEUE_BASE_DELAY: float = 0.005
    REQUEUE_MAX_DELAY: float = 1000.0
    RESYNC_INTERVAL: int = 300
    CONTROL_INTERVAL: float = 0.1
    WORKERS: int = 1

    model_config = SettingsConfigDict(env_prefix="APPREC_", env_file=".env", extra="ignore")

    @property
    def api_version(self) -> str:
        return f"{self.API_GROUP}/{self.API_VERSION}"


@lru_cache
def get_settings() -> AppSettings:
    """
    Creates a singleton instance of AppSettings.
    Uses lru_cache to ensure the .env file is read only once.
    """
    return AppSettings()
