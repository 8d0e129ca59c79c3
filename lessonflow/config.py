from __future__ import annotations

import os
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_AUTO_APPROVE_THRESHOLD,
    DEFAULT_CONFIG_PATH,
    DEFAULT_RESOURCE_FIELD,
    DEFAULT_STEP_ENDPOINTS,
)
from .definitions import WorkflowDefinition


class RedisConfig(BaseModel):
    """Configuration for the Redis job status store."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class StatusStoreConfig(BaseModel):
    """Job status store settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class JobClientConfig(BaseModel):
    """Settings for reaching the external step processors."""

    backend: Literal["inmemory", "http"] = "http"
    base_url: str = "http://localhost:3000/api"
    service_token: Optional[str] = None
    timeout: float = 30.0
    resource_field: str = DEFAULT_RESOURCE_FIELD
    endpoints: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_STEP_ENDPOINTS)
    )


class AuthConfig(BaseModel):
    """Bearer token verification; disabled while ``jwt_secret`` is unset."""

    jwt_secret: Optional[str] = None
    audience: Optional[str] = "authenticated"
    algorithms: List[str] = Field(default_factory=lambda: ["HS256"])
    leeway: int = 30

    @property
    def enabled(self) -> bool:
        return bool(self.jwt_secret)


class ApiConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000


def _default_step_inputs() -> Dict[str, Dict[str, Any]]:
    return {
        "flashcard_generation": {
            "auto_approve_threshold": DEFAULT_AUTO_APPROVE_THRESHOLD
        }
    }


class LessonflowConfig(BaseModel):
    """Top-level configuration model."""

    status_store: StatusStoreConfig = Field(default_factory=StatusStoreConfig)
    job_client: JobClientConfig = Field(default_factory=JobClientConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    database_url: Optional[str] = None
    log_level: str = "INFO"
    step_inputs: Dict[str, Dict[str, Any]] = Field(default_factory=_default_step_inputs)
    workflows: List[WorkflowDefinition] = Field(default_factory=list)


def load_config(path: Optional[str] = None) -> LessonflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to LESSONFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("LESSONFLOW_CONFIG", DEFAULT_CONFIG_PATH)
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = LessonflowConfig(**data)
    else:
        config = LessonflowConfig()

    env_db_url = os.getenv("LESSONFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_secret = os.getenv("LESSONFLOW_JWT_SECRET")
    if env_secret:
        config.auth.jwt_secret = env_secret
    env_token = os.getenv("LESSONFLOW_SERVICE_TOKEN")
    if env_token:
        config.job_client.service_token = env_token
    return config
