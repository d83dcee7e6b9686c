from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("ECR_DB_PATH", "ecr.db")
    namespace: str = os.getenv("ECR_NAMESPACE", "")
    essential_label: str = os.getenv("ECR_ESSENTIAL_LABEL", "ecr.io/essential-container")
    default_essential: str = os.getenv("ECR_DEFAULT_ESSENTIAL", "main")
    action: str = os.getenv("ECR_ACTION", "inject-kill")
    act_on_first_observation: bool = _env_bool("ECR_ACT_ON_FIRST_OBSERVATION", False)
    emit_kube_events: bool = _env_bool("ECR_EMIT_KUBE_EVENTS", True)

    # Kill helper
    helper_name: str = os.getenv("ECR_HELPER_NAME", "essential-container-sidecar")
    helper_image: str = os.getenv("ECR_HELPER_IMAGE", "busybox")
    kill_signal: str = os.getenv("ECR_KILL_SIGNAL", "INT")

    # Loop
    workers: int = _env_int("ECR_WORKERS", 2)
    watch_timeout_s: int = _env_int("ECR_WATCH_TIMEOUT_S", 300)
    backoff_base_ms: int = _env_int("ECR_BACKOFF_BASE_MS", 5)
    backoff_max_s: int = _env_int("ECR_BACKOFF_MAX_S", 1000)

    # API process
    run_controller: bool = _env_bool("ECR_RUN_CONTROLLER", True)
    admin_user: str = os.getenv("ECR_ADMIN_USER", "admin")
    admin_password: str = os.getenv("ECR_ADMIN_PASSWORD", "change-me")

    # Email alerting (optional)
    enable_email: bool = _env_bool("ECR_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("ECR_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("ECR_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("ECR_SMTP_USER")
    smtp_password: str | None = os.getenv("ECR_SMTP_PASSWORD")
    email_from: str | None = os.getenv("ECR_EMAIL_FROM")
    email_to: str | None = os.getenv("ECR_EMAIL_TO")


settings = Settings()
