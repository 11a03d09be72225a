"""
Application configuration management.
"""

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Webhook
    webhook_secret: str = ""
    build_definition_name: str = "docs-preview-build"

    # Build trigger
    watch_paths: List[str] = [
        "docs/**",
        "mkdocs.yml",
        "pyproject.toml",
        "uv.lock",
        ".azure-pipelines/docs-preview-build.yml",
    ]
    render_command: List[str] = ["uv", "run", "mkdocs", "build"]
    render_timeout_seconds: int = 900

    # Artifact handoff
    artifact_backend: Literal["redis", "local"] = "redis"
    artifact_dir: Path = Path("artifacts")
    artifact_retention_days: int = 1

    # Destination store
    destination_backend: Literal["git", "local"] = "git"
    destination_repo_url: str = ""
    destination_branch: str = "main"
    destination_workdir: Path = Path(".docs-preview-checkout")
    destination_local_root: Path = Path("previews")
    git_author_name: str = "docs-preview[bot]"
    git_author_email: str = "docs-preview[bot]@users.noreply.github.io"
    push_conflict_attempts: int = 3

    # Notification
    notifier_backend: Literal["azure_devops", "log"] = "azure_devops"
    preview_base_url: str = "https://docs-preview.github.io/docs"
    comment_tag: str = "docs-preview"
    local_preview_help_url: Optional[str] = None
    azure_devops_org: str = ""
    azure_devops_project: Optional[str] = None
    azure_devops_repository_id: str = ""

    # Coordination
    lock_scope: Literal["target", "global"] = "target"
    lock_timeout_seconds: int = 600
    lock_blocking_timeout_seconds: int = 900
    supersede_queued: bool = True
    external_call_retries: int = 0
    retry_base_delay: float = 1.0

    # Application
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


class DeployCredentials(BaseSettings):
    """
    Publishing credentials.

    Only the publish side loads this object. The build side never constructs
    it, so untrusted build steps have no path to the deploy key or the token.
    """

    ssh_key_path: Optional[Path] = None
    azure_devops_pat: Optional[SecretStr] = None

    class Config:
        env_prefix = "DOCS_PREVIEW_DEPLOY_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()
