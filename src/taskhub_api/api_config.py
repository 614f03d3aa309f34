"""
Config for the TaskHub API.

This module creates a default instance of the Settings class from environment variables.
The app factory (taskhub_api.create_app) takes a Settings instance, so tests and
other embedders can construct and pass in their own instead of relying on the environment.
"""

import os
from dataclasses import dataclass, field

from pydantic import SecretStr


@dataclass
class APISettings:
    """API configuration settings."""

    environment: str = os.getenv("TASKHUB_ENV", "NOT_SET")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    first_admin_username: str = os.getenv("FIRST_ADMIN_USERNAME", "NOT_SET")
    first_admin_password: SecretStr = SecretStr(os.getenv("FIRST_ADMIN_PASSWORD", "NOT_SET"))


@dataclass
class DBSettings:
    """Relational database configuration settings."""

    url: SecretStr = SecretStr(os.getenv("DATABASE_URL", "NOT_SET"))
    echo_db_output: bool = bool(os.getenv("DB_ECHO", "False") == "True")  # anything but "True" is considered False


@dataclass
class SessionSettings:
    """
    Settings for the session cookie based auth.

    cleanup_probability is the chance per request that expired sessions are swept from the db.
    """

    duration_seconds: int = int(os.getenv("SESSION_DURATION_SECONDS", 60 * 60 * 24 * 7))  # 7 days
    cookie_name: str = os.getenv("SESSION_COOKIE_NAME", "session-id")
    cookie_secure: bool = bool(os.getenv("SESSION_COOKIE_SECURE", "True") == "True")
    cleanup_probability: float = float(os.getenv("SESSION_CLEANUP_PROBABILITY", "0.01"))


@dataclass
class ProjectSettings:
    """
    Settings for the project hierarchy.

    archive_cascades_tasks: when a project subtree is archived with cascade,
    also set the tasks of every archived project to archived. Off by default,
    so only project status changes.
    """

    max_depth: int = int(os.getenv("PROJECT_MAX_DEPTH", 10))
    archive_cascades_tasks: bool = bool(os.getenv("ARCHIVE_CASCADES_TASKS", "False") == "True")


@dataclass
class PermissionSettings:
    """
    legacy_project_access: also consult the deprecated users.project_access JSON column
    when a user has no grant row for a project.
    """

    legacy_project_access: bool = bool(os.getenv("LEGACY_PROJECT_ACCESS", "True") == "True")


@dataclass
class Settings:
    """Configuration settings for the TaskHub API."""

    api: APISettings = field(default_factory=APISettings)
    database: DBSettings = field(default_factory=DBSettings)
    sessions: SessionSettings = field(default_factory=SessionSettings)
    projects: ProjectSettings = field(default_factory=ProjectSettings)
    permissions: PermissionSettings = field(default_factory=PermissionSettings)

    def validate_api_settings(self) -> None:
        """
        Validate all required settings are actually set.
        This is run on startup of the API which means that later on in the codebase
        we don't have to check for any non set values, we can just assume they are set.
        """
        required_fields = {
            "TASKHUB_ENV": self.api.environment,
            "DATABASE_URL": self.database.url,
        }
        for setting_name, setting in required_fields.items():
            if isinstance(setting, str) and setting == "NOT_SET":
                raise ValueError(f"A required environment variable was not set: {setting_name=}")
            if isinstance(setting, SecretStr) and setting.get_secret_value() == "NOT_SET":
                raise ValueError(f"A required environment variable was not set: {setting_name=}")

        if not 0 <= self.sessions.cleanup_probability <= 1:
            raise ValueError("SESSION_CLEANUP_PROBABILITY must be between 0 and 1.")
        if self.projects.max_depth < 0:
            raise ValueError("PROJECT_MAX_DEPTH cannot be negative.")

        if (
            self.api.environment not in ["local_dev", "test"]
            and self.api.first_admin_password.get_secret_value() == "badpassword"
        ):
            raise ValueError("FIRST_ADMIN_PASSWORD was set to badpassword for a non local environment")


# Default instance built from the environment, used by the production entrypoint.
settings = Settings()
