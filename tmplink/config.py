"""
Configuration management for tmplink.

This module uses Pydantic's BaseSettings to manage configuration
through environment variables. It provides a centralized and typed
way to handle engine settings.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Engine settings.

    These settings are loaded from environment variables prefixed with
    ``TMPLINK_`` or from a local ``.env`` file.
    """

    # Database
    DB_URL: str = "sqlite+pysqlite:///data/tmplink.db"
    DB_ECHO: bool = False

    # Batching of generated DML
    SQL_BUFFER_LIMIT: int = 65535  # bytes
    BULK_INSERT_CHUNK: int = 1000  # rows per insert statement
    DELETE_BATCH_SIZE: int = 950  # ids per "in (...)" clause

    # Audit
    AUDIT_ENABLED: bool = True
    AUDIT_USER_ID: int = 3  # super admin user type

    # Audit flush retry on transient store errors
    FLUSH_RETRIES: int = 3
    FLUSH_RETRY_DELAY: float = 0.1  # seconds

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        env_prefix="TMPLINK_",
    )


settings = Settings()
