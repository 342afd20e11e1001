from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Relational store
    DATABASE_URL: str
    SQL_ECHO: bool = False
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 0
    DB_POOL_TIMEOUT: int = 30
    DB_STATEMENT_TIMEOUT_MS: int = 300_000
    RUN_MIGRATIONS: bool = True

    # Result routing / blob storage
    RESULTS_DIR: str = "var/results"
    RESULT_TTL_DAYS: int = 30
    ROW_THRESHOLD: int = 1000
    BYTE_THRESHOLD: int = 5_000_000

    # Ad-hoc query sandbox
    MAX_QUERY_LENGTH: int = 10_000

    # Job lifecycle
    JOB_TTL_DAYS: int = 30
    JOB_MAX_RETRIES: int = 2
    JOB_RETRY_BASE_DELAY: float = 1.0
    JOB_RETRY_MAX_DELAY: float = 30.0
    JOB_EXPECTED_DURATION_SECONDS: int = 300
    JOB_TIMEOUT_FACTOR: int = 3
    WATCHDOG_INTERVAL_SECONDS: int = 60
    WORKFLOW_DRIVER: Literal["background", "inline"] = "background"

    # Completion notifications
    NOTIFY_WEBHOOK_URL: Optional[str] = None
    NOTIFY_TIMEOUT_SECONDS: float = 5.0

    LOG_LEVEL: str = "INFO"

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def job_time_budget_seconds(self) -> int:
        """Wall-clock budget after which a running job is force-failed."""
        return self.JOB_EXPECTED_DURATION_SECONDS * self.JOB_TIMEOUT_FACTOR


# Create a single instance of the settings to use everywhere
settings = Settings()
