from pydantic_settings import BaseSettings
from typing import Literal


class Settings(BaseSettings):
    # API Configuration
    debug: bool = False
    environment: str = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_prefix: str = "/api/v1"

    # Database Configuration
    database_url: str = "sqlite:///./data/executions.db"

    # Execution tracking
    # Used when a result is recorded without an explicit environment
    default_test_environment: str = "staging"
    # "optimistic" keeps local state when a save fails, "rollback" restores it
    write_policy: Literal["optimistic", "rollback"] = "optimistic"
    # Serialize saves for the same test case within a view
    serialize_saves_per_test_case: bool = True
    # Upper bound on concurrently open tracker views held in memory
    max_open_views: int = 256

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
