"""Configuration and environment settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration"""

    # Token budgets
    DEFAULT_MAX_TOKENS: int = 2000
    MIN_MODE_TOKENS: int = 200

    # Table encoder caps
    TABLE_MAX_ROWS: int = 20
    TABLE_MAX_COLS: int = 15

    # Analysis limits
    MAX_GRID_CELLS: int = 10000  # advisory; larger grids are analysed with a warning
    MAX_RANGE_EXPANSION: int = 1000

    # Change history
    HISTORY_MAX_SNAPSHOTS: int = 50

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


# Global settings instance
settings = Settings()
