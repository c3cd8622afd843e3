"""Runtime settings read from the environment."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Receiptwise configuration.

    Every field is read from ``RECEIPTWISE_<FIELD>`` except the API keys,
    which use their providers' usual names, and the database path, read from
    ``RECEIPTWISE_DB_PATH``. Blank variables count as unset.
    """

    model_config = SettingsConfigDict(
        env_prefix="RECEIPTWISE_",
        case_sensitive=False,
        env_ignore_empty=True,
        extra="ignore",
        populate_by_name=True,
    )

    anthropic_api_key: str | None = Field(
        default=None,
        validation_alias="ANTHROPIC_API_KEY",
        description="Enables receipt extraction, chat and generative support lookup",
    )
    serper_api_key: str | None = Field(
        default=None,
        validation_alias="SERPER_API_KEY",
        description="Enables web-search support lookup",
    )
    database_path: Path = Field(
        default=Path("receipts.sqlite3"), validation_alias="RECEIPTWISE_DB_PATH"
    )
    uploads_dir: Path = Path("uploads")
    extraction_model: str = "claude-haiku-4-5"
    chat_model: str = "claude-haiku-4-5"
    chat_max_tokens: int = Field(default=1000, gt=0)
    extraction_timeout: float = Field(default=30.0, gt=0, description="Seconds")
    chat_timeout: float = Field(default=20.0, gt=0, description="Seconds")
    support_timeout: float = Field(default=10.0, gt=0, description="Seconds")
