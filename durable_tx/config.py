from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log rendering: json or console")

    # Ledger RPC
    solana_rpc_url: str = Field(
        default="http://localhost:8899",
        description="JSON-RPC endpoint of the ledger",
        validation_alias=AliasChoices("solana_rpc_url", "SOLANA_RPC_URL", "RPC_URL"),
    )
    commitment: str = Field(
        default="confirmed",
        description="Commitment level for reads and confirmations (processed, confirmed, finalized)",
    )
    request_timeout_seconds: float = Field(default=30.0, gt=0, description="HTTP timeout per RPC call")
    max_retries: int = Field(default=3, ge=1, description="Transport retries for idempotent RPC reads")

    # Submission
    confirm_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="How long to wait for a submitted transaction to reach the commitment level",
    )
    confirm_poll_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Initial interval between signature status polls",
    )


# Global settings instance
settings = Settings()
