from pathlib import Path

from pydantic import PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict

from msglog_infrastructure.engine.provider import DEFAULT_ACCOUNT_ID


class EngineSettings(BaseSettings):
    """Runtime settings for planning and applying, read from `MSGLOG_*` variables."""

    model_config = SettingsConfigDict(env_prefix="MSGLOG_", case_sensitive=False)

    state_path: Path = Path("msglog.state.json")
    remote_path: Path = Path("msglog.remote.json")
    account_id: str = DEFAULT_ACCOUNT_ID
    max_attempts: PositiveInt = 5
    backoff_base_seconds: PositiveFloat = 0.5
    backoff_max_seconds: PositiveFloat = 30.0
    log_level: str = "INFO"

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        return min(
            self.backoff_base_seconds * 2 ** (attempt - 1), self.backoff_max_seconds
        )
