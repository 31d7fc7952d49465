import os
from functools import lru_cache
from pathlib import Path

from errors import ConfigError


OVERDRAFT_POLICIES = ("reject", "warn")


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        overdraft_policy: str,
        envelopes_config_path: Path,
        user_ids: list[str],
        rollover_hour: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.overdraft_policy = overdraft_policy
        self.envelopes_config_path = envelopes_config_path
        self.user_ids = user_ids
        self.rollover_hour = rollover_hour


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("ENVELOPES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _parse_user_ids(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "envelopes.db"
    database_url = os.getenv("ENVELOPES_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("ENVELOPES_TIMEZONE", "UTC")

    overdraft_policy = os.getenv("ENVELOPES_OVERDRAFT_POLICY", "reject").lower()
    if overdraft_policy not in OVERDRAFT_POLICIES:
        raise ConfigError(
            f"ENVELOPES_OVERDRAFT_POLICY must be one of {', '.join(OVERDRAFT_POLICIES)}"
        )

    envelopes_config_path = Path(os.getenv("ENVELOPES_CONFIG_PATH", "./config.toml"))
    user_ids = _parse_user_ids(os.getenv("ENVELOPES_USER_IDS", ""))

    try:
        rollover_hour = int(os.getenv("ENVELOPES_ROLLOVER_HOUR", "0"))
    except ValueError as exc:
        raise ConfigError("ENVELOPES_ROLLOVER_HOUR must be an integer") from exc
    if not 0 <= rollover_hour <= 23:
        raise ConfigError("ENVELOPES_ROLLOVER_HOUR must be between 0 and 23")

    return Settings(
        database_url=database_url,
        timezone=timezone,
        overdraft_policy=overdraft_policy,
        envelopes_config_path=envelopes_config_path,
        user_ids=user_ids,
        rollover_hour=rollover_hour,
    )
