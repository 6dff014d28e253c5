from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from increm.domain.constants import (
    BATCH_DELAY_MS,
    DEBOUNCE_MS,
    DEFAULT_CARD_PRIORITY,
    DEFAULT_CARDS_PER_ITEM,
    DEFAULT_INITIAL_INTERVAL,
    DEFAULT_ITEM_PRIORITY,
    DEFAULT_MULTIPLIER,
    DEFAULT_RANDOMNESS,
    MAX_PRIORITY,
    MIN_PRIORITY,
    PROPAGATION_BATCH_SIZE,
)
from increm.domain.errors import ConfigurationError

CONFIG_FILES = [
    Path.home() / ".config/increm/config.toml",
    Path.home() / ".increm.toml",
]


def clamp_priority(value: Any) -> int:
    """
    Coerce a priority to an int in [0, 100].

    Out-of-range numbers are clamped silently.

    Raises:
        ConfigurationError: if the value is not a number at all.
    """
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Priority must be a number, got {value!r}") from e
    return max(MIN_PRIORITY, min(MAX_PRIORITY, number))


class AppConfig(BaseSettings):
    """
    Configuration model for increm.
    Supports loading from:
    1. Environment variables (INCREM_*)
    2. Config file (~/.config/increm/config.toml)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="INCREM_",
        toml_file=CONFIG_FILES,
        extra="ignore",
    )

    # Priorities
    default_priority: int = DEFAULT_ITEM_PRIORITY
    default_card_priority: int = DEFAULT_CARD_PRIORITY

    # Scheduling
    initial_interval: int = DEFAULT_INITIAL_INTERVAL  # days until a new item is first due
    multiplier: float = DEFAULT_MULTIPLIER

    # Queue
    cards_per_item: int | Literal["no-rem", "no-cards"] = DEFAULT_CARDS_PER_ITEM
    sorting_randomness: float = DEFAULT_RANDOMNESS
    performance_mode: Literal["full", "light"] = "full"

    # Performance
    debounce_ms: int = DEBOUNCE_MS
    propagation_batch_size: int = PROPAGATION_BATCH_SIZE
    batch_delay_ms: int = BATCH_DELAY_MS

    # Host backend
    backend: Literal["snapshot", "connect"] = "snapshot"
    snapshot_path: Path | None = None
    host_url: str = "http://127.0.0.1:8766"

    # Paths / UI
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".config/increm/logs")
    verbose: int = 1

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        toml_file = None
        for f in CONFIG_FILES:
            if f.exists():
                toml_file = f
                break

        # Later sources lose: explicit overrides beat env, env beats the file
        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("default_priority", "default_card_priority", mode="before")
    @classmethod
    def clamp_priorities(cls, v: Any) -> int:
        return clamp_priority(v)

    @field_validator("sorting_randomness", mode="before")
    @classmethod
    def clamp_randomness(cls, v: Any) -> float:
        return min(1.0, max(0.0, float(v)))

    @field_validator("cards_per_item", mode="before")
    @classmethod
    def parse_cards_per_item(cls, v: Any) -> int | str:
        if isinstance(v, str) and v not in ("no-rem", "no-cards"):
            return max(0, int(v))
        if isinstance(v, int):
            return max(0, v)
        return v

    @field_validator("snapshot_path", mode="before")
    @classmethod
    def resolve_snapshot_path(cls, v: Any) -> Path | None:
        if v is None:
            return None
        return Path(v).expanduser().resolve()


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/increm/config.toml (if exists)
    3. Environment variables (INCREM_*)
    4. cli_overrides (passed from Typer or the HTTP API)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
