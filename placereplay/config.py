"""Configuration loading: a TOML file, overridden by PLACEREPLAY_* environment variables."""

import calendar
import tomllib
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .areas import SearchArea
from .decoder import Schema
from .errors import ConfigurationError
from .palette import normalise_colour
from .records import Rect, parse_timestamp

DEFAULT_CONFIG_PATH = Path("config.toml")

# moment just before the 2022 canvas started getting whited out
DEFAULT_FINAL_IMAGE_TIME = "2022-04-04 21:32:37.541 UTC"


def to_epoch_ms(value: Any) -> Any:
    """Accept "YYYY-MM-DD HH:MM:SS[.fff] UTC" strings, TOML datetimes or epoch ms."""
    if value is None or isinstance(value, int):
        return value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        return calendar.timegm(value.utctimetuple()) * 1000 + value.microsecond // 1000
    if isinstance(value, str):
        return parse_timestamp(value)
    raise ValueError(f"unsupported timestamp: {value!r}")


Timestamp = Annotated[int, BeforeValidator(to_epoch_ms)]


class Corner(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    x: int
    y: int


class AreaConfig(BaseModel):
    """
    One [[search_areas]] table. Bounds are given either as left/top/right/bottom
    or as start = {x, y} / end = {x, y} corners; both corners are inclusive.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str | None = None
    left: int | None = None
    top: int | None = None
    right: int | None = None
    bottom: int | None = None
    start: Corner | None = None
    end: Corner | None = None
    start_time: Timestamp | None = None
    end_time: Timestamp | None = None
    colours: list[str] | None = None
    is_optional: bool = False

    @field_validator("colours", mode="before")
    @classmethod
    def validate_colours(cls, value: Any) -> Any:
        if isinstance(value, str):
            return None if value.strip().lower() == "all" else [value]
        return value

    @model_validator(mode="after")
    def validate_bounds_form(self) -> "AreaConfig":
        sides = (self.left, self.top, self.right, self.bottom)
        corners = (self.start, self.end)
        uses_sides = any(v is not None for v in sides)
        uses_corners = any(v is not None for v in corners)
        if uses_sides and uses_corners:
            raise ValueError("use either left/top/right/bottom or start/end, not both")
        if uses_corners and not all(v is not None for v in corners):
            raise ValueError("both start and end corners are required")
        if not uses_corners and not all(v is not None for v in sides):
            raise ValueError("left, top, right and bottom are all required")
        return self

    def rect(self) -> Rect:
        if self.start is not None and self.end is not None:
            return Rect(self.start.x, self.start.y, self.end.x, self.end.y)
        return Rect(self.left, self.top, self.right, self.bottom)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PLACEREPLAY_", extra="forbid", frozen=True)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # file values arrive as init kwargs; the environment wins over them
        return (env_settings, init_settings)

    csv_location: Path = Path("2022_place_canvas_history.csv")
    user_id: str | None = None
    no_edits_outside: bool = True

    final_image_time: Timestamp = Field(default_factory=lambda: parse_timestamp(DEFAULT_FINAL_IMAGE_TIME))
    # None: keep replaying to the end of the log
    actual_end_time: Timestamp | None = None

    # None: pick the schema from the CSV header
    dataset: Schema | None = None
    workers: int = Field(default=1, ge=1)
    chunk_size: int = Field(default=10_000, ge=1)

    log_level: str = "INFO"

    search_areas: list[AreaConfig] = Field(default_factory=list)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level

    @model_validator(mode="after")
    def validate_cutoffs(self) -> "Settings":
        if self.actual_end_time is not None and self.actual_end_time < self.final_image_time:
            raise ValueError("actual_end_time must not be before final_image_time")
        return self

    def resolve_areas(self) -> list[SearchArea]:
        """
        Build the immutable SearchArea values for this run. Raises
        InvalidAreaBounds for impossible rectangles or time windows and
        ConfigurationError for bad colours or duplicate names.
        """
        areas = []
        seen = set()
        for i, cfg in enumerate(self.search_areas, start=1):
            name = cfg.name or f"area-{i}"
            if name in seen:
                raise ConfigurationError(f"duplicate search area name: {name}")
            seen.add(name)

            colours = None
            if cfg.colours is not None:
                try:
                    colours = frozenset(normalise_colour(c) for c in cfg.colours)
                except ValueError as e:
                    raise ConfigurationError(f"search area {name!r}: {e}") from e

            areas.append(SearchArea(
                name=name,
                bounds=cfg.rect(),
                start_time=cfg.start_time,
                end_time=cfg.end_time,
                colours=colours,
                is_optional=cfg.is_optional,
            ))
        return areas


def load_settings(path: Path | None = None, **overrides: Any) -> Settings:
    """
    Read settings from a TOML file. The default config.toml is optional; a path
    given explicitly must exist. Keyword overrides replace file values.
    """
    explicit = path is not None
    path = Path(path) if explicit else DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"{path} is not valid TOML: {e}") from e
    elif explicit:
        raise ConfigurationError(f"config file not found: {path}")

    data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConfigurationError(f"configuration contains errors:\n{e}") from e
