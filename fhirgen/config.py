# fhirgen/config.py
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> Path:
    return Path.home() / ".fhir" / "packages"


class Settings(BaseSettings):
    app_name: str = "FHIR Code Generator"
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="WARNING")

    package_cache_dir: Path = Field(default_factory=_default_cache_dir)
    strict_loading: bool = Field(default=False)
    parse_pipeline: str = Field(default="structured")
    load_concurrency: int = Field(default=8, ge=1)

    # Bindings of these strengths must resolve to a loaded value set
    required_binding_strengths: List[str] = Field(default_factory=lambda: ["required"])

    default_language: str = Field(default="info")
    output_dir: Optional[Path] = Field(default=None)
    emit_workers: int = Field(default=4, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="FHIRGEN_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
