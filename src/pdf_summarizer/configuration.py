from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

from .models import PublicConfig

load_dotenv()

CONFIG_PATH = Path(__file__).resolve().parent / "config" / "defaults.yaml"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Build the runtime settings from packaged defaults and the environment.

    Environment variables are resolved through ``${oc.env:...}`` interpolation
    at load time, so the returned config is a plain, fully resolved snapshot.

    Args:
        overrides: Nested mapping merged over the defaults. Unknown keys are
            rejected because the base config is in struct mode.

    Returns:
        Resolved DictConfig
    """
    base = OmegaConf.create(OmegaConf.to_container(_load_default_config(), resolve=False))
    OmegaConf.set_struct(base, True)

    merged = OmegaConf.merge(base, OmegaConf.create(overrides or {}))
    return OmegaConf.create(OmegaConf.to_container(merged, resolve=True))


@lru_cache(maxsize=1)
def get_settings() -> DictConfig:
    return load_settings()


def build_public_config(settings: DictConfig) -> PublicConfig:
    return PublicConfig(
        max_upload_bytes=settings.storage.max_upload_bytes,
        allowed_content_types=list(settings.storage.allowed_content_types),
        summaries_per_month=settings.limits.summaries_per_month,
        model=settings.summarizer.model,
    )


def cors_origins(settings: DictConfig) -> list[str]:
    raw = settings.app.cors_origins or "*"
    return [origin.strip() for origin in str(raw).split(",") if origin.strip()]


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the API process or the worker."""
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level.upper())
        return
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
