"""
Service configuration, persisted as ``<data_dir>/config.json``.
"""
from __future__ import annotations

import base64
import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from corecatalog.services.normalizer import WellKnownCatalogs

logger = logging.getLogger(__name__)

DATA_ROOT_ENV_VAR = "CORECATALOG_DATA_DIR"
_REPO_ROOT = Path(__file__).resolve().parents[2]
_DEFAULT_DATA_DIR = _REPO_ROOT / "data"

CONFIG_FILE_NAME = "config.json"


def get_data_dir() -> Path:
    env_path = os.environ.get(DATA_ROOT_ENV_VAR)
    if env_path:
        d = Path(env_path).expanduser()
    else:
        d = _DEFAULT_DATA_DIR
    d.mkdir(parents=True, exist_ok=True)
    return d


class ServiceConfig(BaseModel):
    data_dir: Path = Field(default_factory=get_data_dir, exclude=True)
    download_root: Optional[Path] = Field(
        default=None,
        description="Where cores and system databases are downloaded. Defaults to <data_dir>/downloads.",
    )
    http_timeout_seconds: float = 30.0
    signature_public_key: Optional[str] = Field(
        default=None,
        description="Base64 of the raw 32-byte Ed25519 key trusted for signed files.",
    )
    platform_name: str = "1fpga"
    platform_version: str = "0.0.0"
    default_catalog_url: str = WellKnownCatalogs.ONE_FPGA.value
    log_level: str = "INFO"

    @property
    def downloads_dir(self) -> Path:
        return self.download_root or self.data_dir / "downloads"

    @property
    def staging_dir(self) -> Path:
        return self.data_dir / "staged"

    def public_key_bytes(self) -> Optional[bytes]:
        if not self.signature_public_key:
            return None
        return base64.b64decode(self.signature_public_key, validate=True)

    def save(self) -> None:
        path = self.data_dir / CONFIG_FILE_NAME
        path.write_text(self.model_dump_json(indent=2), encoding="utf-8")


def load_config(data_dir: Optional[Path] = None) -> ServiceConfig:
    """
    Load the configuration from disk, fill in defaults for missing keys and
    write the merged result back.
    """
    data_dir = data_dir or get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    path = data_dir / CONFIG_FILE_NAME

    raw = {}
    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("expected a JSON object")
        except ValueError as e:
            logger.warning(f"Ignoring unreadable config {path}: {e}")
            raw = {}

    try:
        config = ServiceConfig.model_validate({**raw, "data_dir": data_dir})
    except PydanticValidationError as e:
        logger.warning(f"Invalid config {path}, using defaults: {e}")
        config = ServiceConfig(data_dir=data_dir)

    config.save()
    return config
