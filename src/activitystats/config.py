import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomli_w

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

CONFIG_DIR = Path.home() / ".config" / "activitystats"
LOG_FILE = CONFIG_DIR / "activitystats.log"
CONFIG_FILE = CONFIG_DIR / "config.toml"
CONNECTIONS_DB = CONFIG_DIR / "connections.db"
DNS_LOGS_DB = CONFIG_DIR / "dnslogs.db"
APP_RULES_FILE = CONFIG_DIR / "app-rules.json"

# "dns" monitors name resolution only; the other two also route connections
MODES = ("dns", "firewall", "dns_firewall")

DEFAULT_PAGE_SIZE = 50


@dataclass
class Config:
    # General
    mode: str = "dns_firewall"

    # Paging
    page_size: int = DEFAULT_PAGE_SIZE
    max_cached_pages: int = 10  # 0 = unbounded
    workers: int = 4

    # Storage
    retention_days: int = 7

    # Logging
    log_level: str = "INFO"
    log_max_size_mb: int = 10

    def is_name_resolution_only_mode(self) -> bool:
        return self.mode == "dns"


def ensure_dirs(config_dir: Path | None = None) -> None:
    """Create the config directory."""
    (config_dir or CONFIG_DIR).mkdir(parents=True, exist_ok=True)


def _config_to_dict(config: Config) -> dict[str, Any]:
    return {
        "general": {
            "mode": config.mode,
        },
        "paging": {
            "page_size": config.page_size,
            "max_cached_pages": config.max_cached_pages,
            "workers": config.workers,
        },
        "storage": {
            "retention_days": config.retention_days,
        },
        "logging": {
            "level": config.log_level,
            "max_size_mb": config.log_max_size_mb,
        },
    }


def _dict_to_config(data: dict[str, Any]) -> Config:
    config = Config()
    if "general" in data:
        config.mode = data["general"].get("mode", config.mode)
    if "paging" in data:
        p = data["paging"]
        config.page_size = p.get("page_size", config.page_size)
        config.max_cached_pages = p.get("max_cached_pages", config.max_cached_pages)
        config.workers = p.get("workers", config.workers)
    if "storage" in data:
        config.retention_days = data["storage"].get("retention_days", config.retention_days)
    if "logging" in data:
        lg = data["logging"]
        config.log_level = lg.get("level", config.log_level)
        config.log_max_size_mb = lg.get("max_size_mb", config.log_max_size_mb)

    if config.mode not in MODES:
        raise ValueError(f"Unknown mode {config.mode!r}, expected one of {', '.join(MODES)}")
    if config.page_size < 1:
        raise ValueError("page_size must be at least 1")
    return config


def load_config(path: Path | None = None) -> Config:
    """Load config from disk, creating defaults if it doesn't exist."""
    path = path or CONFIG_FILE
    if not path.exists():
        config = Config()
        save_config(config, path)
        return config
    data = tomllib.loads(path.read_text())
    return _dict_to_config(data)


def save_config(config: Config, path: Path | None = None) -> None:
    """Save config to disk."""
    path = path or CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(tomli_w.dumps(_config_to_dict(config)).encode())
