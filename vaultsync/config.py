"""Configuration loading for vaultsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class RemoteConfig:
    base_url: str = "http://localhost:3001"
    timeout: float = 30.0


@dataclass
class VaultConfig:
    """Local vault directory and where sync state lives."""

    path: str = "."
    extensions: list[str] = field(default_factory=lambda: [".md"])
    state_db_path: str = "~/.vaultsync/state.db"

    @property
    def root(self) -> Path:
        return Path(self.path).expanduser().resolve()


@dataclass
class SyncConfig:
    user_email: str = ""
    watch: bool = True
    confirm_clear: bool = True  # False auto-confirms the bootstrap wipe
    # Keep dropping watcher events this long after a bootstrap pull
    suppression_settle_seconds: float = 1.0


@dataclass
class Config:
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    vault: VaultConfig = field(default_factory=VaultConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with VAULTSYNC_ prefix."""
    return os.environ.get(f"VAULTSYNC_{key}", default)


def _is_truthy(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Remote overrides
    if url := _get_env("REMOTE_URL"):
        config.remote.base_url = url
    if timeout := _get_env("REMOTE_TIMEOUT"):
        config.remote.timeout = float(timeout)

    # Vault overrides
    if path := _get_env("VAULT_PATH"):
        config.vault.path = path
    if db_path := _get_env("STATE_DB_PATH"):
        config.vault.state_db_path = db_path

    # Sync overrides
    if email := _get_env("USER_EMAIL"):
        config.sync.user_email = email.strip()
    if confirm := _get_env("CONFIRM_CLEAR"):
        config.sync.confirm_clear = _is_truthy(confirm)
    if settle := _get_env("SUPPRESSION_SETTLE_SECONDS"):
        config.sync.suppression_settle_seconds = float(settle)

    return config


def _normalize_extensions(extensions: list[str]) -> list[str]:
    """Lowercase extensions and make sure each has a leading dot."""
    normalized = []
    for ext in extensions:
        ext = ext.strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = f".{ext}"
        normalized.append(ext)
    return normalized


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse remote config
            if "remote" in data:
                remote_data = data["remote"]
                config.remote = RemoteConfig(
                    base_url=remote_data.get("base_url", config.remote.base_url),
                    timeout=float(remote_data.get("timeout", config.remote.timeout)),
                )

            # Parse vault config
            if "vault" in data:
                vault_data = data["vault"]
                config.vault = VaultConfig(
                    path=vault_data.get("path", config.vault.path),
                    extensions=_normalize_extensions(
                        vault_data.get("extensions", config.vault.extensions)
                    ),
                    state_db_path=vault_data.get(
                        "state_db_path", config.vault.state_db_path
                    ),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    user_email=(sync_data.get("user_email") or "").strip(),
                    watch=sync_data.get("watch", config.sync.watch),
                    confirm_clear=sync_data.get(
                        "confirm_clear", config.sync.confirm_clear
                    ),
                    suppression_settle_seconds=float(
                        sync_data.get(
                            "suppression_settle_seconds",
                            config.sync.suppression_settle_seconds,
                        )
                    ),
                )

    config = _apply_env_overrides(config)

    # Strip trailing slash so paths can be appended directly
    config.remote.base_url = config.remote.base_url.rstrip("/")

    return config
