"""Configuration management for backup operations."""

import os
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from vpsbackup.backup.exceptions import ConfigurationError, InvalidBackupConfigError
from vpsbackup.utils import default_host_id, mask_secret, sanitize_host_id

GIB = 1024 * 1024 * 1024


PROTECTED_DIRECTORIES = frozenset(
    Path(p) for p in ("/", "/tmp", "/var", "/var/tmp", "/home", "/root", "/etc", "/usr")
)


class BackupStrategy(str, Enum):
    """How backup artifacts are produced."""

    INCREMENTAL = "incremental"
    FULL = "full"


@dataclass(frozen=True)
class RetentionPolicy:
    """How many past snapshots or artifacts to keep.

    The five ``keep_*`` tiers apply to the incremental strategy, ``max_keep``
    to the full strategy. Zero disables a tier.
    """

    keep_last: int = 7
    keep_daily: int = 30
    keep_weekly: int = 8
    keep_monthly: int = 12
    keep_yearly: int = 3
    max_keep: int = 3

    TIER_FLAGS = (
        ("keep_last", "--keep-last"),
        ("keep_daily", "--keep-daily"),
        ("keep_weekly", "--keep-weekly"),
        ("keep_monthly", "--keep-monthly"),
        ("keep_yearly", "--keep-yearly"),
    )

    def __post_init__(self) -> None:
        """Validate that every value is a non-negative integer."""
        for policy_field in fields(self):
            value = getattr(self, policy_field.name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                error_msg = (
                    f"Retention value '{policy_field.name}' must be a non-negative "
                    f"integer, got {value!r}"
                )
                raise InvalidBackupConfigError(error_msg)

    def active_tiers(self) -> dict[str, int]:
        """Return the incremental tiers that constrain pruning."""
        return {
            name: getattr(self, name)
            for name, _flag in self.TIER_FLAGS
            if getattr(self, name) > 0
        }

    def restic_arguments(self) -> list[str]:
        """Build restic forget arguments for the non-zero tiers only."""
        args: list[str] = []
        for name, flag in self.TIER_FLAGS:
            value = getattr(self, name)
            if value > 0:
                args.extend([flag, str(value)])
        return args


@dataclass
class BackupConfig:
    """Configuration for backup operations."""

    # Required fields
    sources: list[str]
    remote_dir: str
    password: str = field(repr=False)

    # Optional fields with defaults
    host_id: str = field(default_factory=default_host_id)
    strategy: BackupStrategy = BackupStrategy.INCREMENTAL
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)
    telegram_bot_token: str | None = field(default=None, repr=False)
    telegram_chat_id: str | None = None
    log_file: str = "/var/log/vps-backup.log"
    tmp_dir: str = "/tmp/vps-backups"  # noqa: S108
    lock_file: str = "/var/lock/vps-backup.lock"
    reference_mount: str = "/tmp"  # noqa: S108
    min_free_bytes: int = GIB
    restic_path: str = "restic"
    rclone_path: str = "rclone"
    upload_max_attempts: int = 3
    upload_retry_delay: float = 5.0
    notify_timeout: float = 10.0

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self.host_id = sanitize_host_id(str(self.host_id or ""))
        if not isinstance(self.strategy, BackupStrategy):
            try:
                self.strategy = BackupStrategy(str(self.strategy).lower())
            except ValueError as e:
                error_msg = f"Invalid backup strategy: {self.strategy}"
                raise InvalidBackupConfigError(error_msg) from e
        self._validate_required_fields()
        self._validate_remote()
        self._validate_paths()
        self._validate_limits()

    def _validate_required_fields(self) -> None:
        """Validate that all required fields are present and non-empty."""
        if not self.host_id:
            error_msg = "Host identifier is empty after sanitization"
            raise InvalidBackupConfigError(error_msg)
        if not self.sources or not all(str(s).strip() for s in self.sources):
            error_msg = "At least one non-empty backup source is required"
            raise InvalidBackupConfigError(error_msg)
        for field_name in ("remote_dir", "password"):
            value = getattr(self, field_name)
            if not value or not str(value).strip():
                error_msg = f"Required field '{field_name}' cannot be empty"
                raise InvalidBackupConfigError(error_msg)

    def _validate_remote(self) -> None:
        """Validate the remote-name:path locator format."""
        remote_name, _, _ = self.remote_dir.partition(":")
        if ":" not in self.remote_dir or not remote_name:
            error_msg = f"Remote directory must look like 'remote-name:path', got {self.remote_dir!r}"
            raise InvalidBackupConfigError(error_msg)

    def _validate_paths(self) -> None:
        """The working directory is wiped on every run, so it must be private."""
        if Path(self.tmp_dir).resolve() in PROTECTED_DIRECTORIES:
            error_msg = f"tmp_dir must be a dedicated directory, not {self.tmp_dir}"
            raise InvalidBackupConfigError(error_msg)

    def _validate_limits(self) -> None:
        """Validate numeric settings."""
        if self.min_free_bytes < 0:
            error_msg = "min_free_bytes must not be negative"
            raise InvalidBackupConfigError(error_msg)
        if self.upload_max_attempts < 1:
            error_msg = "upload_max_attempts must be at least 1"
            raise InvalidBackupConfigError(error_msg)
        if self.upload_retry_delay < 0 or self.notify_timeout <= 0:
            error_msg = "Delays and timeouts must be positive"
            raise InvalidBackupConfigError(error_msg)

    @property
    def notifications_enabled(self) -> bool:
        """Whether Telegram credentials are complete."""
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @property
    def restic_repository(self) -> str:
        """Repository string handed to restic.

        The locator is always an rclone remote, even when the remote is named
        like a restic backend such as ``s3``.
        """
        if self.remote_dir.startswith("rclone:"):
            return self.remote_dir
        return f"rclone:{self.remote_dir}"

    def to_dict(self) -> dict[str, Any]:
        """Flatten the configuration into the on-disk key layout."""
        data = asdict(self)
        retention = data.pop("retention")
        data.update(retention)
        data["strategy"] = self.strategy.value
        return data

    def redacted(self) -> dict[str, Any]:
        """Return the configuration with secrets masked for display."""
        data = self.to_dict()
        data["password"] = "<set>" if self.password else "<not set>"
        data["telegram_bot_token"] = mask_secret(self.telegram_bot_token, visible=10)
        return data


class ConfigManager:
    """Loads, validates and persists backup configuration files."""

    RETENTION_KEYS = tuple(f.name for f in fields(RetentionPolicy))
    REQUIRED_KEYS = ("sources", "remote_dir", "password")

    @staticmethod
    def _read_yaml(config_path: Path) -> dict[str, Any]:
        try:
            with config_path.open(encoding="utf-8") as f:
                config_data = yaml.safe_load(f)
        except FileNotFoundError as e:
            error_msg = f"Configuration file not found: {config_path}"
            raise ConfigurationError(error_msg) from e
        except yaml.YAMLError as e:
            error_msg = f"Invalid configuration file format: {e}"
            raise ConfigurationError(error_msg) from e
        except OSError as e:
            error_msg = f"Error loading configuration: {e}"
            raise ConfigurationError(error_msg) from e

        if not isinstance(config_data, dict):
            error_msg = f"Configuration file {config_path} must contain a mapping"
            raise ConfigurationError(error_msg)
        return config_data

    @staticmethod
    def _parse_sources(raw: Any) -> list[str]:
        """Accept a YAML list or the legacy ``|``-separated string."""
        if isinstance(raw, str):
            return [part.strip() for part in raw.split("|") if part.strip()]
        if isinstance(raw, list):
            return [str(part) for part in raw]
        error_msg = f"'sources' must be a list or a '|'-separated string, got {type(raw).__name__}"
        raise InvalidBackupConfigError(error_msg)

    @classmethod
    def from_dict(cls, config_data: dict[str, Any]) -> BackupConfig:
        """Build a validated BackupConfig from a flat mapping.

        Raises:
            InvalidBackupConfigError: If required keys are missing or values invalid

        """
        missing = [key for key in cls.REQUIRED_KEYS if key not in config_data]
        if missing:
            error_msg = f"Missing required configuration field(s): {', '.join(missing)}"
            raise InvalidBackupConfigError(error_msg)

        try:
            retention = RetentionPolicy(
                **{
                    key: int(config_data[key])
                    for key in cls.RETENTION_KEYS
                    if config_data.get(key) is not None
                },
            )
            optional: dict[str, Any] = {}
            for key in (
                "host_id",
                "strategy",
                "telegram_bot_token",
                "telegram_chat_id",
                "log_file",
                "tmp_dir",
                "lock_file",
                "reference_mount",
                "restic_path",
                "rclone_path",
            ):
                if config_data.get(key) not in (None, ""):
                    optional[key] = str(config_data[key])
            if config_data.get("min_free_bytes") is not None:
                optional["min_free_bytes"] = int(config_data["min_free_bytes"])
            if config_data.get("upload_max_attempts") is not None:
                optional["upload_max_attempts"] = int(config_data["upload_max_attempts"])
            for key in ("upload_retry_delay", "notify_timeout"):
                if config_data.get(key) is not None:
                    optional[key] = float(config_data[key])

            return BackupConfig(
                sources=cls._parse_sources(config_data["sources"]),
                remote_dir=str(config_data["remote_dir"]),
                password=str(config_data["password"]),
                retention=retention,
                **optional,
            )
        except InvalidBackupConfigError:
            raise
        except (TypeError, ValueError) as e:
            error_msg = f"Configuration validation failed: {e}"
            raise InvalidBackupConfigError(error_msg) from e

    @classmethod
    def load_config(cls, config_path: str | Path) -> BackupConfig:
        """Load and validate configuration from a YAML file.

        Args:
            config_path: Path to the configuration YAML file

        Returns:
            Validated BackupConfig instance

        Raises:
            ConfigurationError: If the file cannot be read or parsed
            InvalidBackupConfigError: If configuration is invalid

        """
        return cls.from_dict(cls._read_yaml(Path(config_path)))

    @staticmethod
    def save_config(config: BackupConfig, config_path: str | Path) -> None:
        """Write the configuration file, readable by the owner only."""
        path = Path(config_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        fd = os.open(tmp_path, os.O_CREAT | os.O_TRUNC | os.O_WRONLY, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write("# vps-backup configuration\n")
            yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
        os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)

    @classmethod
    def update_field(cls, config_path: str | Path, key: str, value: Any) -> BackupConfig:
        """Replace one key in the configuration file and re-validate it.

        Raises:
            InvalidBackupConfigError: If the key is unknown or the new value invalid

        """
        known_keys = set(cls.get_default_config())
        if key not in known_keys:
            error_msg = f"Unknown configuration field: {key}"
            raise InvalidBackupConfigError(error_msg)

        config_data = cls._read_yaml(Path(config_path))
        config_data[key] = value
        config = cls.from_dict(config_data)
        cls.save_config(config, config_path)
        return config

    @staticmethod
    def get_default_config() -> dict[str, Any]:
        """Get a template configuration dictionary."""
        return {
            "host_id": "my-server",
            "strategy": "incremental",
            "sources": ["/var/www/html", "/etc/nginx"],
            "remote_dir": "gdrive:vps-backups",
            "password": "change-me",
            "keep_last": 7,
            "keep_daily": 30,
            "keep_weekly": 8,
            "keep_monthly": 12,
            "keep_yearly": 3,
            "max_keep": 3,
            "telegram_bot_token": None,
            "telegram_chat_id": None,
            "log_file": "/var/log/vps-backup.log",
            "tmp_dir": "/tmp/vps-backups",  # noqa: S108
            "lock_file": "/var/lock/vps-backup.lock",
            "reference_mount": "/tmp",  # noqa: S108
            "min_free_bytes": GIB,
            "restic_path": "restic",
            "rclone_path": "rclone",
            "upload_max_attempts": 3,
            "upload_retry_delay": 5,
            "notify_timeout": 10,
        }
