import os
from typing import List

import yaml
from pydantic import BaseModel, ValidationError


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""


class S3Config(BaseModel):
    endpoint: str = ""
    bucket_name: str
    region: str = ""
    access_key: str = ""
    secret_key: str = ""


class DatabaseConfig(BaseModel):
    database_path: str = ""
    database_name: str = ""
    backup_path: str = ""
    backup_name: str = ""
    is_active: bool = True


class EmailConfig(BaseModel):
    smtp_server: str = ""
    port: int = 25
    sender: str = ""
    recipient: str = ""
    username: str = ""
    password: str = ""

    def validate_settings(self) -> None:
        missing = [
            name
            for name in ("smtp_server", "sender", "recipient", "username", "password")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigError(f"Invalid email settings, empty fields: {', '.join(missing)}")


class BackupConfig(BaseModel):
    s3: S3Config
    retention_days: int = 7
    email: EmailConfig
    databases: List[DatabaseConfig] = []


class Config(BaseModel):
    backup: BackupConfig


ENV_OVERRIDES = {
    "S3_ENDPOINT": ("s3", "endpoint"),
    "S3_BUCKET_NAME": ("s3", "bucket_name"),
    "S3_REGION": ("s3", "region"),
    "AWS_ACCESS_KEY_ID": ("s3", "access_key"),
    "AWS_SECRET_ACCESS_KEY": ("s3", "secret_key"),
    "SMTP_PASSWORD": ("email", "password"),
}


def load_config(config_path: str) -> BackupConfig:
    if not os.path.exists(config_path):
        raise ConfigError(f"Config not found at {config_path}")
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config {config_path} is empty or not a mapping")

    try:
        cfg = Config(**data).backup
    except ValidationError as e:
        raise ConfigError(f"Invalid config {config_path}: {e}") from e

    apply_env_overrides(cfg)
    if cfg.retention_days < 0:
        raise ConfigError("retention_days must not be negative")
    return cfg


def apply_env_overrides(cfg: BackupConfig) -> None:
    for variable, (section, field) in ENV_OVERRIDES.items():
        value = os.environ.get(variable)
        if value:
            setattr(getattr(cfg, section), field, value)
