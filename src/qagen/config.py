from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping

import yaml

from .errors import ConfigError
from .utils import log_event
from .validators import is_valid_cron_expression

__all__ = [
    "ConfigError",
    "Config",
    "DEFAULT_CONFIG",
    "DEFAULT_WORK_HOURS_CRON",
    "DEFAULT_OFF_HOURS_CRON",
    "load_config",
    "build_config",
    "validate_config",
]

DEFAULT_WORK_HOURS_CRON = "*/15 8-14 * * 1-5"
DEFAULT_OFF_HOURS_CRON = "0 */2 * * *"


@dataclass(frozen=True)
class AppConfig:
    name: str
    timezone: str


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str
    state_db: str
    output_dir: str
    test_patterns_path: str


@dataclass(frozen=True)
class JiraConfig:
    base_url: str
    email: str
    token: str
    project: str
    status: str
    max_results: int
    timeout_seconds: int

    @property
    def projects(self) -> list[str]:
        return [item.strip() for item in self.project.split(",") if item.strip()]


@dataclass(frozen=True)
class GithubConfig:
    api_url: str
    token: str
    owner: str
    repo: str
    content_ref: str
    user_agent: str
    timeout_seconds: int


@dataclass(frozen=True)
class AnthropicConfig:
    base_url: str
    api_key: str
    model: str
    max_tokens: int
    timeout_seconds: int


@dataclass(frozen=True)
class ScheduleConfig:
    work_hours: str
    off_hours: str


@dataclass(frozen=True)
class LockConfig:
    max_hold_seconds: int


@dataclass(frozen=True)
class WebhookConfig:
    test_runner_url: str
    timeout_seconds: int


@dataclass(frozen=True)
class ServerConfig:
    host: str
    port: int


@dataclass(frozen=True)
class CleanupConfig:
    retention_days: int
    interval_hours: int


@dataclass(frozen=True)
class Config:
    app: AppConfig
    paths: PathsConfig
    jira: JiraConfig
    github: GithubConfig
    anthropic: AnthropicConfig
    schedule: ScheduleConfig
    lock: LockConfig
    webhook: WebhookConfig
    server: ServerConfig
    cleanup: CleanupConfig

    @property
    def generated_dir(self) -> str:
        return os.path.join(self.paths.output_dir, "generated")


DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "qagen",
        "timezone": "America/New_York",
    },
    "paths": {
        "data_dir": "./data",
        "state_db": "./data/tickets.db",
        "output_dir": "./output",
        "test_patterns_path": "./docs/test-patterns.md",
    },
    "jira": {
        "base_url": "https://your-domain.atlassian.net",
        "email": "",
        "token": "",
        "project": "XXX",
        "status": "QA",
        "max_results": 50,
        "timeout_seconds": 30,
    },
    "github": {
        "api_url": "https://api.github.com",
        "token": "",
        "owner": "your-org",
        "repo": "your-app",
        "content_ref": "main",
        "user_agent": "qagen",
        "timeout_seconds": 30,
    },
    "anthropic": {
        "base_url": "https://api.anthropic.com/v1",
        "api_key": "",
        "model": "claude-3-5-sonnet-20240620",
        "max_tokens": 4000,
        "timeout_seconds": 120,
    },
    "schedule": {
        "work_hours": DEFAULT_WORK_HOURS_CRON,
        "off_hours": DEFAULT_OFF_HOURS_CRON,
    },
    "lock": {
        "max_hold_seconds": 3600,
    },
    "webhook": {
        "test_runner_url": "",
        "timeout_seconds": 5,
    },
    "server": {
        "host": "0.0.0.0",
        "port": 3000,
    },
    "cleanup": {
        "retention_days": 7,
        "interval_hours": 24,
    },
}

ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "JIRA_BASE_URL": ("jira", "base_url"),
    "JIRA_TOKEN": ("jira", "token"),
    "JIRA_EMAIL": ("jira", "email"),
    "JIRA_PROJECT": ("jira", "project"),
    "JIRA_STATUS": ("jira", "status"),
    "GITHUB_PAT": ("github", "token"),
    "GITHUB_OWNER": ("github", "owner"),
    "GITHUB_REPO": ("github", "repo"),
    "ANTHROPIC_KEY": ("anthropic", "api_key"),
    "ANTHROPIC_MODEL": ("anthropic", "model"),
    "PORT": ("server", "port"),
    "DB_PATH": ("paths", "state_db"),
    "QG_OUTPUT_DIR": ("paths", "output_dir"),
    "CRON_WORK_HOURS": ("schedule", "work_hours"),
    "CRON_OFF_HOURS": ("schedule", "off_hours"),
    "TEST_RUNNER_WEBHOOK_URL": ("webhook", "test_runner_url"),
    "QG_LOCK_MAX_HOLD_SECONDS": ("lock", "max_hold_seconds"),
}

SCHEDULE_DEFAULTS = {
    "work_hours": DEFAULT_WORK_HOURS_CRON,
    "off_hours": DEFAULT_OFF_HOURS_CRON,
}

CREDENTIALS = (
    ("jira", "token"),
    ("jira", "email"),
    ("github", "token"),
    ("anthropic", "api_key"),
)

logger = logging.getLogger("qagen.config")


def load_config(
    path: str | None = None,
    env: Mapping[str, str] | None = None,
) -> Config:
    env = os.environ if env is None else env
    path = path or env.get("QG_CONFIG") or None
    cfg = _deep_copy(DEFAULT_CONFIG)
    if path:
        _deep_merge(cfg, _load_yaml(path))
    _apply_env(cfg, env)
    _apply_schedule_fallbacks(cfg)
    _apply_lock_fallback(cfg)
    errors = validate_config(cfg)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    _warn_missing_credentials(cfg)
    return build_config(cfg)


def _load_yaml(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"config file is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("config file must contain a mapping")
    return data


def _apply_env(cfg: dict[str, Any], env: Mapping[str, str]) -> None:
    for name, (section, key) in ENV_OVERRIDES.items():
        raw = env.get(name)
        if raw is None or raw == "" or not isinstance(cfg.get(section), dict):
            continue
        default = DEFAULT_CONFIG[section][key]
        if isinstance(default, int) and not isinstance(default, bool):
            try:
                cfg[section][key] = int(raw)
            except ValueError as exc:
                raise ConfigError(f"{name} must be an integer") from exc
        else:
            cfg[section][key] = raw


def _apply_schedule_fallbacks(cfg: dict[str, Any]) -> None:
    schedule = cfg.get("schedule")
    if not isinstance(schedule, dict):
        return
    for name, default in SCHEDULE_DEFAULTS.items():
        expression = schedule.get(name)
        if is_valid_cron_expression(expression):
            continue
        log_event(
            logger,
            logging.WARNING,
            "schedule_invalid",
            trigger=name,
            expression=repr(expression),
            fallback=repr(default),
        )
        schedule[name] = default


def _apply_lock_fallback(cfg: dict[str, Any]) -> None:
    lock = cfg.get("lock")
    if not isinstance(lock, dict):
        return
    value = lock.get("max_hold_seconds")
    if isinstance(value, bool) or not isinstance(value, int) or value > 0:
        return
    default = DEFAULT_CONFIG["lock"]["max_hold_seconds"]
    log_event(
        logger,
        logging.WARNING,
        "lock_timeout_invalid",
        max_hold_seconds=value,
        fallback=default,
    )
    lock["max_hold_seconds"] = default


def _warn_missing_credentials(cfg: dict[str, Any]) -> None:
    for section, key in CREDENTIALS:
        if not cfg[section][key]:
            log_event(logger, logging.WARNING, "credential_missing", setting=f"{section}.{key}")


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{path} must be an integer")
        elif value < 0:
            errors.append(f"{path} must not be negative")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def build_config(cfg: dict[str, Any]) -> Config:
    app_cfg = cfg.get("app") or {}
    paths_cfg = cfg.get("paths") or {}
    jira_cfg = cfg.get("jira") or {}
    github_cfg = cfg.get("github") or {}
    anthropic_cfg = cfg.get("anthropic") or {}
    schedule_cfg = cfg.get("schedule") or {}
    lock_cfg = cfg.get("lock") or {}
    webhook_cfg = cfg.get("webhook") or {}
    server_cfg = cfg.get("server") or {}
    cleanup_cfg = cfg.get("cleanup") or {}

    return Config(
        app=AppConfig(
            name=str(app_cfg.get("name")),
            timezone=str(app_cfg.get("timezone")),
        ),
        paths=PathsConfig(
            data_dir=str(paths_cfg.get("data_dir")),
            state_db=str(paths_cfg.get("state_db")),
            output_dir=str(paths_cfg.get("output_dir")),
            test_patterns_path=str(paths_cfg.get("test_patterns_path")),
        ),
        jira=JiraConfig(
            base_url=str(jira_cfg.get("base_url")).rstrip("/"),
            email=str(jira_cfg.get("email") or ""),
            token=str(jira_cfg.get("token") or ""),
            project=str(jira_cfg.get("project")),
            status=str(jira_cfg.get("status")),
            max_results=int(jira_cfg.get("max_results")),
            timeout_seconds=int(jira_cfg.get("timeout_seconds")),
        ),
        github=GithubConfig(
            api_url=str(github_cfg.get("api_url")).rstrip("/"),
            token=str(github_cfg.get("token") or ""),
            owner=str(github_cfg.get("owner")),
            repo=str(github_cfg.get("repo")),
            content_ref=str(github_cfg.get("content_ref")),
            user_agent=str(github_cfg.get("user_agent")),
            timeout_seconds=int(github_cfg.get("timeout_seconds")),
        ),
        anthropic=AnthropicConfig(
            base_url=str(anthropic_cfg.get("base_url")).rstrip("/"),
            api_key=str(anthropic_cfg.get("api_key") or ""),
            model=str(anthropic_cfg.get("model")),
            max_tokens=int(anthropic_cfg.get("max_tokens")),
            timeout_seconds=int(anthropic_cfg.get("timeout_seconds")),
        ),
        schedule=ScheduleConfig(
            work_hours=str(schedule_cfg.get("work_hours")),
            off_hours=str(schedule_cfg.get("off_hours")),
        ),
        lock=LockConfig(max_hold_seconds=int(lock_cfg.get("max_hold_seconds"))),
        webhook=WebhookConfig(
            test_runner_url=str(webhook_cfg.get("test_runner_url") or ""),
            timeout_seconds=int(webhook_cfg.get("timeout_seconds")),
        ),
        server=ServerConfig(
            host=str(server_cfg.get("host")),
            port=int(server_cfg.get("port")),
        ),
        cleanup=CleanupConfig(
            retention_days=int(cleanup_cfg.get("retention_days")),
            interval_hours=int(cleanup_cfg.get("interval_hours")),
        ),
    )


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    for key, value in override.items():
        if value is None and key in base:
            continue
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
