"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class HistoryConfig:
    max_conversations: int = 24
    max_messages_per_chat: int = 200
    position_step: int = 24
    state_db: Path | None = field(
        default_factory=lambda: Path.home() / "chat-siphon" / "state" / "history.db"
    )

    def __post_init__(self) -> None:
        if self.max_conversations <= 0:
            raise ValueError(f"max_conversations must be positive, got {self.max_conversations}")
        if self.max_messages_per_chat <= 0:
            raise ValueError(f"max_messages_per_chat must be positive, got {self.max_messages_per_chat}")
        if self.position_step <= 0:
            raise ValueError(f"position_step must be positive, got {self.position_step}")


@dataclass
class ScrollConfig:
    max_down_steps: int = 6
    max_up_steps: int = 20
    step_delay_seconds: float = 0.42
    cooldown_seconds: float = 6.0
    no_change_cooldown_seconds: float = 5.0


@dataclass
class WatcherConfig:
    interval_seconds: float = 1.0
    allow_scroll: bool = True


@dataclass
class DeliveryConfig:
    outbox_path: Path = field(default_factory=lambda: Path.home() / "chat-siphon" / "outbox")
    queue_size: int = 10


@dataclass
class Config:
    history: HistoryConfig = field(default_factory=HistoryConfig)
    scroll: ScrollConfig = field(default_factory=ScrollConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file."""
    if config_path is None:
        search_paths = [
            Path.cwd() / "config.yaml",
            Path.home() / ".config" / "chat-siphon" / "config.yaml",
            Path("/etc/chat-siphon/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    history_data = data.get("history", {})
    # An explicit null disables persistence
    state_db = history_data.get("state_db", "~/chat-siphon/state/history.db")
    history = HistoryConfig(
        max_conversations=int(history_data.get("max_conversations", 24)),
        max_messages_per_chat=int(history_data.get("max_messages_per_chat", 200)),
        position_step=int(history_data.get("position_step", 24)),
        state_db=expand_path(expand_env_var(state_db)) if state_db else None,
    )

    scroll_data = data.get("scroll", {})
    scroll = ScrollConfig(
        max_down_steps=int(scroll_data.get("max_down_steps", 6)),
        max_up_steps=int(scroll_data.get("max_up_steps", 20)),
        step_delay_seconds=float(scroll_data.get("step_delay_seconds", 0.42)),
        cooldown_seconds=float(scroll_data.get("cooldown_seconds", 6.0)),
        no_change_cooldown_seconds=float(scroll_data.get("no_change_cooldown_seconds", 5.0)),
    )

    watcher_data = data.get("watcher", {})
    watcher = WatcherConfig(
        interval_seconds=float(watcher_data.get("interval_seconds", 1.0)),
        allow_scroll=bool(watcher_data.get("allow_scroll", True)),
    )

    delivery_data = data.get("delivery", {})
    delivery = DeliveryConfig(
        outbox_path=expand_path(expand_env_var(delivery_data.get("outbox_path", "~/chat-siphon/outbox"))),
        queue_size=int(delivery_data.get("queue_size", 10)),
    )

    return Config(
        history=history,
        scroll=scroll,
        watcher=watcher,
        delivery=delivery,
    )
