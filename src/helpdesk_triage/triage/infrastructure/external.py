"""
Triage External Service Adapters
==================================

Adapters and background services used by the triage module:
- LLM client adapter (Z.AI / OpenAI / Groq)
- Notification adapter over the notification hub
- YAML decision-config watcher
- APScheduler sweep for untriaged tickets
"""

import threading
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from helpdesk_triage.config import Settings
from helpdesk_triage.core import ConfigurationException
from helpdesk_triage.infrastructure.llm import ILLMClient as InfraLLMClient
from helpdesk_triage.infrastructure.llm import ChatCompletionResult, build_llm_client
from helpdesk_triage.infrastructure.notifications import NotificationHub
from helpdesk_triage.shared.infrastructure.logging import get_logger
from helpdesk_triage.triage.application import ILLMClient, INotifier, ITriageConfigProvider
from helpdesk_triage.triage.domain import TriageConfig

logger = get_logger(__name__)


class LLMClientAdapter(ILLMClient):
    """
    Adapter that wraps the infrastructure LLM client.

    Implements the application layer ILLMClient interface using the
    backend selected in settings, or an explicitly supplied client.
    """

    def __init__(
        self,
        client: Optional[InfraLLMClient] = None,
        config: Optional[Settings] = None
    ):
        self._client = client or build_llm_client(config)

    @property
    def model(self) -> str:
        return self._client.model

    @property
    def backend(self) -> str:
        return self._client.backend

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """Generate chat completion."""
        return await self._client.chat_completion(messages, temperature, max_tokens, operation)


class NotifierAdapter(INotifier):
    """
    Adapter from the application INotifier port to a notification hub.

    Delivery is best effort; hub errors are logged, never raised.
    """

    def __init__(self, hub: NotificationHub):
        self._hub = hub

    def broadcast_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        try:
            self._hub.broadcast_to_user(user_id, event, payload)
        except Exception:
            logger.warning(
                "Notification dispatch failed",
                exc_info=True,
                extra={"user_id": user_id, "event": event}
            )


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for triage config file changes."""

    def __init__(self, config_manager: "TriageConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info(f"Triage config file changed: {event.src_path}")
            self.config_manager.reload()

    on_created = on_modified


class TriageConfigManager(ITriageConfigProvider):
    """
    Thread-safe triage decision configuration with hot-reload support.

    Reads ``auto_close_enabled`` and ``confidence_threshold`` from a YAML
    file and watches it with watchdog. A missing file falls back to the
    defaults given at construction; a broken file keeps the last good config.
    """

    def __init__(self, defaults: Optional[TriageConfig] = None):
        self._defaults = defaults or TriageConfig()
        self._config: Optional[TriageConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> TriageConfig:
        """Initial configuration load."""
        self._path = Path(path)
        config = self._load_from_file(self._path)
        with self._lock:
            self._config = config
        return config

    def _load_from_file(self, path: Path) -> TriageConfig:
        """Load and parse YAML config file."""
        if not path.exists():
            logger.warning(f"Triage config file not found: {path}, using defaults")
            return self._defaults

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationException(f"Triage config must be a mapping: {path}")

        threshold = data.get("confidence_threshold", self._defaults.confidence_threshold)
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            raise ConfigurationException(
                "confidence_threshold must be a number", {"value": threshold}
            )

        enabled = data.get("auto_close_enabled", self._defaults.auto_close_enabled)
        if not isinstance(enabled, bool):
            raise ConfigurationException(
                "auto_close_enabled must be true or false", {"value": enabled}
            )

        return TriageConfig(
            auto_close_enabled=enabled,
            confidence_threshold=float(threshold)
        )

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ConfigurationException) as e:
            logger.error(f"Failed to reload triage config: {e}")
            return False

        with self._lock:
            self._config = new_config
        logger.info(
            "Triage configuration reloaded",
            extra={
                "auto_close_enabled": new_config.auto_close_enabled,
                "confidence_threshold": new_config.confidence_threshold
            }
        )
        return True

    def start_watching(self) -> None:
        """
        Start watching configuration file for changes.

        Skips watching if the file does not exist or the platform has no
        file system notifications (some container runtimes).
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                f"Config file doesn't exist, skipping file watch: {self._path}. "
                "Using default triage configuration."
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info(f"Started watching triage config file: {self._path}")
        except OSError as e:
            logger.warning(f"File watching not available, using static config: {e}")
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_config(self) -> TriageConfig:
        """Get current configuration."""
        with self._lock:
            if self._config is None:
                raise RuntimeError("Triage configuration not loaded")
            return self._config


class TriageScheduler:
    """
    Wrapper for APScheduler that periodically sweeps untriaged tickets.

    Manages the lifecycle of the scheduler and its single job.
    """

    def __init__(self, interval_seconds: int = 300):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("Triage scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="triage_sweep",
            name="Untriaged Ticket Sweep",
            misfire_grace_time=60,
            max_instances=1,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info("Triage scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Triage scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
