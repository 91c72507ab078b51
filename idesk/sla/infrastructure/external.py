"""
SLA Runtime Integrations
=========================

Background pieces the SLA engine runs alongside the API:
- YAML threshold file with watchdog hot reload
- APScheduler job driving periodic evaluation
"""

import threading
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError as PydanticValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from idesk.core import ConfigurationException
from idesk.shared.infrastructure.logging import get_logger
from idesk.sla.application.services import IThresholdProvider
from idesk.sla.domain import BreachThresholds

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog handler that reloads when the watched file changes."""

    def __init__(self, config_manager: "SlaConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("SLA config file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()

    on_created = on_modified


class SlaConfigManager(IThresholdProvider):
    """
    Thread-safe holder of the breach warning thresholds.

    The file looks like::

        breach_thresholds:
          response_at_risk_percent: 20
          resolution_at_risk_percent: 20

    A missing file means defaults. A broken file fails the initial load;
    on reload the previous thresholds stay in force.
    """

    def __init__(self):
        self._thresholds = BreachThresholds()
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> BreachThresholds:
        """Initial load."""
        self._path = Path(path)
        try:
            thresholds = self._load_from_file(self._path)
        except (yaml.YAMLError, PydanticValidationError) as e:
            raise ConfigurationException(
                f"Invalid SLA config file: {self._path}", {"error": str(e)}
            ) from e
        with self._lock:
            self._thresholds = thresholds
        return thresholds

    @staticmethod
    def _load_from_file(path: Path) -> BreachThresholds:
        if not path.exists():
            logger.warning("SLA config file not found, using defaults", extra={"path": str(path)})
            return BreachThresholds()

        with open(path, "r") as f:
            data: Dict[str, Any] = yaml.safe_load(f) or {}

        return BreachThresholds(**(data.get("breach_thresholds") or {}))

    def reload(self) -> bool:
        """Re-read the file; keeps the current thresholds on failure."""
        if self._path is None:
            return False

        try:
            thresholds = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, PydanticValidationError) as e:
            logger.error(
                "Failed to reload SLA config, keeping previous thresholds",
                extra={"path": str(self._path), "error": str(e)}
            )
            return False

        with self._lock:
            self._thresholds = thresholds
        logger.info(
            "SLA configuration reloaded",
            extra={
                "response_at_risk_percent": thresholds.response_at_risk_percent,
                "resolution_at_risk_percent": thresholds.resolution_at_risk_percent,
            }
        )
        return True

    def get_thresholds(self) -> BreachThresholds:
        with self._lock:
            return self._thresholds

    def start_watching(self) -> None:
        """
        Watch the config file's directory for changes.

        No-op when the file does not exist or the platform cannot watch.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("SLA config file absent, not watching", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                ConfigFileHandler(self, self._path),
                str(self._path.resolve().parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching SLA config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Safe to call when not watching."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None


class SlaScheduler:
    """
    APScheduler wrapper running the SLA evaluation job on an interval.

    ``max_instances=1`` keeps a slow pass from overlapping the next one.
    """

    JOB_ID = "sla_evaluation"

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[None]]) -> None:
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            name="SLA Evaluation Job",
            misfire_grace_time=self.interval_seconds,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info("SLA scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if not self._running:
            return
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
