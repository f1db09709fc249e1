import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

import app.models  # noqa: F401  registers the monitor tables
from core.model import Model
from core.monitor.behavior import QueueMonitor
from core.monitor.env import Env
from core.monitor.filters import JobFilter, WorkerFilter
from core.monitor.recorder import EventRecorder
from core.monitor.repository import MonitorRepository
from core.redis_manager import redis_manager


class Application:
    def __init__(self, env_file=".env", setup_logging=True):
        """
        Initialize a new queue monitor application.

        Args:
            env_file: The environment file to load configuration from
            setup_logging: Configure root logging from the environment
        """
        load_dotenv(env_file)

        if setup_logging:
            self._setup_logging()
        else:
            self.logger = logging.getLogger("QueueMonitor.Application")

        self.database_enabled = os.getenv("ENABLE_DATABASE", "true").lower() == "true"
        if self.database_enabled:
            self._setup_database()
        else:
            self.logger.info("Database integration is disabled")

        self.redis_enabled = os.getenv("ENABLE_REDIS", "false").lower() == "true"
        if self.redis_enabled:
            self.logger.info("Redis cache is enabled")
        else:
            self.logger.info("Redis cache is disabled, using in-memory cache")

        self.env = Env()
        self.recorder = EventRecorder(self.env)
        self.repository = MonitorRepository(self.env)

    def _setup_logging(self):
        """Configure logging based on environment variables with file rotation support."""
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        log_format = os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")

        log_to_file = os.getenv("LOG_TO_FILE", "false").lower() == "true"
        log_file = os.getenv("LOG_FILE", "logs/monitor.log")

        log_rotation_type = os.getenv("LOG_ROTATION_TYPE", "size").lower()  # 'size' or 'time'

        max_bytes = int(os.getenv("LOG_MAX_BYTES", "10485760"))  # 10 MB default
        backup_count = int(os.getenv("LOG_BACKUP_COUNT", "5"))

        rotation_when = os.getenv("LOG_ROTATION_WHEN", "midnight").lower()
        rotation_interval = int(os.getenv("LOG_ROTATION_INTERVAL", "1"))

        handlers = [logging.StreamHandler()]

        if log_to_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            try:
                if log_rotation_type == "time":
                    file_handler = logging.handlers.TimedRotatingFileHandler(
                        filename=log_file,
                        when=rotation_when,
                        interval=rotation_interval,
                        backupCount=backup_count,
                        encoding='utf-8'
                    )
                else:
                    file_handler = logging.handlers.RotatingFileHandler(
                        filename=log_file,
                        maxBytes=max_bytes,
                        backupCount=backup_count,
                        encoding='utf-8'
                    )

                file_handler.setFormatter(logging.Formatter(log_format))
                handlers.append(file_handler)

            except OSError as e:
                print(f"Warning: Could not setup file logging: {e}")
                print("Falling back to console logging only")

        logging.basicConfig(
            level=getattr(logging, log_level, logging.INFO),
            format=log_format,
            handlers=handlers,
            force=True
        )

        self.logger = logging.getLogger("QueueMonitor.Application")

        if log_to_file:
            self.logger.info(f"Logging configured - File: {log_file}, Rotation: {log_rotation_type}")
        else:
            self.logger.debug("File logging disabled - Console only")

    @staticmethod
    def database_url() -> str:
        """Primary database URL, from DATABASE_URL or the MySQL settings."""
        url = os.getenv("DATABASE_URL")
        if url:
            return url

        db_host = os.getenv("DB_HOST", "localhost")
        db_port = os.getenv("DB_PORT", "3306")
        db_name = os.getenv("DB_NAME", "queue_monitor")
        db_user = os.getenv("DB_USER", "root")
        db_pass = os.getenv("DB_PASS", "")

        return f"mysql+aiomysql://{db_user}:{db_pass}@{db_host}:{db_port}/{db_name}"

    def _setup_database(self):
        """Configure database connection."""
        Model.configure(self.database_url(), os.getenv("DB_READ_URL") or None, pool_pre_ping=True)

    async def initialize_database(self):
        """Create database tables."""
        if self.database_enabled:
            await Model.create_tables()

    async def initialize_redis(self):
        """Initialize Redis connection."""
        if self.redis_enabled:
            success = await redis_manager.initialize()
            if success:
                self.logger.info("Redis initialized successfully")
            else:
                self.logger.warning("Redis initialization failed, using in-memory cache")

    async def initialize(self, create_tables: bool = False):
        """
        Initialize database and Redis connections.

        Args:
            create_tables: Also create the monitor tables
        """
        if create_tables:
            await self.initialize_database()
        await self.initialize_redis()

    async def cleanup(self):
        """Cleanup database and Redis connections."""
        if self.redis_enabled:
            await redis_manager.disconnect()
        if self.database_enabled:
            await Model.cleanup()

    def monitor(self, sender_name: Optional[str] = None) -> QueueMonitor:
        """Monitor for a queue, sharing this application's configuration."""
        return QueueMonitor(sender_name, self.env, self.recorder)

    def job_filter(self, **params) -> JobFilter:
        return JobFilter.from_params(params, self.env)

    def worker_filter(self, sender: Optional[str] = None, active_only: bool = True) -> WorkerFilter:
        return WorkerFilter(self.env, sender, active_only)
