"""Bootstrap: wires all components together."""

from __future__ import annotations

import logging
import logging.handlers
import shutil
import sys
from collections.abc import Iterable
from pathlib import Path

import structlog

from repodeck.core.config import RepoDeckConfig
from repodeck.core.coordinator import RepositoryCoordinator
from repodeck.core.events import EventBus
from repodeck.exceptions import ConfigError
from repodeck.git.models import Repository
from repodeck.git.runner import ProcessRunner
from repodeck.git.service import GitService

logger = structlog.get_logger()


_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
]


def _console_handler(level: str) -> logging.Handler:
    # stderr, so formatted status on stdout can be piped
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        )
    )
    return handler


def _file_handler(config: RepoDeckConfig, log_dir: Path) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_dir / "repodeck.log",
        maxBytes=config.log_max_bytes,
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(config.log_level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=structlog.processors.JSONRenderer())
    )
    return handler


def configure_logging(config: RepoDeckConfig, *, log_dir: Path | None = None) -> None:
    """Route structlog through stdlib logging.

    The terminal only shows records at ``console_log_level`` and above, so a
    ``status`` run over many repositories prints nothing but the report. When
    *log_dir* is given, every record at ``log_level`` also goes to a rotating
    JSON-lines file.
    """
    handlers = [_console_handler(config.console_log_level)]
    if log_dir is not None:
        handlers.append(_file_handler(config, log_dir))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    for handler in handlers:
        root_logger.addHandler(handler)
    # The root lets through whatever the most verbose handler wants.
    root_logger.setLevel(min(handler.level for handler in handlers))
    # Selector chatter from asyncio.run on every CLI command
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    structlog.configure(
        processors=_SHARED_PROCESSORS,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_service(config: RepoDeckConfig) -> GitService:
    git_path = shutil.which(str(config.git_path))
    if git_path is None:
        raise ConfigError(f"git executable not found: {config.git_path}")
    runner = ProcessRunner(
        poll_interval=config.poll_interval_seconds,
        flush_grace=config.flush_grace_seconds,
        locale=config.output_locale,
    )
    return GitService(runner, git_path=git_path)


def build_coordinator(
    config: RepoDeckConfig | None = None,
    repositories: Iterable[Path] | None = None,
    event_bus: EventBus | None = None,
) -> RepositoryCoordinator:
    if config is None:
        config = RepoDeckConfig()

    configure_logging(config, log_dir=config.log_dir)

    paths = list(repositories) if repositories is not None else config.repositories
    service = build_service(config)
    coordinator = RepositoryCoordinator(
        service,
        event_bus=event_bus,
        repositories=[Repository.from_path(p) for p in paths],
    )

    logger.info(
        "coordinator_built",
        git_path=str(config.git_path),
        repository_count=len(paths),
        log_level=config.log_level,
    )
    return coordinator
