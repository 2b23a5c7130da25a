"""
MODULE OVERVIEW:
Loguru setup plus the admin actions on the debug log (load, delete, list and open archives).

WHAT IS HAPPENING HERE:
Every component logs through loguru's global `logger`. `configure_logging` decides
where those lines go: stderr always, and when DEBUG is on, an append-only
`ON_debug.log` that loguru rotates at 5 MB and prunes down to the 10 newest archives.
"""
import sys
from pathlib import Path

from loguru import logger

from order_notifier.shared.config import Settings

_debug_sink_id: int | None = None


def configure_logging(settings: Settings) -> None:
    global _debug_sink_id
    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL.upper())
    _debug_sink_id = None

    if settings.DEBUG:
        settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
        _debug_sink_id = logger.add(
            str(settings.debug_log_path),
            level="DEBUG",
            rotation=settings.DEBUG_LOG_ROTATION,
            retention=settings.DEBUG_LOG_RETENTION,
            enqueue=False,
            encoding="utf-8",
        )
        logger.debug(f"event=debug_log_enabled path={settings.debug_log_path}")


def _archive_glob(log_path: Path) -> list[Path]:
    # loguru names rotated files "<stem>.<timestamp>.log"
    return sorted(log_path.parent.glob(f"{log_path.stem}.*{log_path.suffix}"))


def read_debug_log(settings: Settings) -> str:
    path = settings.debug_log_path
    return path.read_text(encoding="utf-8", errors="replace") if path.exists() else ""


def clear_debug_log(settings: Settings) -> bool:
    path = settings.debug_log_path
    if not path.exists():
        return False
    # Truncate instead of unlink so an open loguru sink keeps writing to the same file
    path.write_text("", encoding="utf-8")
    logger.info("event=debug_log_cleared")
    return True


def archived_log_names(settings: Settings) -> list[str]:
    return [p.name for p in _archive_glob(settings.debug_log_path)]


def read_archived_log(settings: Settings, name: str) -> str | None:
    """Contents of one rotated archive, looked up by name among the known archives only."""
    for path in _archive_glob(settings.debug_log_path):
        if path.name == name:
            return path.read_text(encoding="utf-8", errors="replace")
    return None


def delete_all_logs(settings: Settings) -> int:
    removed = 0
    for path in [settings.debug_log_path, *_archive_glob(settings.debug_log_path)]:
        if path.exists():
            path.unlink()
            removed += 1
    return removed
