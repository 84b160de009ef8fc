"""File discovery: find log files directly under an alias directory by date."""

import os
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .models import LogFile, format_bytes
from ..utils.config import ConfigManager, config as default_config
from ..utils.exceptions import AccessDeniedError, LogFileError, NotFoundError

logger = logging.getLogger(__name__)


def _is_readable_dir(path: str) -> bool:
    return os.path.isdir(path) and os.access(path, os.R_OK | os.X_OK)


def check_reachable(path: str, timeout: Optional[float] = None) -> bool:
    """
    Check that ``path`` is an existing, readable directory.

    A hung network mount counts as unreachable once ``timeout`` elapses.
    """
    if timeout is None:
        return _is_readable_dir(path)

    executor = ThreadPoolExecutor(max_workers=1)
    try:
        return executor.submit(_is_readable_dir, path).result(timeout=timeout)
    except FutureTimeoutError:
        logger.warning(f"Reachability check timed out after {timeout}s: {path}")
        return False
    finally:
        executor.shutdown(wait=False)


class FileDiscovery:
    """
    Lists log files directly inside a base directory (no recursion).

    A file qualifies when its extension is supported and its last-modified
    local calendar date equals the target date. Results are newest first.
    """

    def __init__(
        self,
        extensions: Optional[Iterable[str]] = None,
        browse_extensions: Optional[Iterable[str]] = None,
        large_file_warning_mb: Optional[float] = None,
        config_manager: Optional[ConfigManager] = None,
    ):
        cfg = config_manager or default_config
        if extensions is None:
            extensions = cfg.get_supported_extensions()
        if browse_extensions is None:
            browse_extensions = cfg.get_supported_extensions(include_browse=True)
        if large_file_warning_mb is None:
            large_file_warning_mb = cfg.get_discovery_config().get("large_file_warning_mb", 50)

        self.extensions = {ext.lower() for ext in extensions}
        self.browse_extensions = self.extensions | {ext.lower() for ext in browse_extensions}
        self.large_file_warning_mb = float(large_file_warning_mb)

    def find_files(self, base_path: str, target_date: Optional[date] = None) -> List[LogFile]:
        """
        Files under ``base_path`` modified on ``target_date`` (default today).

        Raises:
            NotFoundError: base_path does not exist or is not a directory
            AccessDeniedError: base_path cannot be listed
        """
        target = target_date or date.today()
        files = [f for f in self._scan(base_path, self.extensions) if f.modified_date == target]
        logger.debug(f"Found {len(files)} files for {target.isoformat()} in {base_path}")
        return files

    def list_files(self, base_path: str, include_browse: bool = True) -> List[LogFile]:
        """All supported files regardless of date, newest first."""
        extensions = self.browse_extensions if include_browse else self.extensions
        return self._scan(base_path, extensions)

    def available_dates(self, base_path: str) -> Dict[str, Any]:
        """
        Group supported files by modified date.

        Returns:
            Dictionary with ``dates`` (newest date first, files newest first)
            and a ``summary`` block
        """
        by_date: Dict[date, List[LogFile]] = {}
        for log_file in self._scan(base_path, self.extensions):
            by_date.setdefault(log_file.modified_date, []).append(log_file)

        dates = []
        for day in sorted(by_date, reverse=True):
            files = by_date[day]
            total_size = sum(f.size for f in files)
            dates.append({
                "date": day.isoformat(),
                "fileCount": len(files),
                "files": [f.to_dict() for f in files],
                "totalSize": total_size,
                "totalSizeFormatted": format_bytes(total_size),
            })

        return {
            "path": base_path,
            "dates": dates,
            "summary": {
                "totalDates": len(dates),
                "totalFiles": sum(d["fileCount"] for d in dates),
                "newest": dates[0]["date"] if dates else None,
                "oldest": dates[-1]["date"] if dates else None,
            },
        }

    def _scan(self, base_path: str, extensions: Iterable[str]) -> List[LogFile]:
        if not os.path.exists(base_path):
            raise NotFoundError(f"Path not found: {base_path}", path=base_path)
        if not os.path.isdir(base_path):
            raise NotFoundError(f"Not a directory: {base_path}", path=base_path)

        try:
            items = list(os.scandir(base_path))
        except PermissionError as e:
            raise AccessDeniedError(f"Cannot list {base_path}: {e}", path=base_path)
        except FileNotFoundError as e:
            raise NotFoundError(f"Path not found: {base_path}: {e}", path=base_path)

        found = []
        for item in items:
            ext = Path(item.name).suffix.lower()
            if ext not in extensions:
                continue
            try:
                if not item.is_file():
                    continue
                stats = item.stat()
            except OSError as e:
                logger.warning(f"Cannot access file: {item.name} - {e}")
                continue

            created = getattr(stats, "st_birthtime", stats.st_ctime)
            found.append(LogFile(
                path=item.path,
                name=item.name,
                size=stats.st_size,
                modified_at=datetime.fromtimestamp(stats.st_mtime),
                created_at=datetime.fromtimestamp(created),
                extension=ext,
            ))

        found.sort(key=lambda f: f.modified_at, reverse=True)
        return found

    def read_text(self, path: str) -> str:
        """
        Read a whole file as UTF-8 (undecodable bytes are replaced).

        Raises:
            NotFoundError, AccessDeniedError, LogFileError
        """
        try:
            size_mb = os.path.getsize(path) / (1024 * 1024)
            if size_mb > self.large_file_warning_mb:
                logger.warning(f"Large file detected: {path} ({size_mb:.2f}MB)")
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                return f.read()
        except FileNotFoundError as e:
            raise NotFoundError(f"File not found: {path}: {e}", path=path)
        except PermissionError as e:
            raise AccessDeniedError(f"Permission denied: {path}: {e}", path=path)
        except OSError as e:
            raise LogFileError(f"Error reading {path}: {e}", path=path)

    def read_lines(self, path: str) -> List[str]:
        """Right-trimmed, non-empty lines of a file."""
        lines = (line.rstrip() for line in self.read_text(path).split("\n"))
        return [line for line in lines if line]
