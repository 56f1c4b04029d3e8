"""
Session Repository - indexes session logs in a folder and caches results.

Logs are processed lazily on first access; the API never touches files
directly.
"""

import logging
from pathlib import Path
from typing import Optional

from ridelog.models.config import ProcessingConfig
from ridelog.models.errors import SessionProcessingError
from ridelog.models.ride import ProcessedSession
from ridelog.services.pipeline import SessionProcessor, session_id_for


logger = logging.getLogger(__name__)


class SessionRepository:
    """
    Repository for processed ride sessions.

    Reads ``*.csv`` session logs from a folder and keeps processed sessions
    in memory.
    """

    def __init__(self, data_folder: Optional[Path] = None, config: Optional[ProcessingConfig] = None):
        """
        Initialize the repository.

        Args:
            data_folder: Folder containing session logs. If None, must be set later.
            config: Processing configuration used for every session.
        """
        self._data_folder: Optional[Path] = data_folder
        self._processor = SessionProcessor(config)
        self._cache: dict[str, ProcessedSession] = {}
        self._index: dict[str, Path] = {}  # id -> filepath mapping

        if data_folder is not None:
            self.scan_folder(data_folder)

    @property
    def data_folder(self) -> Optional[Path]:
        return self._data_folder

    @property
    def config(self) -> ProcessingConfig:
        return self._processor.config

    def set_data_folder(self, folder: Path) -> int:
        """
        Set the data folder and scan it.

        Returns:
            Number of session logs found
        """
        self._data_folder = folder
        self._cache.clear()
        self._index.clear()
        return self.scan_folder(folder)

    def scan_folder(self, folder: Path) -> int:
        """
        Scan a folder for session logs and build the index.

        Returns:
            Number of session logs found
        """
        if not folder.exists():
            logger.warning(f"Data folder does not exist: {folder}")
            return 0

        count = 0
        for log_file in sorted(folder.glob("*.csv")):
            if log_file.is_file():
                session_id = session_id_for(log_file)
                self._index[session_id] = log_file
                count += 1
                logger.debug(f"Indexed session: {session_id} -> {log_file.name}")

        logger.info(f"Scanned {count} session logs in {folder}")
        return count

    def session_ids(self) -> list[str]:
        return list(self._index)

    def list_sessions(self) -> list[ProcessedSession]:
        """
        Process (or fetch from cache) every indexed session.

        Sessions that fail to process are logged and left out.
        """
        sessions = []
        for session_id in self._index:
            try:
                session = self.get_session(session_id)
            except SessionLoadError as e:
                logger.error(str(e))
                continue
            if session is not None:
                sessions.append(session)

        sessions.sort(key=lambda s: (s.info.recorded_at or "", s.info.file_name), reverse=True)
        return sessions

    def get_session(self, session_id: str) -> Optional[ProcessedSession]:
        """
        Get a processed session by ID.

        Returns None for an unknown id. Raises SessionLoadError when the log
        exists but cannot be processed.
        """
        if session_id in self._cache:
            return self._cache[session_id]
        if session_id not in self._index:
            return None
        return self._load_session(session_id, self._index[session_id])

    def reprocess_session(self, session_id: str) -> Optional[ProcessedSession]:
        """Drop the cached result and process the log again."""
        if session_id not in self._index:
            return None
        self._cache.pop(session_id, None)
        return self._load_session(session_id, self._index[session_id])

    def clear_cache(self) -> None:
        """Clear the in-memory cache."""
        self._cache.clear()
        logger.info("Session cache cleared")

    def _load_session(self, session_id: str, filepath: Path) -> ProcessedSession:
        try:
            session = self._processor.process_file(filepath)
        except (SessionProcessingError, OSError) as e:
            raise SessionLoadError(session_id, filepath, e) from e

        self._cache[session_id] = session
        logger.debug(f"Processed and cached session: {session_id}")
        return session


class SessionLoadError(Exception):
    """A session log is indexed but could not be processed."""

    def __init__(self, session_id: str, filepath: Path, cause: Exception):
        super().__init__(f"Failed to process session {session_id} ({filepath.name}): {cause}")
        self.session_id = session_id
        self.filepath = filepath
        self.cause = cause


# Global repository instance (set up by app initialization)
_repository: Optional[SessionRepository] = None


def get_repository() -> SessionRepository:
    """Get the global repository instance."""
    global _repository
    if _repository is None:
        _repository = SessionRepository(config=ProcessingConfig.from_env())
    return _repository


def init_repository(data_folder: Path, config: Optional[ProcessingConfig] = None) -> SessionRepository:
    """Initialize the global repository with a data folder."""
    global _repository
    _repository = SessionRepository(data_folder, config or ProcessingConfig.from_env())
    return _repository
