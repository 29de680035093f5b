"""Shared registry of bridge sessions across processes and machines.

All sessions read-modify-write one JSON file, ``_sessions.json`` in the data
directory, laid out as ``{session_id: {machine, agent, startedAt, lastSeen,
active, topicId?}}``.
"""

import logging
import time
from pathlib import Path
from typing import Optional

from .file_store import atomic_write_json, locked, read_json
from .models import Session

logger = logging.getLogger("telegram_mcp_bridge.session_registry")

LIVENESS_WINDOW = 600
REGISTRY_FILENAME = "_sessions.json"


class SessionRegistry:
    """Tracks known sessions and their liveness.

    A session is live while it is marked active and its last heartbeat is
    younger than the liveness window. A killed process is never deactivated
    explicitly; it simply ages out.
    """

    def __init__(self, data_dir: Path, liveness_window: int = LIVENESS_WINDOW):
        """Initialize the registry.

        Args:
            data_dir: Directory holding the shared registry file
            liveness_window: Seconds after the last heartbeat a session stays live
        """
        self.data_dir = Path(data_dir)
        self.registry_file = self.data_dir / REGISTRY_FILENAME
        self.liveness_window = liveness_window
        self._sessions: dict[str, Session] = {}
        self._unsaved = False
        self._load()

    def _load(self) -> None:
        """Load persisted registry state."""
        if self._unsaved:
            return
        data = read_json(self.registry_file)
        if data is None:
            self._sessions = {}
            return
        if not isinstance(data, dict):
            logger.warning(f"Registry file {self.registry_file} is not a JSON object, starting empty")
            self._sessions = {}
            return

        sessions: dict[str, Session] = {}
        for session_id, entry in data.items():
            try:
                sessions[session_id] = Session.from_dict(session_id, entry)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed registry entry {session_id}: {e}")
        self._sessions = sessions

    def _save(self) -> None:
        """Persist registry state to file."""
        try:
            atomic_write_json(
                self.registry_file,
                {sid: session.to_dict() for sid, session in self._sessions.items()},
            )
            self._unsaved = False
        except OSError as e:
            logger.warning(f"Session registry save failed: {e}")
            self._unsaved = True

    def register(
        self,
        session_id: str,
        machine: str,
        agent: str,
        topic_id: Optional[int] = None,
    ) -> Session:
        """Add or overwrite a session entry as active, started and seen now."""
        now = int(time.time())
        with locked(self.registry_file):
            self._load()
            session = Session(
                session_id=session_id,
                machine=machine,
                agent=agent,
                started_at=now,
                last_seen=now,
                active=True,
                topic_id=topic_id,
            )
            self._sessions[session_id] = session
            self._save()
        logger.info(f"Registered session {session_id} ({machine}/{agent})")
        return session

    def heartbeat(self, session_id: str) -> None:
        """Refresh last_seen for a known session. Unknown IDs are ignored."""
        with locked(self.registry_file):
            self._load()
            session = self._sessions.get(session_id)
            if session is None:
                return
            session.last_seen = int(time.time())
            self._save()

    def deactivate(self, session_id: str) -> None:
        """Mark a session inactive. Unknown IDs are ignored."""
        with locked(self.registry_file):
            self._load()
            session = self._sessions.get(session_id)
            if session is None:
                return
            session.active = False
            self._save()
        logger.info(f"Session {session_id} deactivated")

    def get(self, session_id: str) -> Optional[Session]:
        self._load()
        return self._sessions.get(session_id)

    def get_active(self) -> dict[str, Session]:
        """Return live sessions only."""
        self._load()
        now = int(time.time())
        return {
            sid: session
            for sid, session in self._sessions.items()
            if session.is_live(now, self.liveness_window)
        }

    def get_active_session_ids(self) -> list[str]:
        return list(self.get_active())

    def get_all(self) -> dict[str, Session]:
        """Unfiltered snapshot, for diagnostics and listing commands."""
        self._load()
        return dict(self._sessions)

    def find_by_topic(self, topic_id: int) -> Optional[Session]:
        """Return the session that owns a forum topic, live or not.

        A fixed topic can be reused by several session IDs over time; the
        active, most recently seen one wins.
        """
        owners = [s for s in self.get_all().values() if s.topic_id == topic_id]
        if not owners:
            return None
        return max(owners, key=lambda s: (s.active, s.last_seen))
