"""
Durable bookkeeping for webhook reconciliation.

``ProcessedSessionLedger`` remembers which checkout sessions already moved
stock, so replayed notifications are no-ops. ``DeadLetterQueue`` keeps the
completions whose stock update could not be persisted.

Both are JSON-lines files that are only ever appended to, except when the
dead-letter queue is rewritten after a retry.
"""

import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from checkout_backend.errors import StorageError


def _utcnow() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def _append_lines(path: Path, lines: List[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'a', encoding='utf-8') as handle:
        handle.write('\n'.join(lines) + '\n')
        handle.flush()
        os.fsync(handle.fileno())


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix='.tmp')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except OSError:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class ProcessedSessionLedger:
    """Session ids already reconciled, loaded once and kept in memory."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._sessions: Optional[Dict[str, Dict[str, Any]]] = None

    def _loaded(self) -> Dict[str, Dict[str, Any]]:
        if self._sessions is not None:
            return self._sessions

        sessions: Dict[str, Dict[str, Any]] = {}
        try:
            with open(self.path, 'r', encoding='utf-8') as handle:
                for line in handle:
                    if not line.strip():
                        continue
                    entry = json.loads(line)
                    if entry.get('discarded'):
                        sessions.pop(entry['session_id'], None)
                    else:
                        sessions[entry['session_id']] = entry
        except FileNotFoundError:
            pass
        except (OSError, ValueError, KeyError) as e:
            raise StorageError("Error reading processed-session ledger", str(e)) from e

        self._sessions = sessions
        return sessions

    def _append(self, entry: Dict[str, Any]) -> None:
        try:
            _append_lines(self.path, [json.dumps(entry, sort_keys=True)])
        except OSError as e:
            raise StorageError("Error writing processed-session ledger", str(e)) from e

    def contains(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._loaded()

    def record(self, session_id: str, **info: Any) -> None:
        with self._lock:
            sessions = self._loaded()
            entry = dict(info, session_id=session_id, processed_at=_utcnow())
            self._append(entry)
            sessions[session_id] = entry

    def discard(self, session_id: str) -> None:
        with self._lock:
            sessions = self._loaded()
            if session_id not in sessions:
                return
            self._append({'session_id': session_id, 'discarded': True, 'discarded_at': _utcnow()})
            del sessions[session_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._loaded())


class DeadLetterQueue:
    """JSON-lines file of failed reconciliations."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, entry: Dict[str, Any]) -> None:
        self.extend([entry])

    def extend(self, entries: Iterable[Dict[str, Any]]) -> None:
        lines = [json.dumps(dict(entry, failed_at=entry.get('failed_at') or _utcnow())) for entry in entries]
        if not lines:
            return
        with self._lock:
            _append_lines(self.path, lines)

    def _read(self) -> List[Dict[str, Any]]:
        entries = []
        try:
            with open(self.path, 'r', encoding='utf-8') as handle:
                for line in handle:
                    if not line.strip():
                        continue
                    try:
                        entry = json.loads(line)
                    except ValueError:
                        entry = None
                    if not isinstance(entry, dict):
                        # Kept verbatim so it stays queued for inspection
                        entry = {'raw': line.rstrip('\n')}
                    entries.append(entry)
        except FileNotFoundError:
            pass
        return entries

    def entries(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self._read()

    def reprocess(self, handler: Callable[[Dict[str, Any]], bool]) -> int:
        """
        Feed every queued entry to ``handler`` and drop the ones it resolved.

        The file is rewritten only after all entries were handled, so an
        exception (or a crash) leaves the queue exactly as it was. Returns the
        number of entries still queued.
        """
        with self._lock:
            entries = self._read()
            if not entries:
                return 0
            remaining = [entry for entry in entries if not handler(entry)]
            _atomic_write(self.path, ''.join(json.dumps(entry) + '\n' for entry in remaining))
            return len(remaining)

    def __len__(self) -> int:
        return len(self.entries())
