"""
Snapshot persistence for the digital twin store.
"""

import json
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Optional

from ..utils.logging_config import get_logger
from ..utils.token_store import STORE_SNAPSHOT_KEY, KeyValueStore

logger = get_logger(__name__)

SNAPSHOT_VERSION = 0


class SnapshotPersister:
    """Mirror store state into a KeyValueStore after each mutation.

    The snapshot is serialized in the caller's thread so it reflects the state at
    the time of the mutation. With ``background=True`` the write itself runs on a
    single worker thread, which keeps writes in mutation order.
    """

    def __init__(self, storage: KeyValueStore, key: str = STORE_SNAPSHOT_KEY, background: bool = False):
        self.storage = storage
        self.key = key
        self._executor: Optional[ThreadPoolExecutor] = None
        if background:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='store-persist')
        self._pending: Optional[Future] = None

    def save(self, state: Dict[str, Any]) -> None:
        payload = json.dumps({'state': state, 'version': SNAPSHOT_VERSION})
        if self._executor is None:
            self._write(payload)
            return
        self._pending = self._executor.submit(self._write, payload)

    def _write(self, payload: str) -> None:
        try:
            self.storage.set_item(self.key, payload)
        except Exception as e:
            logger.error(f'Failed to persist store snapshot: {e}')

    def load(self) -> Optional[Dict[str, Any]]:
        """
        Read the persisted state.

        Returns:
            The persisted state dictionary, or None when nothing usable is stored
        """
        try:
            raw = self.storage.get_item(self.key)
        except Exception as e:
            logger.error(f'Failed to read store snapshot: {e}')
            return None
        if not raw:
            return None
        try:
            snapshot = json.loads(raw)
        except ValueError as e:
            logger.warning(f'Ignoring unreadable store snapshot: {e}')
            return None
        state = snapshot.get('state') if isinstance(snapshot, dict) else None
        return state if isinstance(state, dict) else None

    def flush(self) -> None:
        """Block until the most recent background write has finished."""
        pending = self._pending
        if pending is not None:
            pending.result()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
