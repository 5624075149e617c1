"""
Realtime subscription to backend table change events over a Phoenix channel websocket.
"""

import itertools
import json
import threading
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

from websockets.exceptions import ConnectionClosed
from websockets.sync.client import connect

from .logging_config import get_logger

logger = get_logger(__name__)

PROTOCOL_VERSION = '1.0.0'
HEARTBEAT_INTERVAL = 30.0


class RealtimeError(Exception):
    """Custom exception for realtime subscription errors."""
    pass


def realtime_url(backend_url: str, api_key: str) -> str:
    """Build the realtime websocket URL for a backend base URL."""
    base = backend_url.rstrip('/')
    if base.startswith('https://'):
        base = 'wss://' + base[len('https://'):]
    elif base.startswith('http://'):
        base = 'ws://' + base[len('http://'):]
    query = urlencode({'apikey': api_key, 'vsn': PROTOCOL_VERSION})
    return f'{base}/realtime/v1/websocket?{query}'


class RealtimeSubscription:
    """Listen for change events on one table and hand each new record to a callback.

    The websocket is serviced by a daemon thread that joins the channel, sends
    heartbeats whenever no frame arrived within the heartbeat interval, and
    dispatches matching ``postgres_changes`` events.
    """

    def __init__(self,
                 url: str,
                 channel: str,
                 table: str,
                 callback: Callable[[Any], None],
                 row_filter: Optional[str] = None,
                 schema: str = 'public',
                 event: str = 'INSERT',
                 access_token: Optional[str] = None,
                 record_factory: Optional[Callable[[Dict[str, Any]], Any]] = None,
                 heartbeat_interval: float = HEARTBEAT_INTERVAL,
                 connect_factory: Callable[..., Any] = connect):
        self.url = url
        self.topic = f'realtime:{channel}'
        self.table = table
        self.callback = callback
        self.row_filter = row_filter
        self.schema = schema
        self.event = event
        self.access_token = access_token
        self.record_factory = record_factory
        self.heartbeat_interval = heartbeat_interval
        self._connect = connect_factory
        self._refs = itertools.count(1)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._ws = None
        self.error: Optional[RealtimeError] = None

    def _message(self, topic: str, event: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {'topic': topic, 'event': event, 'payload': payload, 'ref': str(next(self._refs))}

    def join_message(self) -> Dict[str, Any]:
        change = {'event': self.event, 'schema': self.schema, 'table': self.table}
        if self.row_filter:
            change['filter'] = self.row_filter
        payload = {
            'config': {
                'broadcast': {
                    'self': False
                },
                'presence': {
                    'key': ''
                },
                'postgres_changes': [change],
            }
        }
        if self.access_token:
            payload['access_token'] = self.access_token
        return self._message(self.topic, 'phx_join', payload)

    def heartbeat_message(self) -> Dict[str, Any]:
        return self._message('phoenix', 'heartbeat', {})

    def leave_message(self) -> Dict[str, Any]:
        return self._message(self.topic, 'phx_leave', {})

    def handle_message(self, raw: str) -> bool:
        """Process one incoming frame.

        Args:
            raw: JSON text frame

        Returns:
            True if a record was dispatched to the callback
        """
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning(f'Ignoring malformed realtime frame: {raw!r}')
            return False

        if not isinstance(message, dict) or message.get('topic') != self.topic:
            return False

        event = message.get('event')
        payload = message.get('payload') or {}

        if event == 'phx_reply' and payload.get('status') == 'error':
            logger.error(f'Realtime join rejected for {self.topic}: {payload.get("response")}')
            return False
        if event in ('phx_error', 'phx_close'):
            logger.warning(f'Realtime channel {self.topic} reported {event}')
            return False
        if event != 'postgres_changes':
            return False

        data = payload.get('data') or {}
        if data.get('type') != self.event or data.get('table', self.table) != self.table:
            return False

        record = data.get('record') or {}
        try:
            item = self.record_factory(record) if self.record_factory else record
            self.callback(item)
        except Exception as e:
            logger.error(f'Realtime callback failed for {self.topic}: {e}')
            return False
        return True

    def start(self) -> 'RealtimeSubscription':
        if self._thread is not None:
            return self
        self._thread = threading.Thread(target=self._run, name=f'realtime-{self.topic}', daemon=True)
        self._thread.start()
        logger.info(f'Subscribed to {self.event} events on {self.table} ({self.topic})')
        return self

    def _run(self) -> None:
        try:
            with self._connect(self.url) as ws:
                self._ws = ws
                ws.send(json.dumps(self.join_message()))
                while not self._stop.is_set():
                    try:
                        raw = ws.recv(timeout=self.heartbeat_interval)
                    except TimeoutError:
                        ws.send(json.dumps(self.heartbeat_message()))
                        continue
                    self.handle_message(raw)
        except ConnectionClosed as e:
            if not self._stop.is_set():
                logger.warning(f'Realtime connection for {self.topic} closed: {e}')
                self.error = RealtimeError(f'Connection closed: {e}')
        except Exception as e:
            logger.error(f'Realtime connection for {self.topic} failed: {e}')
            self.error = RealtimeError(f'Realtime subscription failed: {e}')
        finally:
            self._ws = None

    @property
    def is_active(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def unsubscribe(self, timeout: float = 5.0) -> None:
        """Leave the channel, close the socket and wait for the worker thread."""
        self._stop.set()
        ws = self._ws
        if ws is not None:
            try:
                ws.send(json.dumps(self.leave_message()))
                ws.close()
            except ConnectionClosed:
                pass
        if self._thread is not None:
            self._thread.join(timeout)
        logger.info(f'Unsubscribed from {self.topic}')
