from collections import OrderedDict
from typing import Optional
import threading
import uuid
import structlog

from execution_tracker.services.tracker import TrackerState

logger = structlog.get_logger()


class ViewRegistry:
    """In-process registry of open tracker views.

    Capacity-bounded; the least recently used view is dropped when a new one
    would exceed ``max_views``.
    """

    def __init__(self, max_views: int = 256) -> None:
        self._views: "OrderedDict[str, TrackerState]" = OrderedDict()
        self._max = max_views
        self._lock = threading.Lock()

    def open(self, state: TrackerState) -> str:
        view_id = str(uuid.uuid4())
        with self._lock:
            self._views[view_id] = state
            while len(self._views) > self._max:
                evicted, _ = self._views.popitem(last=False)
                logger.info("Evicted tracker view", view_id=evicted)
        return view_id

    def get(self, view_id: str) -> Optional[TrackerState]:
        with self._lock:
            state = self._views.get(view_id)
            if state is not None:
                self._views.move_to_end(view_id)
            return state

    def close(self, view_id: str) -> bool:
        with self._lock:
            return self._views.pop(view_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._views)
