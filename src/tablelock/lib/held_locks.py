"""Process-local table of the leases a lock manager believes it holds."""
from __future__ import annotations

import threading
from typing import Dict, List, Optional


class HeldLocks:
    """Thread-safe ``target -> code`` map.

    Written by ``acquire``/``release`` on caller threads and read by the lease
    renewer on a scheduler thread. The renewer only ever removes entries with
    ``remove_if`` so that it cannot drop a newer lease for the same target.
    """

    def __init__(self):
        self._codes: Dict[str, str] = {}
        self._lock = threading.Lock()

    def put(self, target: str, code: str) -> None:
        with self._lock:
            self._codes[target] = code

    def get(self, target: str) -> Optional[str]:
        with self._lock:
            return self._codes.get(target)

    def remove_if(self, target: str, code: str) -> bool:
        """Remove ``target`` only while it still maps to ``code``."""
        with self._lock:
            if self._codes.get(target) != code:
                return False
            del self._codes[target]
            return True

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._codes)

    def targets(self) -> List[str]:
        with self._lock:
            return sorted(self._codes)

    def __contains__(self, target: object) -> bool:
        with self._lock:
            return target in self._codes

    def __len__(self) -> int:
        with self._lock:
            return len(self._codes)
