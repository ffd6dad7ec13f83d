import threading
from contextlib import contextmanager
from typing import Dict, Hashable


class KeyedLock:
    """
    키(환경 ID, 사용자 ID 등)별로 독립된 뮤텍스를 제공합니다.

    같은 키에 대한 작업은 한 번에 하나씩만 실행되고, 서로 다른 키는 병렬로 진행됩니다.
    아무도 잡고 있지 않은 키의 락은 참조 카운트가 0이 되는 순간 정리됩니다.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._refcounts: Dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable):
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._refcounts[key] = self._refcounts.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._refcounts[key] -= 1
                if self._refcounts[key] == 0:
                    del self._refcounts[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
