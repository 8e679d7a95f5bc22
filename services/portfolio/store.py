from __future__ import annotations

import logging
import os
import tempfile
import threading
from typing import Callable, Optional, Tuple, TypeVar

from pydantic import ValidationError

from schemas.portfolio import PortfolioData

logger = logging.getLogger(__name__)

R = TypeVar("R")

MutationFn = Callable[[PortfolioData], Tuple[PortfolioData, R]]


class PortfolioStore:
    """JSON-document store with copy-on-write reads and serialized writes.

    ``read()`` hands out a deep copy, so callers may freely modify what they
    get. ``mutate(fn)`` is the only write path: ``fn`` receives a private copy
    of the current document and returns ``(new_data, result)``; the new
    document is swapped in and persisted before ``result`` is returned.

    With ``path=None`` the store lives in memory only.
    """

    def __init__(self, path: Optional[str] = None, initial: Optional[PortfolioData] = None):
        self.path = path
        self._lock = threading.RLock()
        if initial is not None:
            self._data = initial.model_copy(deep=True)
        else:
            self._data = self._load()

    # ── io ──────────────────────────────────────────────────────────────

    def _load(self) -> PortfolioData:
        if not self.path or not os.path.exists(self.path):
            return PortfolioData()
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                raw = fh.read()
            if not raw.strip():
                return PortfolioData()
            return PortfolioData.model_validate_json(raw)
        except (OSError, ValueError, ValidationError):
            logger.warning("portfolio_store.load_failed path=%s; starting empty", self.path, exc_info=True)
            return PortfolioData()

    def _persist(self, data: PortfolioData) -> None:
        if not self.path:
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".db-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(data.model_dump_json(by_alias=True, indent=2))
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    # ── public api ──────────────────────────────────────────────────────

    def read(self) -> PortfolioData:
        with self._lock:
            return self._data.model_copy(deep=True)

    async def mutate(self, fn: MutationFn) -> R:
        with self._lock:
            working = self._data.model_copy(deep=True)
            new_data, result = fn(working)
            self._persist(new_data)
            self._data = new_data
            logger.debug(
                "portfolio_store.mutated positions=%s accounts=%s transactions=%s",
                len(new_data.positions),
                len(new_data.accounts),
                len(new_data.transactions),
            )
            return result
