"""
案件選択待ち状態の管理

名前マッチングで複数の候補が見つかったLINEユーザーについて、
候補の案件IDを一定時間保持します。プロセス内のみで保持し、再起動で消えます。
"""
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from app.config import settings


@dataclass
class PendingSelection:
    line_user_id: str
    candidate_ids: List[int]
    expires_at: datetime

    def candidate_for(self, number: int) -> Optional[int]:
        """1始まりの番号から候補の案件IDを取得"""
        if 1 <= number <= len(self.candidate_ids):
            return self.candidate_ids[number - 1]
        return None


class PendingSelectionStore:
    """LINEユーザーごとの選択待ち候補（TTL付き）"""

    def __init__(
        self,
        ttl: timedelta,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._lock = threading.Lock()
        self._ttl = ttl
        self._clock = clock
        self._items: Dict[str, PendingSelection] = {}

    def put(self, line_user_id: str, candidate_ids: List[int]) -> PendingSelection:
        selection = PendingSelection(
            line_user_id=line_user_id,
            candidate_ids=list(candidate_ids),
            expires_at=self._clock() + self._ttl,
        )
        with self._lock:
            self._items[line_user_id] = selection
        return selection

    def get(self, line_user_id: str) -> Optional[PendingSelection]:
        """有効な選択待ちを取得（期限切れは破棄してNone）"""
        with self._lock:
            selection = self._items.get(line_user_id)
            if selection is None:
                return None
            if selection.expires_at <= self._clock():
                del self._items[line_user_id]
                return None
            return selection

    def clear(self, line_user_id: str) -> None:
        with self._lock:
            self._items.pop(line_user_id, None)

    def sweep_expired(self) -> int:
        """期限切れの選択待ちを削除し、削除件数を返す"""
        now = self._clock()
        with self._lock:
            expired = [k for k, v in self._items.items() if v.expires_at <= now]
            for key in expired:
                del self._items[key]
        return len(expired)


_pending_store: Optional[PendingSelectionStore] = None


def get_pending_selection_store() -> PendingSelectionStore:
    """PendingSelectionStoreのシングルトンインスタンスを取得"""
    global _pending_store
    if _pending_store is None:
        _pending_store = PendingSelectionStore(
            ttl=timedelta(minutes=settings.PENDING_SELECTION_TTL_MINUTES)
        )
    return _pending_store
