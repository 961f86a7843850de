from pydantic import BaseModel
from typing import List
from app.models.deal import DealResponse


# --- 期限リマインダー ---

class ReminderBatchResponse(BaseModel):
    """定時リマインダーバッチの実行結果"""
    processed_count: int
    sent_count: int
    failed_count: int
    skipped_count: int = 0  # 本日送信済みのためスキップした件数
    errors: List[str]


class ReminderCheckResponse(BaseModel):
    """期限リマインダーの手動実行結果（0〜3日以内が対象）"""
    sent: int
    deals: List[DealResponse]
    errors: List[str] = []
