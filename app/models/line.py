from pydantic import BaseModel, Field
from typing import List, Optional
from app.models.deal import DealResponse


# --- 手動LINE送信 ---

class LineSendRequest(BaseModel):
    """LINE送信リクエスト"""
    deal_id: int
    phase: str  # テンプレート選択用のフェーズ名（またはカスタム）
    message: Optional[str] = None  # 未指定時はフェーズのテンプレートを使用
    line_user_id: Optional[str] = None  # 未指定時は案件の連携IDを使用


class LineSendResponse(BaseModel):
    """LINE送信レスポンス"""
    success: bool
    deal_id: int
    line_user_id: str
    message: str


# --- テンプレート ---

class TemplateResponse(BaseModel):
    """テンプレートレスポンス（案件指定時は展開済みの本文を含む）"""
    name: str
    template: str
    rendered: Optional[str] = None
    is_default: bool = False


class TemplateUpdate(BaseModel):
    """テンプレート更新リクエスト"""
    template: str = Field(..., min_length=1)


# --- QRコード連携 ---

class QrCodeResponse(BaseModel):
    """LINE友だち追加QRコード情報"""
    deal_id: int
    token: str
    url: str
    qr_code_data_url: str


# --- 連携状況ダッシュボード ---

class LineConnectionSummary(BaseModel):
    """LINE連携状況"""
    total_deals: int
    connected_count: int
    qr_count: int
    auto_count: int
    manual_count: int
    connection_rate: float
    unconnected_deals: List[DealResponse]


class WebhookResponse(BaseModel):
    status: str = "ok"
    processed_events: int = 0
