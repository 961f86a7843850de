from pydantic import BaseModel, Field
from typing import Optional, Literal, Union, Annotated
from datetime import date, datetime
import json
import logging

from app.models.phase import (
    Phase,
    Priority,
    ConnectionMethod,
    DEFAULT_PHASE,
    is_follow_up,
    is_billing,
)

logger = logging.getLogger(__name__)


# --- フェーズ別の詳細 ---

class FollowUpChecklist(BaseModel):
    """フォローアップのチェックリスト（⑪フォローアップ）"""
    kind: Literal["follow_up"] = "follow_up"
    lifeline_support_done: bool = False  # ライフライン契約サポート
    housewarming_gift_sent: bool = False  # 引っ越し祝い送付
    memo: Optional[str] = None


class BillingInfo(BaseModel):
    """AD請求情報（⑫AD請求/着金）"""
    kind: Literal["billing"] = "billing"
    ad_amount: Optional[int] = None
    invoice_date: Optional[date] = None
    expected_payment_date: Optional[date] = None
    paid_date: Optional[date] = None
    invoice_sent: bool = False
    payment_confirmed: bool = False


PhaseDetail = Annotated[Union[FollowUpChecklist, BillingInfo], Field(discriminator="kind")]


def dump_phase_details(
    follow_up: Optional[FollowUpChecklist], billing: Optional[BillingInfo]
) -> Optional[str]:
    """フェーズ別詳細をJSON文字列に変換（DB保存用）"""
    details = {}
    if follow_up is not None:
        details["follow_up"] = follow_up.model_dump(mode="json")
    if billing is not None:
        details["billing"] = billing.model_dump(mode="json")
    return json.dumps(details, ensure_ascii=False) if details else None


def load_phase_details(raw: Optional[str]) -> dict:
    """DBのJSON文字列からフェーズ別詳細を復元"""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Invalid phase_details JSON: {raw!r}")
        return {}
    details = {}
    if data.get("follow_up"):
        details["follow_up"] = FollowUpChecklist(**data["follow_up"])
    if data.get("billing"):
        details["billing"] = BillingInfo(**data["billing"])
    return details


# --- 案件 ---

class DealCreate(BaseModel):
    """案件作成リクエスト"""
    title: str = Field(..., min_length=3, description="案件名（3文字以上）")
    client: Optional[str] = None
    priority: Priority
    phase: Phase = DEFAULT_PHASE
    due_date: date
    notes: Optional[str] = None

    # 取引台帳項目
    deal_number: Optional[str] = None
    deal_type: Optional[str] = "rental"
    tenant_name: Optional[str] = None
    tenant_address: Optional[str] = None
    contract_date: Optional[date] = None
    rent_price: Optional[int] = None
    management_fee: Optional[int] = None
    deposit: Optional[int] = None
    key_money: Optional[int] = None
    brokerage: Optional[int] = None
    ad_fee: Optional[int] = None
    landlord_name: Optional[str] = None
    landlord_address: Optional[str] = None
    real_estate_agent: Optional[str] = None

    line_user_id: Optional[str] = None
    customer_checklist_url: Optional[str] = None

    follow_up: Optional[FollowUpChecklist] = None
    billing: Optional[BillingInfo] = None


class DealUpdate(BaseModel):
    """案件更新リクエスト（部分更新、送信されたフィールドのみ反映）"""
    title: Optional[str] = Field(None, min_length=3)
    client: Optional[str] = None
    priority: Optional[Priority] = None
    phase: Optional[Phase] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None

    deal_number: Optional[str] = None
    deal_type: Optional[str] = None
    tenant_name: Optional[str] = None
    tenant_address: Optional[str] = None
    contract_date: Optional[date] = None
    rent_price: Optional[int] = None
    management_fee: Optional[int] = None
    deposit: Optional[int] = None
    key_money: Optional[int] = None
    brokerage: Optional[int] = None
    ad_fee: Optional[int] = None
    landlord_name: Optional[str] = None
    landlord_address: Optional[str] = None
    real_estate_agent: Optional[str] = None

    line_user_id: Optional[str] = None
    line_display_name: Optional[str] = None
    line_connection_method: Optional[ConnectionMethod] = None
    customer_checklist_url: Optional[str] = None

    follow_up: Optional[FollowUpChecklist] = None
    billing: Optional[BillingInfo] = None


class DealResponse(BaseModel):
    """案件レスポンス"""
    id: int
    title: str
    client: Optional[str] = None
    priority: Priority
    phase: Phase
    due_date: date
    notes: Optional[str] = None

    deal_number: Optional[str] = None
    deal_type: Optional[str] = None
    tenant_name: Optional[str] = None
    tenant_address: Optional[str] = None
    contract_date: Optional[date] = None
    rent_price: Optional[int] = None
    management_fee: Optional[int] = None
    deposit: Optional[int] = None
    key_money: Optional[int] = None
    brokerage: Optional[int] = None
    ad_fee: Optional[int] = None
    landlord_name: Optional[str] = None
    landlord_address: Optional[str] = None
    real_estate_agent: Optional[str] = None

    line_user_id: Optional[str] = None
    line_display_name: Optional[str] = None
    line_connection_method: ConnectionMethod = ConnectionMethod.NONE
    line_connected_at: Optional[datetime] = None
    qr_code_token: Optional[str] = None
    customer_checklist_url: Optional[str] = None

    follow_up: Optional[FollowUpChecklist] = None
    billing: Optional[BillingInfo] = None

    last_reminded_on: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_record(cls, record) -> "DealResponse":
        """DealRecordからDealResponseを生成"""
        details = load_phase_details(record.phase_details)
        return cls(
            id=record.id,
            title=record.title,
            client=record.client,
            priority=Priority(record.priority),
            phase=Phase(record.phase),
            due_date=record.due_date,
            notes=record.notes,
            deal_number=record.deal_number,
            deal_type=record.deal_type,
            tenant_name=record.tenant_name,
            tenant_address=record.tenant_address,
            contract_date=record.contract_date,
            rent_price=record.rent_price,
            management_fee=record.management_fee,
            deposit=record.deposit,
            key_money=record.key_money,
            brokerage=record.brokerage,
            ad_fee=record.ad_fee,
            landlord_name=record.landlord_name,
            landlord_address=record.landlord_address,
            real_estate_agent=record.real_estate_agent,
            line_user_id=record.line_user_id,
            line_display_name=record.line_display_name,
            line_connection_method=ConnectionMethod(record.line_connection_method or ConnectionMethod.NONE.value),
            line_connected_at=record.line_connected_at,
            qr_code_token=record.qr_code_token,
            customer_checklist_url=record.customer_checklist_url,
            follow_up=details.get("follow_up"),
            billing=details.get("billing"),
            last_reminded_on=record.last_reminded_on,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def active_phase_detail(self) -> Optional[PhaseDetail]:
        """現在のフェーズで有効な詳細（該当しないフェーズではNone）"""
        if is_follow_up(self.phase):
            return self.follow_up or FollowUpChecklist()
        if is_billing(self.phase):
            return self.billing or BillingInfo()
        return None

    @property
    def is_line_connected(self) -> bool:
        return bool(self.line_user_id)


class MetadataResponse(BaseModel):
    """フェーズ・緊急度などのメタデータ"""
    phases: list[str]
    priorities: list[str]
    terminal_phase: str
    follow_up_phase: str
    billing_phase: str
