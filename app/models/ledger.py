from pydantic import BaseModel
from typing import List, Optional


class LedgerRecord(BaseModel):
    """取引台帳システムへの送信データ"""
    deal_number: str
    deal_type: str
    tenant_name: str
    tenant_address: str
    important_explanation_date: Optional[str] = None
    contract_date: Optional[str] = None
    rent_price: int
    management_fee: int
    total_rent: int
    deposit: Optional[int] = None
    key_money: Optional[int] = None
    brokerage: int
    ad_fee: Optional[int] = None
    contract_start_date: Optional[str] = None
    contract_end_date: Optional[str] = None
    landlord_name: str
    landlord_address: Optional[str] = None
    real_estate_agent: Optional[str] = None
    status: str
    other_notes: str
    kanban_deal_id: int


class LedgerExportResponse(BaseModel):
    """単一案件の台帳送信結果"""
    success: bool
    deal_id: int
    ledger_id: Optional[str] = None
    message: str


class LedgerSyncResponse(BaseModel):
    """契約終了案件の一括送信結果"""
    sent: int
    skipped: int
    errors: List[str]


class LedgerSyncRequest(BaseModel):
    """一括送信の対象（未指定時は全案件から契約終了のものを送信）"""
    deal_ids: Optional[List[int]] = None

