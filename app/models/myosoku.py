from pydantic import BaseModel
from typing import Optional


class MyosokuData(BaseModel):
    """マイソク画像から抽出した取引情報（抽出できない項目はNone）"""
    tenant_name: Optional[str] = None
    tenant_address: Optional[str] = None
    contract_date: Optional[str] = None
    rent_price: Optional[int] = None
    management_fee: Optional[int] = None
    deposit: Optional[int] = None
    key_money: Optional[int] = None
    brokerage: Optional[int] = None
    ad_fee: Optional[int] = None
    landlord_name: Optional[str] = None
    landlord_address: Optional[str] = None
    real_estate_agent: Optional[str] = None
    other_notes: Optional[str] = None


class MyosokuAnalyzeResponse(BaseModel):
    success: bool
    filename: Optional[str] = None
    data: MyosokuData
