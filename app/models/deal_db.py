"""
案件のSQLAlchemyモデル

deals: カンバンの案件テーブル（取引台帳項目・LINE連携情報を含む単一テーブル）
"""
from sqlalchemy import Column, String, Integer, DateTime, Date, Text
from sqlalchemy.sql import func
from app.database import Base
from app.models.phase import ConnectionMethod, DEFAULT_PHASE


class DealRecord(Base):
    """案件テーブル"""
    __tablename__ = "deals"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # 基本情報
    title = Column(String(255), nullable=False)
    client = Column(String(255), nullable=True)
    priority = Column(String(10), nullable=False)
    phase = Column(String(50), nullable=False, default=DEFAULT_PHASE.value, index=True)
    due_date = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)

    # 取引台帳項目
    deal_number = Column(String(50), nullable=True)
    deal_type = Column(String(50), nullable=True, default="rental")
    tenant_name = Column(String(255), nullable=True)
    tenant_address = Column(String(512), nullable=True)
    contract_date = Column(Date, nullable=True)
    rent_price = Column(Integer, nullable=True)
    management_fee = Column(Integer, nullable=True)
    deposit = Column(Integer, nullable=True)
    key_money = Column(Integer, nullable=True)
    brokerage = Column(Integer, nullable=True)
    ad_fee = Column(Integer, nullable=True)
    landlord_name = Column(String(255), nullable=True)
    landlord_address = Column(String(512), nullable=True)
    real_estate_agent = Column(String(255), nullable=True)

    # LINE連携
    line_user_id = Column(String(64), nullable=True, index=True)
    line_display_name = Column(String(255), nullable=True)
    line_connection_method = Column(String(20), nullable=False, default=ConnectionMethod.NONE.value)
    line_connected_at = Column(DateTime(timezone=True), nullable=True)
    qr_code_token = Column(String(64), nullable=True, unique=True, index=True)
    customer_checklist_url = Column(String(512), nullable=True)

    # フェーズ別の詳細（JSON: {"follow_up": {...}, "billing": {...}}）
    phase_details = Column(Text, nullable=True)

    # 期限リマインダーの最終送信日
    last_reminded_on = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<DealRecord(id={self.id}, phase={self.phase})>"
