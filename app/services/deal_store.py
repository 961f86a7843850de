"""
案件ストア - dealsテーブルのCRUD

存在しないIDに対する取得・更新・削除は None / False を返し、例外は投げません。
部分更新はフィールド間の整合性（フェーズと請求情報など）を検証しません。
ロックやバージョン管理は行わず、同一案件への同時更新は後勝ちです。
"""
from datetime import datetime, timezone
from typing import List, Optional
from fastapi import Depends
from sqlalchemy.orm import Session
from app.database import get_db
from app.models.deal import DealCreate, DealUpdate, dump_phase_details, load_phase_details
from app.models.deal_db import DealRecord
from app.models.phase import ConnectionMethod, Phase
import logging

logger = logging.getLogger(__name__)


class DealStore:
    """案件の永続化サービス"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, data: DealCreate) -> DealRecord:
        fields = data.model_dump(exclude={"follow_up", "billing"})
        fields["priority"] = data.priority.value
        fields["phase"] = data.phase.value
        record = DealRecord(**fields)
        record.phase_details = dump_phase_details(data.follow_up, data.billing)
        if data.line_user_id:
            record.line_connection_method = ConnectionMethod.MANUAL.value
            record.line_connected_at = datetime.now(timezone.utc)
        else:
            record.line_connection_method = ConnectionMethod.NONE.value
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        logger.info(f"Deal created: {record.id} - {record.title}")
        return record

    def list(self) -> List[DealRecord]:
        return self.db.query(DealRecord).order_by(DealRecord.id).all()

    def get(self, deal_id: int) -> Optional[DealRecord]:
        return self.db.query(DealRecord).filter(DealRecord.id == deal_id).first()

    def update(self, deal_id: int, data: DealUpdate) -> Optional[DealRecord]:
        record = self.get(deal_id)
        if record is None:
            return None

        changes = data.model_dump(exclude_unset=True, exclude={"follow_up", "billing"})
        # 必須カラムへのnullは無視
        for key in ("title", "priority", "phase", "due_date"):
            if key in changes and changes[key] is None:
                del changes[key]
        for key in ("priority", "phase", "line_connection_method"):
            if changes.get(key) is not None:
                changes[key] = changes[key].value

        # スタッフによるLINE User IDの直接入力は手動連携として記録
        if "line_user_id" in changes and changes["line_user_id"] != record.line_user_id:
            if changes["line_user_id"]:
                changes.setdefault("line_connection_method", ConnectionMethod.MANUAL.value)
                record.line_connected_at = datetime.now(timezone.utc)
            else:
                changes["line_connection_method"] = ConnectionMethod.NONE.value
                record.line_connected_at = None

        for key, value in changes.items():
            setattr(record, key, value)

        if "follow_up" in data.model_fields_set or "billing" in data.model_fields_set:
            details = load_phase_details(record.phase_details)
            if "follow_up" in data.model_fields_set:
                details["follow_up"] = data.follow_up
            if "billing" in data.model_fields_set:
                details["billing"] = data.billing
            record.phase_details = dump_phase_details(details.get("follow_up"), details.get("billing"))

        self.db.commit()
        self.db.refresh(record)
        logger.info(f"Deal updated: {deal_id} ({', '.join(sorted(data.model_fields_set)) or 'no fields'})")
        return record

    def update_phase(self, deal_id: int, phase: Phase) -> Optional[DealRecord]:
        """ドラッグ&ドロップによるフェーズのみの変更"""
        return self.update(deal_id, DealUpdate(phase=phase))

    def delete(self, deal_id: int) -> bool:
        record = self.get(deal_id)
        if record is None:
            return False
        self.db.delete(record)
        self.db.commit()
        logger.info(f"Deal deleted: {deal_id}")
        return True

    # --- LINE連携 ---

    def find_by_line_user_id(self, line_user_id: str) -> Optional[DealRecord]:
        return (
            self.db.query(DealRecord)
            .filter(DealRecord.line_user_id == line_user_id)
            .order_by(DealRecord.id)
            .first()
        )

    def find_by_qr_token(self, token: str) -> Optional[DealRecord]:
        return self.db.query(DealRecord).filter(DealRecord.qr_code_token == token).first()

    def list_unbound(self) -> List[DealRecord]:
        return (
            self.db.query(DealRecord)
            .filter((DealRecord.line_user_id.is_(None)) | (DealRecord.line_user_id == ""))
            .order_by(DealRecord.id)
            .all()
        )

    def bind_line_user(
        self,
        record: DealRecord,
        line_user_id: str,
        method: ConnectionMethod,
        display_name: Optional[str] = None,
    ) -> DealRecord:
        record.line_user_id = line_user_id
        record.line_connection_method = method.value
        record.line_connected_at = datetime.now(timezone.utc)
        if display_name:
            record.line_display_name = display_name
        self.db.commit()
        self.db.refresh(record)
        logger.info(f"🔗 LINE連携完了: 案件 {record.id} ({record.client}) method={method.value}")
        return record

    def unbind_line_user(self, record: DealRecord) -> DealRecord:
        record.line_user_id = None
        record.line_display_name = None
        record.line_connection_method = ConnectionMethod.NONE.value
        record.line_connected_at = None
        self.db.commit()
        self.db.refresh(record)
        logger.info(f"LINE連携解除: 案件 {record.id}")
        return record

    def set_qr_token(self, record: DealRecord, token: str) -> DealRecord:
        record.qr_code_token = token
        self.db.commit()
        self.db.refresh(record)
        return record

    def mark_reminded(self, records: List[DealRecord], reminded_on) -> None:
        for record in records:
            record.last_reminded_on = reminded_on
        self.db.commit()


def get_deal_store(db: Session = Depends(get_db)) -> DealStore:
    """リクエストごとのDealStoreを取得（FastAPI依存性）"""
    return DealStore(db)
