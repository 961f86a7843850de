from fastapi import APIRouter
from app.models.notification import ReminderBatchResponse, ReminderCheckResponse
from app.services.reminder_service import get_reminder_service
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reminders", tags=["reminders"])


@router.post("/check", response_model=ReminderCheckResponse)
async def trigger_manual_reminders():
    """
    期限リマインダーを手動で実行する

    期日まで0〜3日の未完了案件をSlackに通知し、対象の案件一覧を返します。
    定時実行の通知済み記録は参照・更新しません。
    """
    service = get_reminder_service()
    return await service.trigger_manual_reminders()


@router.post("/batch", response_model=ReminderBatchResponse)
async def run_reminder_batch():
    """
    定時リマインダーと同じ処理を即時実行する

    期日がちょうどREMINDER_DAYS_BEFORE日後の案件が対象で、本日通知済みの案件はスキップします。
    """
    service = get_reminder_service()
    return await service.check_and_send_due_date_reminders()
