"""
期限リマインダーサービス

期日がちょうどN日後（既定2日後）の未完了案件をSlackに通知します。
定時実行（既定 9:00 / 15:00 JST）では案件ごとに最終通知日を記録し、
同じ日に同じ案件を重複して通知しません。
手動実行は0〜3日以内の案件を対象とし、通知済みの記録は参照・更新しません。
"""
import logging
from datetime import date
from typing import Callable, List, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from app.config import settings
from app.database import SessionLocal
from app.models.deal import DealResponse
from app.models.deal_db import DealRecord
from app.models.notification import ReminderBatchResponse, ReminderCheckResponse
from app.models.phase import is_terminal
from app.services.deal_store import DealStore
from app.services.slack_service import SlackService, days_until, get_slack_service, today_jst

logger = logging.getLogger(__name__)

MANUAL_WINDOW_DAYS = (0, 3)


class ReminderService:
    """期限リマインダーの抽出と送信"""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        slack_service: Optional[SlackService] = None,
        days_before: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.slack_service = slack_service or get_slack_service()
        self.days_before = settings.REMINDER_DAYS_BEFORE if days_before is None else days_before

    def _select(
        self, records: List[DealRecord], today: date, window: Tuple[int, int]
    ) -> List[DealRecord]:
        low, high = window
        return [
            record for record in records
            if not is_terminal(record.phase)
            and low <= days_until(record.due_date, today) <= high
        ]

    async def check_and_send_due_date_reminders(
        self, today: Optional[date] = None
    ) -> ReminderBatchResponse:
        """定時チェック: 期日がちょうどdays_before日後の案件を通知"""
        today = today or today_jst()
        db = self.session_factory()
        try:
            store = DealStore(db)
            due = self._select(store.list(), today, (self.days_before, self.days_before))
            targets = [r for r in due if r.last_reminded_on != today]
            skipped = len(due) - len(targets)

            if not targets:
                logger.info(f"No deals due in {self.days_before} days - no reminders to send")
                return ReminderBatchResponse(
                    processed_count=0, sent_count=0, failed_count=0, skipped_count=skipped, errors=[]
                )

            logger.info(f"Found {len(targets)} deals due in {self.days_before} days, sending Slack reminders...")
            batch = await self.slack_service.send_bulk_due_date_reminders(
                [DealResponse.from_record(r) for r in targets], today
            )
            store.mark_reminded([r for r in targets if r.id in batch.sent_ids], today)
        finally:
            db.close()

        return ReminderBatchResponse(
            processed_count=len(targets),
            sent_count=batch.sent,
            failed_count=len(targets) - batch.sent,
            skipped_count=skipped,
            errors=batch.errors,
        )

    async def trigger_manual_reminders(self, today: Optional[date] = None) -> ReminderCheckResponse:
        """手動実行: 0〜3日以内の未完了案件を通知（重複防止なし）"""
        today = today or today_jst()
        db = self.session_factory()
        try:
            targets = [
                DealResponse.from_record(r)
                for r in self._select(DealStore(db).list(), today, MANUAL_WINDOW_DAYS)
            ]
        finally:
            db.close()

        errors: List[str] = []
        sent = 0
        if targets:
            batch = await self.slack_service.send_bulk_due_date_reminders(targets, today)
            sent = batch.sent
            errors = batch.errors

        return ReminderCheckResponse(sent=sent, deals=targets, errors=errors)


class ReminderScheduler:
    """APSchedulerによる定時リマインダー実行"""

    def __init__(self, reminder_service: ReminderService):
        self._reminder_service = reminder_service
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        self._scheduler = AsyncIOScheduler(timezone=settings.REMINDER_TIMEZONE)
        self._scheduler.add_job(
            self._run,
            trigger=CronTrigger(hour=settings.REMINDER_HOURS, minute=0, timezone=settings.REMINDER_TIMEZONE),
            id="due_date_reminders",
            name="Send due date reminders to Slack",
            misfire_grace_time=3600,
            coalesce=True,
        )
        self._scheduler.start()
        job = self._scheduler.get_job("due_date_reminders")
        logger.info(f"Due date reminders scheduled: hours={settings.REMINDER_HOURS} next={job.next_run_time}")

    async def _run(self) -> None:
        try:
            result = await self._reminder_service.check_and_send_due_date_reminders()
            logger.info(
                f"Reminder batch finished: processed={result.processed_count}, "
                f"sent={result.sent_count}, failed={result.failed_count}, skipped={result.skipped_count}"
            )
        except Exception as e:
            logger.error(f"Error checking due date reminders: {e}", exc_info=True)

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Reminder scheduler stopped")
        self._scheduler = None


# シングルトンインスタンス
_reminder_service: Optional[ReminderService] = None


def get_reminder_service() -> ReminderService:
    """ReminderServiceのシングルトンインスタンスを取得"""
    global _reminder_service
    if _reminder_service is None:
        _reminder_service = ReminderService()
    return _reminder_service
