from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError, SlackClientError
from app.config import settings
from app.models.deal import DealResponse, FollowUpChecklist, BillingInfo
from app.models.phase import Priority
from app.services.delivery import BatchResult, DeliveryResult
import asyncio
import logging
from datetime import date, datetime, timezone, timedelta
from typing import List, Optional

logger = logging.getLogger(__name__)

# 日本時間のタイムゾーン
JST = timezone(timedelta(hours=9))

CHANNEL = "slack"

URGENCY_EMOJI = {
    Priority.HIGH: "🚨",
    Priority.MEDIUM: "⚠️",
    Priority.LOW: "📝",
}


def today_jst() -> date:
    return datetime.now(JST).date()


def days_until(due_date: date, today: date) -> int:
    """期日までの日数（時刻は無視して日付のみで計算）"""
    return (due_date - today).days


class SlackService:
    """Slack期限リマインダー通知サービス"""

    def __init__(
        self,
        client: Optional[WebClient] = None,
        channel_id: Optional[str] = None,
        interval_seconds: Optional[float] = None,
    ):
        self.channel_id = settings.SLACK_CHANNEL_ID if channel_id is None else channel_id
        self.interval_seconds = (
            settings.SLACK_REMINDER_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        )
        if client is not None:
            self.client = client
        elif settings.SLACK_BOT_TOKEN:
            self.client = WebClient(token=settings.SLACK_BOT_TOKEN)
        else:
            self.client = None
            logger.warning("SLACK_BOT_TOKEN not configured")

    def _post(self, text: str, blocks: list) -> DeliveryResult[str]:
        """チャネルにメッセージを投稿（失敗は例外にせず結果で返す）"""
        if not self.client or not self.channel_id:
            logger.warning("Slack not configured, skipping notification")
            return DeliveryResult.not_configured(CHANNEL)

        try:
            response = self.client.chat_postMessage(
                channel=self.channel_id,
                text=text,
                blocks=blocks
            )
        except SlackApiError as e:
            logger.error(f"Slack API error: {e.response['error']}")
            return DeliveryResult.failure(CHANNEL, str(e.response["error"]))
        except (SlackClientError, OSError) as e:
            # 接続拒否・タイムアウトなどの通信エラー
            logger.error(f"Slack connection error: {e}")
            return DeliveryResult.failure(CHANNEL, str(e))

        if not response.get("ok"):
            logger.error(f"Failed to post message: {response}")
            return DeliveryResult.failure(CHANNEL, str(response.get("error", "unknown_error")))
        return DeliveryResult.success(response.get("ts"))

    def _build_due_date_blocks(self, deal: DealResponse, days_until_due: int) -> list:
        """
        期限リマインダーのSlackブロックを生成

        Args:
            deal: 対象案件
            days_until_due: 期日までの残り日数

        Returns:
            Slackブロックのリスト
        """
        urgency_emoji = URGENCY_EMOJI.get(deal.priority, "📝")
        blocks = [
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": f"{urgency_emoji} *不動産案件の期限が近づいています*"
                }
            },
            {
                "type": "section",
                "fields": [
                    {
                        "type": "mrkdwn",
                        "text": f"*案件名:*\n{deal.title}"
                    },
                    {
                        "type": "mrkdwn",
                        "text": f"*顧客:*\n{deal.client or '未設定'}"
                    },
                    {
                        "type": "mrkdwn",
                        "text": f"*現在フェーズ:*\n{deal.phase.value}"
                    },
                    {
                        "type": "mrkdwn",
                        "text": f"*緊急度:*\n{deal.priority.value}"
                    },
                    {
                        "type": "mrkdwn",
                        "text": f"*期日:*\n{deal.due_date.strftime('%Y/%m/%d')}"
                    },
                    {
                        "type": "mrkdwn",
                        "text": f"*残り日数:*\n{days_until_due}日"
                    }
                ]
            }
        ]

        # フェーズ別の詳細（フォローアップ・AD請求）
        detail = deal.active_phase_detail()
        if isinstance(detail, FollowUpChecklist):
            blocks.append({
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        f"*フォローアップ:* "
                        f"ライフライン{'✅' if detail.lifeline_support_done else '⬜'} / "
                        f"引っ越し祝い{'✅' if detail.housewarming_gift_sent else '⬜'}"
                    )
                }
            })
        elif isinstance(detail, BillingInfo):
            amount = f"{detail.ad_amount:,}円" if detail.ad_amount is not None else "未設定"
            blocks.append({
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        f"*AD請求:* {amount} / "
                        f"請求書{'送付済み' if detail.invoice_sent else '未送付'} / "
                        f"着金{'確認済み' if detail.payment_confirmed else '未確認'}"
                    )
                }
            })

        if deal.notes:
            blocks.append({
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": f"*メモ:* {deal.notes}"
                }
            })

        return blocks

    async def send_due_date_reminder(self, deal: DealResponse, days_until_due: int) -> DeliveryResult[str]:
        """案件1件の期限リマインダーを送信"""
        result = self._post(
            text=f"期限が近づいています: {deal.title}（残り{days_until_due}日）",
            blocks=self._build_due_date_blocks(deal, days_until_due)
        )
        if result.ok:
            logger.info(f"Slack reminder sent for deal: {deal.title} ({days_until_due} days until due)")
        return result

    async def send_bulk_due_date_reminders(
        self, deals: List[DealResponse], today: Optional[date] = None
    ) -> BatchResult:
        """
        期限リマインダーをまとめて送信

        件数のサマリーを1件送信した後、案件ごとに間隔を空けて送信します。
        個別の失敗はエラー一覧に追加して残りの送信を続けます。
        """
        batch = BatchResult()
        if not deals:
            return batch

        today = today or today_jst()
        summary = self._post(
            text=f"本日の期限リマインダー ({len(deals)}件)",
            blocks=[
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": f"📋 *本日の期限リマインダー* ({len(deals)}件)"
                    }
                },
                {
                    "type": "divider"
                }
            ]
        )
        if not summary.ok:
            batch.errors.append(f"サマリー: {summary.error}")

        for index, deal in enumerate(deals):
            result = await self.send_due_date_reminder(deal, days_until(deal.due_date, today))
            if result.ok:
                batch.sent += 1
                batch.sent_ids.append(deal.id)
            else:
                batch.errors.append(f"案件 {deal.id}: {result.error}")

            # Small delay to avoid rate limits
            if self.interval_seconds > 0 and index < len(deals) - 1:
                await asyncio.sleep(self.interval_seconds)

        return batch


# シングルトンインスタンス
_slack_service = None


def get_slack_service() -> SlackService:
    """SlackServiceのシングルトンインスタンスを取得"""
    global _slack_service
    if _slack_service is None:
        _slack_service = SlackService()
    return _slack_service
