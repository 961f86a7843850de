"""
LINE通知サービス - 顧客向けメッセージ送信と友だち追加時の案件紐付け

送信（スタッフ操作）:
    案件のLINE User IDまたは指定IDへ、フェーズのテンプレートまたは
    編集済みメッセージをpush送信します。送信先が空の場合は通信前に拒否します。

受信（Webhook）:
    1. 既に連携済みのユーザー → 現在の状況を返信
    2. QRコードのトークン付き友だち追加 → トークンの案件に直接紐付け
    3. 選択待ちの候補がある場合 → 番号/「該当なし」の返信、候補のポストバックを処理
    4. 名前マッチング（未連携の案件のclientと双方向の部分一致）
       1件 → 自動連携 / 複数件 → 候補を提示して選択待ち / 0件 → 名前の入力を依頼

送信失敗はログに記録するのみで、案件データには影響しません。
"""
import logging
import secrets
from enum import Enum
from typing import Iterable, List, Optional
from urllib.parse import parse_qs

from fastapi import Depends
import segno

from app.config import settings
from app.models.deal import DealResponse
from app.models.deal_db import DealRecord
from app.models.line import LineConnectionSummary, QrCodeResponse
from app.models.phase import ConnectionMethod
from app.services.deal_store import DealStore, get_deal_store
from app.services.delivery import DeliveryResult
from app.services.line_client import LineClient, get_line_client, postback_item, text_message
from app.services.pending_selection import PendingSelectionStore, get_pending_selection_store
from app.services.template_service import TemplateStore, get_template_store

logger = logging.getLogger(__name__)

NO_MATCH_KEYWORD = "該当なし"
QUICK_REPLY_MAX_CANDIDATES = 3


class OutboundValidationError(ValueError):
    """送信前の入力検証エラー"""


class InboundOutcome(str, Enum):
    """Webhookイベントの処理結果"""
    STATUS_REPLY = "status_reply"
    BOUND_QR = "bound_qr"
    BOUND_AUTO = "bound_auto"
    BOUND_MANUAL = "bound_manual"
    CANDIDATES = "candidates"
    PROMPT = "prompt"
    REJECTED = "rejected"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"


def match_candidates(name: Optional[str], deals: Iterable[DealRecord]) -> List[DealRecord]:
    """
    名前で案件候補を検索

    名前と案件のclientの双方向の部分一致（大文字小文字を区別）で判定します。
    名前が空、またはclient未設定の案件は対象外です。
    """
    if not name or not name.strip():
        return []
    name = name.strip()
    return [
        deal for deal in deals
        if deal.client and (deal.client in name or name in deal.client)
    ]


def build_line_add_friend_url(token: str) -> str:
    return f"https://line.me/R/ti/p/{settings.LINE_BOT_ID}?deal={token}"


def build_qr_code_data_url(url: str) -> str:
    """友だち追加URLのQRコードをPNGのData URLとして生成"""
    qr = segno.make(url, error="m")
    return qr.png_data_uri(scale=8, border=1, dark="#000000", light="#FFFFFF")


class LineService:
    """LINE通知・連携サービス"""

    def __init__(
        self,
        store: DealStore,
        line_client: LineClient,
        template_store: TemplateStore,
        pending_store: PendingSelectionStore,
    ):
        self.store = store
        self.line_client = line_client
        self.template_store = template_store
        self.pending_store = pending_store

    # ==================== 送信 ====================

    async def send_manual_message(
        self,
        deal: DealResponse,
        phase: str,
        message: Optional[str] = None,
        line_user_id: Optional[str] = None,
    ) -> DeliveryResult[None]:
        """
        スタッフ操作による顧客へのLINE送信

        Args:
            deal: 対象案件
            phase: テンプレート選択用のフェーズ名
            message: 送信本文（未指定時はテンプレートを展開）
            line_user_id: 送信先（未指定時は案件の連携ID）

        Raises:
            OutboundValidationError: 送信先または本文が空の場合（通信は行わない）
        """
        recipient = (line_user_id or deal.line_user_id or "").strip()
        if not recipient:
            raise OutboundValidationError("LINE User IDが設定されていません")

        body = message.strip() if message and message.strip() else self.template_store.render(phase, deal)
        if not body:
            raise OutboundValidationError(f"フェーズ「{phase}」のテンプレートが見つかりません")

        result = await self.line_client.push_text(recipient, body)
        if result.ok:
            logger.info(f"📱 LINE通知送信完了: 案件 {deal.id} ({deal.client}) phase={phase}")
        else:
            logger.error(f"LINE通知送信失敗: 案件 {deal.id}: {result.error}")
        return result

    async def send_phase_change_notification(
        self, deal: DealResponse, phase: str, custom_message: Optional[str] = None
    ) -> DeliveryResult[None]:
        """フェーズ変更の通知（本文未指定時は移動先フェーズのテンプレート）"""
        return await self.send_manual_message(deal, phase, message=custom_message)

    # ==================== Webhook ====================

    async def handle_webhook(self, body: dict, deal_token: Optional[str] = None) -> int:
        """
        Webhookのイベントを順に処理

        Args:
            body: Webhookリクエストボディ
            deal_token: QRコード経由の友だち追加時のトークン（?deal=）

        Returns:
            処理したイベント数
        """
        self.pending_store.sweep_expired()
        processed = 0
        for event in body.get("events", []):
            user_id = (event.get("source") or {}).get("userId")
            if not user_id:
                continue
            try:
                outcome = await self.handle_event(user_id, event, deal_token)
                logger.info(f"LINE event processed: type={event.get('type')} outcome={outcome.value}")
            except Exception as e:
                logger.error(f"Error handling LINE event {event.get('type')}: {e}", exc_info=True)
                await self.line_client.push_text(
                    user_id,
                    "申し訳ございません。システムエラーが発生いたしました。\n"
                    "お手数をおかけしますが、担当者までお問い合わせください。"
                )
            processed += 1
        return processed

    async def handle_event(
        self, user_id: str, event: dict, deal_token: Optional[str] = None
    ) -> InboundOutcome:
        event_type = event.get("type")

        if event_type == "follow":
            return await self.handle_follow(user_id, deal_token)

        if event_type == "message" and (event.get("message") or {}).get("type") == "text":
            text = (event["message"].get("text") or "").strip()
            return await self.handle_text_message(user_id, text)

        if event_type == "postback":
            return await self.handle_postback(user_id, (event.get("postback") or {}).get("data", ""))

        return InboundOutcome.IGNORED

    async def handle_follow(self, user_id: str, deal_token: Optional[str] = None) -> InboundOutcome:
        """友だち追加イベント"""
        existing = self.store.find_by_line_user_id(user_id)
        if existing:
            await self._send_status_reply(user_id, existing)
            return InboundOutcome.STATUS_REPLY

        if deal_token:
            return await self._handle_qr_follow(user_id, deal_token)

        display_name = None
        profile = await self.line_client.get_profile(user_id)
        if profile.ok and profile.value:
            display_name = profile.value.get("displayName")

        return await self._match_and_respond(user_id, display_name, structured=True)

    async def handle_text_message(self, user_id: str, text: str) -> InboundOutcome:
        """テキストメッセージ（名前の入力・候補番号の返信・状況確認）"""
        existing = self.store.find_by_line_user_id(user_id)
        if existing:
            await self._send_status_reply(user_id, existing)
            return InboundOutcome.STATUS_REPLY

        pending = self.pending_store.get(user_id)
        if pending:
            if text == NO_MATCH_KEYWORD:
                self.pending_store.clear(user_id)
                await self._send_registration_prompt(user_id, None)
                return InboundOutcome.PROMPT
            if text.isdecimal():
                deal_id = pending.candidate_for(int(text))
                if deal_id is not None:
                    return await self._select_deal(user_id, deal_id)

        return await self._match_and_respond(user_id, text, structured=False)

    async def handle_postback(self, user_id: str, data: str) -> InboundOutcome:
        """
        ポストバックイベント（Quick Replyの候補選択）

        選択できるのは、このユーザーに提示中（有効期限内）の候補だけです。
        """
        existing = self.store.find_by_line_user_id(user_id)
        if existing:
            await self._send_status_reply(user_id, existing)
            return InboundOutcome.STATUS_REPLY

        params = parse_qs(data)
        action = (params.get("action") or [""])[0]

        if action == "select_deal":
            try:
                deal_id = int((params.get("deal_id") or ["0"])[0])
            except ValueError:
                deal_id = 0
            pending = self.pending_store.get(user_id)
            if pending is None or deal_id not in pending.candidate_ids:
                logger.warning(f"⚠️ 提示していない案件の選択を無視: user={user_id} deal_id={deal_id}")
                await self.line_client.push_text(
                    user_id,
                    "選択の有効期限が切れたか、選択内容を確認できませんでした。\n"
                    "恐れ入りますが、お申込み時のお名前（フルネーム）をもう一度お送りください。"
                )
                return InboundOutcome.NOT_FOUND
            return await self._select_deal(user_id, deal_id)

        if action == "no_match":
            self.pending_store.clear(user_id)
            await self._send_registration_prompt(user_id, None)
            return InboundOutcome.PROMPT

        return InboundOutcome.IGNORED

    # ==================== 紐付け ====================

    async def _handle_qr_follow(self, user_id: str, deal_token: str) -> InboundOutcome:
        deal = self.store.find_by_qr_token(deal_token)
        if deal is None:
            await self.line_client.push_text(
                user_id,
                "申し訳ございません。案件情報が見つかりませんでした。\n"
                "お手数ですが、担当者までお問い合わせください。"
            )
            return InboundOutcome.NOT_FOUND

        if deal.line_user_id and deal.line_user_id != user_id:
            await self.line_client.push_text(
                user_id,
                "この案件は既に他のアカウントと連携済みです。\n"
                "お心当たりがない場合は、担当者までお問い合わせください。"
            )
            return InboundOutcome.REJECTED

        deal = self.store.bind_line_user(deal, user_id, ConnectionMethod.QR)
        await self._send_welcome_message(user_id, deal, ConnectionMethod.QR)
        return InboundOutcome.BOUND_QR

    async def _match_and_respond(
        self, user_id: str, name: Optional[str], structured: bool
    ) -> InboundOutcome:
        candidates = match_candidates(name, self.store.list_unbound())

        if len(candidates) == 1:
            deal = self.store.bind_line_user(
                candidates[0],
                user_id,
                ConnectionMethod.AUTO,
                display_name=name if structured else None,
            )
            await self._send_welcome_message(user_id, deal, ConnectionMethod.AUTO)
            return InboundOutcome.BOUND_AUTO

        if len(candidates) > 1:
            self.pending_store.put(user_id, [deal.id for deal in candidates])
            if structured and len(candidates) <= QUICK_REPLY_MAX_CANDIDATES:
                await self._send_candidate_quick_reply(user_id, candidates, name)
            else:
                await self._send_candidate_text_list(user_id, candidates, name)
            logger.info(f"LINE名前マッチング: {len(candidates)}件の候補を提示 user={user_id}")
            return InboundOutcome.CANDIDATES

        await self._send_registration_prompt(user_id, name if structured else None)
        return InboundOutcome.PROMPT

    async def _select_deal(self, user_id: str, deal_id: int) -> InboundOutcome:
        deal = self.store.get(deal_id)
        if deal is None:
            await self.line_client.push_text(user_id, "案件情報が見つかりませんでした。")
            return InboundOutcome.NOT_FOUND

        if deal.line_user_id and deal.line_user_id != user_id:
            await self.line_client.push_text(
                user_id,
                "この案件は既に他のアカウントと連携済みです。\n"
                "お心当たりがない場合は、担当者までお問い合わせください。"
            )
            return InboundOutcome.REJECTED

        self.pending_store.clear(user_id)
        deal = self.store.bind_line_user(deal, user_id, ConnectionMethod.MANUAL)
        await self._send_welcome_message(user_id, deal, ConnectionMethod.MANUAL)
        return InboundOutcome.BOUND_MANUAL

    # ==================== 返信メッセージ ====================

    async def _send_status_reply(self, user_id: str, deal: DealRecord) -> DeliveryResult[None]:
        return await self.line_client.push_text(
            user_id,
            f"{deal.client or 'お客'}様、いつもお世話になっております。\n\n"
            f"現在のお手続き状況：{deal.phase}\n\n"
            f"何かご不明点がございましたら、お気軽にお声かけください。"
        )

    async def _send_welcome_message(
        self, user_id: str, deal: DealRecord, method: ConnectionMethod
    ) -> DeliveryResult[None]:
        method_text = {
            ConnectionMethod.QR: "QRコード",
            ConnectionMethod.AUTO: "自動認識",
            ConnectionMethod.MANUAL: "ご選択いただいた内容",
        }.get(method, "ご登録内容")

        return await self.line_client.push_text(
            user_id,
            f"{deal.client or 'お客'}様、友だち追加ありがとうございます！\n\n"
            f"お客様の案件情報を{method_text}で確認いたしました。\n\n"
            f"📋 案件名：{deal.title or '物件情報準備中'}\n"
            f"📍 現在の状況：{deal.phase}\n\n"
            f"今後、お手続きの進捗状況をこちらのLINEでお知らせいたします。\n"
            f"ご質問やご不明点がございましたら、お気軽にメッセージをお送りください。\n\n"
            f"引き続きよろしくお願いいたします！"
        )

    async def _send_candidate_quick_reply(
        self, user_id: str, candidates: List[DealRecord], name: Optional[str]
    ) -> DeliveryResult[None]:
        items = [
            postback_item(
                label=f"{deal.client}様 - {deal.title or '案件'}",
                data=f"action=select_deal&deal_id={deal.id}",
                display_text=f"{deal.client}様の案件を選択",
            )
            for deal in candidates
        ]
        items.append(postback_item(
            label=NO_MATCH_KEYWORD,
            data="action=no_match",
            display_text="該当する案件がありません",
        ))
        text = (
            f"{name or 'お客'}様、友だち追加ありがとうございます！\n\n"
            f"お客様に該当する案件を下記から選択してください：\n\n"
            + "\n".join(
                f"{i}. {deal.client}様 - {deal.title or '物件情報準備中'}"
                for i, deal in enumerate(candidates, start=1)
            )
        )
        return await self.line_client.push_message(user_id, text_message(text, items))

    async def _send_candidate_text_list(
        self, user_id: str, candidates: List[DealRecord], name: Optional[str]
    ) -> DeliveryResult[None]:
        lines = [
            f"{name or 'お客'}様、ありがとうございます。\n",
            "複数の案件が見つかりました。該当する番号を送信してください：\n",
        ]
        lines += [
            f"{i}. {deal.client}様 - {deal.title or '物件情報準備中'}"
            for i, deal in enumerate(candidates, start=1)
        ]
        lines.append(f"\n該当する案件がない場合は「{NO_MATCH_KEYWORD}」と送信してください。")
        return await self.line_client.push_text(user_id, "\n".join(lines))

    async def _send_registration_prompt(self, user_id: str, name: Optional[str]) -> DeliveryResult[None]:
        return await self.line_client.push_text(
            user_id,
            f"{name or 'お客'}様、友だち追加ありがとうございます！\n\n"
            f"お客様の案件情報を確認させていただきます。\n"
            f"恐れ入りますが、お申込み時のお名前（フルネーム）を教えてください。\n\n"
            f"例：田中太郎\n\n"
            f"※お申込み書類に記載されているお名前をご入力ください。"
        )

    # ==================== 連携管理 ====================

    def issue_qr_code(self, deal: DealRecord) -> QrCodeResponse:
        """案件用の友だち追加URLとQRコード画像を発行"""
        token = deal.qr_code_token or secrets.token_hex(16)
        if deal.qr_code_token != token:
            deal = self.store.set_qr_token(deal, token)
        url = build_line_add_friend_url(token)
        return QrCodeResponse(
            deal_id=deal.id,
            token=token,
            url=url,
            qr_code_data_url=build_qr_code_data_url(url),
        )

    def connection_summary(self) -> LineConnectionSummary:
        deals = self.store.list()
        connected = [d for d in deals if d.line_user_id]
        by_method = {method: 0 for method in ConnectionMethod}
        for deal in connected:
            by_method[ConnectionMethod(deal.line_connection_method or ConnectionMethod.NONE.value)] += 1
        total = len(deals)
        return LineConnectionSummary(
            total_deals=total,
            connected_count=len(connected),
            qr_count=by_method[ConnectionMethod.QR],
            auto_count=by_method[ConnectionMethod.AUTO],
            manual_count=by_method[ConnectionMethod.MANUAL],
            connection_rate=round(len(connected) / total * 100, 1) if total else 0.0,
            unconnected_deals=[DealResponse.from_record(d) for d in deals if not d.line_user_id],
        )


def get_line_service(store: DealStore = Depends(get_deal_store)) -> LineService:
    """リクエストごとのLineServiceを取得（FastAPI依存性）"""
    return LineService(
        store,
        get_line_client(),
        get_template_store(),
        get_pending_selection_store(),
    )
