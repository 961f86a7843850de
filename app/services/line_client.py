"""
LINE Messaging APIクライアント

push送信とプロフィール取得を行います。チャネルアクセストークン未設定時は
通信せずに not_configured の失敗結果を返します。
"""
import base64
import hashlib
import hmac
import logging
from typing import Any, List, Optional

import httpx

from app.config import settings
from app.services.delivery import DeliveryResult

logger = logging.getLogger(__name__)

CHANNEL = "line"


def verify_line_signature(body: bytes, signature: str, channel_secret: str) -> bool:
    """
    LINE Webhookの署名を検証

    Args:
        body: リクエストボディ（バイト列）
        signature: X-Line-Signature ヘッダーの値
        channel_secret: LINEチャネルシークレット

    Returns:
        署名が有効な場合True
    """
    if not channel_secret:
        logger.warning("LINE_CHANNEL_SECRET が設定されていません")
        return False
    if not signature:
        return False

    digest = hmac.new(
        channel_secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).digest()
    expected_signature = base64.b64encode(digest).decode("utf-8")

    return hmac.compare_digest(signature, expected_signature)


def text_message(text: str, quick_reply_items: Optional[List[dict]] = None) -> dict:
    """テキストメッセージオブジェクトを生成"""
    message: dict[str, Any] = {"type": "text", "text": text}
    if quick_reply_items:
        message["quickReply"] = {"items": quick_reply_items}
    return message


def postback_item(label: str, data: str, display_text: str) -> dict:
    """Quick Replyのポストバックアクションを生成（ラベルは20文字まで）"""
    return {
        "type": "action",
        "action": {
            "type": "postback",
            "label": label[:20],
            "data": data,
            "displayText": display_text,
        },
    }


class LineClient:
    """LINE Messaging APIクライアント"""

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = settings.LINE_CHANNEL_ACCESS_TOKEN if access_token is None else access_token
        self.base_url = (base_url or settings.LINE_API_BASE_URL).rstrip("/")
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)

    async def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> DeliveryResult[dict]:
        """
        LINE APIにリクエストを送信

        Args:
            method: HTTPメソッド
            endpoint: APIエンドポイント（/message/pushなど）
            **kwargs: httpxに渡す追加引数

        Returns:
            成功時はJSONレスポンスを持つDeliveryResult
        """
        if not self.is_configured:
            logger.warning("LINE_CHANNEL_ACCESS_TOKEN not configured, skipping LINE request")
            return DeliveryResult.not_configured(CHANNEL)

        url = f"{self.base_url}{endpoint}"

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=settings.HTTP_TIMEOUT_SECONDS
            ) as client:
                response = await client.request(
                    method,
                    url,
                    headers={
                        "Authorization": f"Bearer {self.access_token}",
                        "Content-Type": "application/json"
                    },
                    **kwargs
                )
        except httpx.HTTPError as e:
            logger.error(f"LINE API呼び出し中にエラーが発生: {method} {endpoint}: {e}")
            return DeliveryResult.failure(CHANNEL, str(e))

        if response.status_code != 200:
            logger.error(
                f"LINE API呼び出しに失敗: {method} {endpoint} "
                f"status={response.status_code}, body={response.text}"
            )
            return DeliveryResult.failure(CHANNEL, "api_error", response.status_code)

        try:
            payload = response.json() if response.content else {}
        except ValueError:
            payload = {}
        return DeliveryResult.success(payload)

    async def push_message(self, user_id: str, message: dict) -> DeliveryResult[None]:
        """メッセージオブジェクトをpush送信"""
        if not user_id:
            return DeliveryResult.failure(CHANNEL, "empty_recipient")

        result = await self._request(
            "POST",
            "/message/push",
            json={"to": user_id, "messages": [message]}
        )
        if result.ok:
            logger.info(f"LINE message sent to user {user_id}")
            return DeliveryResult.success()
        return DeliveryResult(ok=False, error=result.error)

    async def push_text(self, user_id: str, text: str) -> DeliveryResult[None]:
        """テキストメッセージをpush送信"""
        return await self.push_message(user_id, text_message(text))

    async def get_profile(self, user_id: str) -> DeliveryResult[dict]:
        """LINEユーザープロフィール（displayNameなど）を取得"""
        if not user_id:
            return DeliveryResult.failure(CHANNEL, "empty_user_id")
        return await self._request("GET", f"/profile/{user_id}")


# シングルトンインスタンス
_line_client: Optional[LineClient] = None


def get_line_client() -> LineClient:
    """LineClientのシングルトンインスタンスを取得"""
    global _line_client
    if _line_client is None:
        _line_client = LineClient()
    return _line_client
