"""
マイソク画像解析サービス

Azure OpenAIのビジョンモデルで不動産情報シート（マイソク）の画像から
取引台帳の入力項目を抽出します。
"""
from openai import AzureOpenAI, OpenAIError
from app.config import settings
from app.models.myosoku import MyosokuData
from app.services.delivery import DeliveryResult
from typing import Optional
import base64
import json
import logging
import re

logger = logging.getLogger(__name__)

CHANNEL = "vision"

ALLOWED_IMAGE_TYPES = ["image/jpeg", "image/png", "image/gif", "image/webp"]

NUMERIC_FIELDS = ("rent_price", "management_fee", "deposit", "key_money", "brokerage", "ad_fee")

MYOSOKU_PROMPT = """このマイソク（不動産情報シート）の画像から以下の情報を抽出してください。
抽出できない項目は null を返してください。JSONフォーマットのみで返答してください。

必要な情報：
- tenant_name: 入居者名（借主名）
- tenant_address: 入居者住所（借主住所）
- contract_date: 契約日（YYYY-MM-DD形式）
- rent_price: 賃料（数値のみ、単位は円）
- management_fee: 管理費・共益費（数値のみ、単位は円）
- deposit: 敷金（数値のみ、単位は円）
- key_money: 礼金（数値のみ、単位は円）
- brokerage: 仲介手数料（数値のみ、単位は円）
- ad_fee: AD費用（数値のみ、単位は円）
- landlord_name: 貸主名
- landlord_address: 貸主住所
- real_estate_agent: 仲介業者名
- other_notes: その他特記事項

レスポンス例：
{"tenant_name": "田中太郎", "rent_price": 80000, "deposit": 160000, "real_estate_agent": "○○不動産", "other_notes": "ペット可"}"""


def _to_int(value) -> Optional[int]:
    """「80,000円」のような文字列も数値に変換"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    digits = re.sub(r"[^\d]", "", str(value))
    return int(digits) if digits else None


def parse_myosoku_response(content: str) -> MyosokuData:
    """
    モデル応答からJSON部分を取り出してMyosokuDataに変換

    Raises:
        ValueError: JSONが見つからない・解析できない場合
    """
    match = re.search(r"\{[\s\S]*\}", content or "")
    if not match:
        raise ValueError("JSONフォーマットの応答が見つかりません")
    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("JSONオブジェクトではありません")

    for field in NUMERIC_FIELDS:
        if field in data:
            data[field] = _to_int(data[field])
    # 空文字は未抽出として扱う
    cleaned = {k: (None if v == "" else v) for k, v in data.items() if k in MyosokuData.model_fields}
    return MyosokuData(**cleaned)


class VisionService:
    def __init__(self, client: Optional[AzureOpenAI] = None):
        if client is not None:
            self.client = client
        elif settings.AZURE_OPENAI_API_KEY and settings.AZURE_OPENAI_ENDPOINT:
            self.client = AzureOpenAI(
                api_key=settings.AZURE_OPENAI_API_KEY,
                api_version=settings.AZURE_OPENAI_API_VERSION,
                azure_endpoint=settings.AZURE_OPENAI_ENDPOINT
            )
        else:
            self.client = None
            logger.warning("Azure OpenAI not configured")
        self.deployment_name = settings.AZURE_OPENAI_DEPLOYMENT_NAME

    def analyze_myosoku(self, image_data: bytes, content_type: str) -> DeliveryResult[MyosokuData]:
        """マイソク画像を解析して取引情報を抽出"""
        if self.client is None:
            return DeliveryResult.not_configured(CHANNEL)

        encoded = base64.b64encode(image_data).decode("ascii")
        try:
            response = self.client.chat.completions.create(
                model=self.deployment_name,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": MYOSOKU_PROMPT},
                            {"type": "image_url", "image_url": {"url": f"data:{content_type};base64,{encoded}"}},
                        ],
                    }
                ],
                temperature=0.1,
                max_tokens=1500
            )
        except OpenAIError as e:
            logger.error(f"マイソク画像解析エラー: {e}")
            return DeliveryResult.failure(CHANNEL, str(e))

        content = response.choices[0].message.content
        if not content:
            return DeliveryResult.failure(CHANNEL, "AI応答が空です")

        try:
            data = parse_myosoku_response(content)
        except ValueError as e:
            logger.error(f"マイソク解析結果の変換エラー: {e}")
            return DeliveryResult.failure(CHANNEL, f"画像解析に失敗しました: {e}")

        logger.info(f"🖼️ マイソク解析完了: {data.tenant_name or '入居者名なし'}")
        return DeliveryResult.success(data)


# シングルトンインスタンス
_vision_service: Optional[VisionService] = None


def get_vision_service() -> VisionService:
    global _vision_service
    if _vision_service is None:
        _vision_service = VisionService()
    return _vision_service
