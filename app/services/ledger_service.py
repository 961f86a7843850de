"""
取引台帳連携サービス

カンバンの案件を取引台帳フォーマットに変換し、取引台帳システムへ送信します。
一括送信は契約終了フェーズの案件のみを対象とし、1件ずつ間隔を空けて送信します。
個別の失敗はエラー一覧に追加して残りの送信を続けます（リトライなし）。
"""
import asyncio
import logging
from datetime import date
from typing import List, Optional

import httpx

from app.config import settings
from app.models.deal import DealResponse
from app.models.ledger import LedgerRecord
from app.models.phase import Phase, is_terminal
from app.services.delivery import BatchResult, DeliveryResult

logger = logging.getLogger(__name__)

CHANNEL = "ledger"

# フェーズ → 取引台帳ステータス
PHASE_TO_LEDGER_STATUS = {
    Phase.APPLICATION: "申込受付",
    Phase.VIEWING: "内見対応",
    Phase.SCREENING: "審査中",
    Phase.IMPORTANT_MATTERS: "契約準備",
    Phase.CONTRACT: "契約手続き",
    Phase.INITIAL_PAYMENT: "入金確認",
    Phase.KEY_HANDOVER_PREP: "鍵渡し準備",
    Phase.MOVE_IN: "入居済み",
    Phase.MANAGEMENT: "管理中",
    Phase.CONTRACT_CLOSED: "契約完了",
    Phase.FOLLOW_UP: "フォローアップ",
    Phase.AD_BILLING: "AD請求",
}

# 案件タイトルのキーワード → 推定賃料（先に一致したものを採用）
RENT_ESTIMATES = [
    (("渋谷", "表参道"), 180000),
    (("新宿", "池袋"), 150000),
    (("港区", "タワー"), 220000),
    (("3LDK",), 160000),
    (("2LDK",), 130000),
    (("1LDK",), 100000),
]
DEFAULT_RENT_ESTIMATE = 120000


def estimate_rent_from_title(title: str) -> int:
    """
    案件タイトルから賃料を推定

    賃料が未入力の場合の最終手段の概算値です（正確な値ではありません）。
    """
    for keywords, rent in RENT_ESTIMATES:
        if any(keyword in (title or "") for keyword in keywords):
            return rent
    return DEFAULT_RENT_ESTIMATE


def map_phase_to_status(phase: str) -> str:
    try:
        return PHASE_TO_LEDGER_STATUS[Phase(phase)]
    except ValueError:
        return "処理中"


def convert_deal_to_ledger_record(deal: DealResponse, today: Optional[date] = None) -> LedgerRecord:
    """カンバンの案件を取引台帳フォーマットに変換（入力済みの値を優先）"""
    today = today or date.today()
    rent_price = deal.rent_price or estimate_rent_from_title(deal.title)
    management_fee = deal.management_fee or round(rent_price * 0.1)

    contract_date = deal.contract_date
    if contract_date is None and is_terminal(deal.phase):
        contract_date = deal.due_date

    return LedgerRecord(
        deal_number=deal.deal_number or f"R{today.year}-{deal.id:03d}",
        deal_type=deal.deal_type or "rental",
        tenant_name=deal.tenant_name or deal.client or "未設定",
        tenant_address=deal.tenant_address or "",
        contract_date=contract_date.isoformat() if contract_date else None,
        rent_price=rent_price,
        management_fee=management_fee,
        total_rent=rent_price + management_fee,
        deposit=deal.deposit,
        key_money=deal.key_money,
        brokerage=deal.brokerage or rent_price,
        ad_fee=deal.ad_fee,
        landlord_name=deal.landlord_name or "管理会社",
        landlord_address=deal.landlord_address,
        real_estate_agent=deal.real_estate_agent,
        status=map_phase_to_status(deal.phase),
        other_notes=f"Kanban案件ID: {deal.id}, 優先度: {deal.priority.value}, 備考: {deal.notes or 'なし'}",
        kanban_deal_id=deal.id,
    )


class LedgerService:
    """取引台帳システム連携"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        request_interval: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (settings.LEDGER_API_BASE_URL if base_url is None else base_url).rstrip("/")
        self.request_interval = (
            settings.LEDGER_REQUEST_INTERVAL_SECONDS if request_interval is None else request_interval
        )
        self._transport = transport

    async def _request(self, method: str, endpoint: str, record: LedgerRecord) -> DeliveryResult[dict]:
        if not self.base_url:
            logger.warning("LEDGER_API_BASE_URL not configured, skipping ledger request")
            return DeliveryResult.not_configured(CHANNEL)

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=settings.HTTP_TIMEOUT_SECONDS
            ) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{endpoint}",
                    json=record.model_dump(),
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error(f"取引台帳API呼び出しエラー: {method} {endpoint}: {e}")
            return DeliveryResult.failure(CHANNEL, str(e))

        logger.info(f"📡 取引台帳レスポンス: {response.status_code} {method} {endpoint}")
        if response.is_error:
            logger.error(f"取引台帳エラーレスポンス: {response.status_code} - {response.text}")
            return DeliveryResult.failure(
                CHANNEL, f"取引台帳API呼び出しエラー: {response.text}", response.status_code
            )

        try:
            payload = response.json() if response.content else {}
        except ValueError:
            payload = {}
        return DeliveryResult.success(payload if isinstance(payload, dict) else {})

    async def export_deal(self, deal: DealResponse) -> DeliveryResult[str]:
        """
        案件を取引台帳に登録

        フェーズの制限はありません（一括送信のみ契約終了に限定）。

        Returns:
            成功時は取引台帳側のIDを持つDeliveryResult
        """
        logger.info(f"🚀 取引台帳送信開始: {deal.client} (案件ID: {deal.id})")
        result = await self._request("POST", "/api/ledger/kanban", convert_deal_to_ledger_record(deal))
        if not result.ok:
            return DeliveryResult(ok=False, error=result.error)
        ledger_id = result.value.get("id")
        return DeliveryResult.success(str(ledger_id) if ledger_id is not None else None)

    async def update_deal(self, deal: DealResponse, ledger_id: str) -> DeliveryResult[str]:
        """取引台帳の既存データを更新"""
        result = await self._request("PATCH", f"/api/ledger/{ledger_id}", convert_deal_to_ledger_record(deal))
        if not result.ok:
            return DeliveryResult(ok=False, error=result.error)
        logger.info(f"取引台帳を更新しました: 案件 {deal.id} → {ledger_id}")
        return DeliveryResult.success(ledger_id)

    async def export_all_terminal(self, deals: List[DealResponse]) -> BatchResult:
        """
        契約終了フェーズの案件のみを取引台帳に一括送信

        契約終了以外の案件はスキップ数に数えます。
        """
        batch = BatchResult()
        targets = [deal for deal in deals if is_terminal(deal.phase)]
        batch.skipped = len(deals) - len(targets)

        for index, deal in enumerate(targets):
            result = await self.export_deal(deal)
            if result.ok:
                batch.sent += 1
                batch.sent_ids.append(deal.id)
                logger.info(f"契約完了案件 {deal.id} ({deal.client}) を取引台帳に送信完了")
            else:
                batch.errors.append(f"案件 {deal.id}: {result.error}")

            # API呼び出し間隔を調整（レート制限回避）
            if self.request_interval > 0 and index < len(targets) - 1:
                await asyncio.sleep(self.request_interval)

        logger.info(
            f"取引台帳一括送信: sent={batch.sent}, skipped={batch.skipped}, errors={len(batch.errors)}"
        )
        return batch


# シングルトンインスタンス
_ledger_service: Optional[LedgerService] = None


def get_ledger_service() -> LedgerService:
    """LedgerServiceのシングルトンインスタンスを取得"""
    global _ledger_service
    if _ledger_service is None:
        _ledger_service = LedgerService()
    return _ledger_service
