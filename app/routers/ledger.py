from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from app.models.deal import DealResponse
from app.models.ledger import LedgerExportResponse, LedgerSyncRequest, LedgerSyncResponse
from app.services.deal_store import DealStore, get_deal_store
from app.services.ledger_service import LedgerService, get_ledger_service
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ledger", tags=["ledger"])


@router.post("/sync", response_model=LedgerSyncResponse)
async def sync_terminal_deals(
    request: Optional[LedgerSyncRequest] = None,
    store: DealStore = Depends(get_deal_store),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """
    契約終了の案件を取引台帳に一括送信する

    deal_ids指定時はその案件のみを対象とし、契約終了以外の案件はスキップ数に数えます。
    個別の送信失敗はerrorsに含め、残りの送信は続けます。
    """
    records = store.list()
    if request is not None and request.deal_ids is not None:
        wanted = set(request.deal_ids)
        records = [r for r in records if r.id in wanted]

    batch = await ledger.export_all_terminal([DealResponse.from_record(r) for r in records])
    return LedgerSyncResponse(sent=batch.sent, skipped=batch.skipped, errors=batch.errors)


@router.post("/deals/{deal_id}", response_model=LedgerExportResponse)
async def export_deal(
    deal_id: int,
    store: DealStore = Depends(get_deal_store),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """案件1件を取引台帳に登録する（フェーズの制限なし）"""
    record = store.get(deal_id)
    if record is None:
        raise HTTPException(status_code=404, detail="案件が見つかりません")

    result = await ledger.export_deal(DealResponse.from_record(record))
    if not result.ok:
        raise HTTPException(status_code=502, detail=f"取引台帳への送信に失敗しました: {result.error}")

    return LedgerExportResponse(
        success=True,
        deal_id=deal_id,
        ledger_id=result.value,
        message="取引台帳に送信しました",
    )


@router.patch("/{ledger_id}", response_model=LedgerExportResponse)
async def update_ledger_entry(
    ledger_id: str,
    deal_id: int = Query(..., description="更新内容の元になる案件ID"),
    store: DealStore = Depends(get_deal_store),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """取引台帳の既存データを案件の現在の内容で更新する"""
    record = store.get(deal_id)
    if record is None:
        raise HTTPException(status_code=404, detail="案件が見つかりません")

    result = await ledger.update_deal(DealResponse.from_record(record), ledger_id)
    if not result.ok:
        raise HTTPException(status_code=502, detail=f"取引台帳の更新に失敗しました: {result.error}")

    return LedgerExportResponse(
        success=True,
        deal_id=deal_id,
        ledger_id=ledger_id,
        message="取引台帳を更新しました",
    )
