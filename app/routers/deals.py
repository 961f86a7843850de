from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response
from typing import List
from app.models.deal import DealCreate, DealUpdate, DealResponse
from app.models.line import QrCodeResponse
from app.models.phase import is_terminal
from app.services.deal_store import DealStore, get_deal_store
from app.services.ledger_service import get_ledger_service
from app.services.line_service import LineService, get_line_service
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/deals", tags=["deals"])


async def export_closed_deal(deal: DealResponse) -> None:
    """契約終了に移動した案件を取引台帳へ送信（結果はログのみ）"""
    result = await get_ledger_service().export_deal(deal)
    if result.ok:
        logger.info(f"✅ 契約終了案件 {deal.id} を取引台帳に自動送信しました (ledger_id={result.value})")
    else:
        logger.error(f"契約終了案件 {deal.id} の取引台帳自動送信に失敗: {result.error}")


@router.get("", response_model=List[DealResponse])
async def list_deals(store: DealStore = Depends(get_deal_store)):
    """案件一覧を取得する"""
    return [DealResponse.from_record(record) for record in store.list()]


@router.post("", response_model=DealResponse, status_code=201)
async def create_deal(data: DealCreate, store: DealStore = Depends(get_deal_store)):
    """
    案件を作成する

    必須フィールド: title（3文字以上）, priority, due_date
    phase未指定時は①申込連絡
    """
    return DealResponse.from_record(store.create(data))


@router.get("/{deal_id}", response_model=DealResponse)
async def get_deal(deal_id: int, store: DealStore = Depends(get_deal_store)):
    record = store.get(deal_id)
    if record is None:
        raise HTTPException(status_code=404, detail="案件が見つかりません")
    return DealResponse.from_record(record)


@router.patch("/{deal_id}", response_model=DealResponse)
async def update_deal(
    deal_id: int,
    data: DealUpdate,
    background_tasks: BackgroundTasks,
    store: DealStore = Depends(get_deal_store),
):
    """
    案件を部分更新する（送信されたフィールドのみ反映）

    フェーズが契約終了に変更された場合、取引台帳への送信をバックグラウンドで実行します。
    送信の成否は更新結果に影響しません。
    """
    record = store.get(deal_id)
    if record is None:
        raise HTTPException(status_code=404, detail="案件が見つかりません")
    previous_phase = record.phase

    record = store.update(deal_id, data)
    deal = DealResponse.from_record(record)

    if is_terminal(deal.phase) and not is_terminal(previous_phase):
        logger.info(f"🏁 案件 {deal_id} が契約終了に移動しました。取引台帳へ送信します")
        background_tasks.add_task(export_closed_deal, deal)

    return deal


@router.delete("/{deal_id}", status_code=204)
async def delete_deal(deal_id: int, store: DealStore = Depends(get_deal_store)):
    """案件を削除する（LINE連携・取引台帳のデータは削除しません）"""
    if not store.delete(deal_id):
        raise HTTPException(status_code=404, detail="案件が見つかりません")
    return Response(status_code=204)


@router.post("/{deal_id}/line/qr", response_model=QrCodeResponse)
async def issue_line_qr_code(deal_id: int, service: LineService = Depends(get_line_service)):
    """案件専用のLINE友だち追加URLとQRコード画像（PNGのData URL）を発行する"""
    record = service.store.get(deal_id)
    if record is None:
        raise HTTPException(status_code=404, detail="案件が見つかりません")
    return service.issue_qr_code(record)


@router.delete("/{deal_id}/line", response_model=DealResponse)
async def unbind_line(deal_id: int, store: DealStore = Depends(get_deal_store)):
    """案件のLINE連携を解除する"""
    record = store.get(deal_id)
    if record is None:
        raise HTTPException(status_code=404, detail="案件が見つかりません")
    return DealResponse.from_record(store.unbind_line_user(record))
