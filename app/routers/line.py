"""
LINE連携 API

スタッフ操作の手動送信、メッセージテンプレートの管理、
LINE Platform からの Webhook 受信、連携状況の確認を提供します。
"""
import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from app.config import settings
from app.models.deal import DealResponse
from app.models.line import (
    LineConnectionSummary,
    LineSendRequest,
    LineSendResponse,
    TemplateResponse,
    TemplateUpdate,
    WebhookResponse,
)
from app.services.line_client import verify_line_signature
from app.services.line_service import LineService, OutboundValidationError, get_line_service
from app.services.template_service import DEFAULT_TEMPLATES, TemplateStore, get_template_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/line", tags=["line"])


# ==================== 手動送信 ====================

@router.post("/send", response_model=LineSendResponse)
async def send_line_message(
    request: LineSendRequest,
    service: LineService = Depends(get_line_service),
):
    """
    顧客へLINEメッセージを送信する

    message未指定時はphaseのテンプレートを案件の値で展開して送信します。
    送信先が空の場合は400、LINE APIの失敗は502を返します（案件データは変更しません）。
    """
    record = service.store.get(request.deal_id)
    if record is None:
        raise HTTPException(status_code=404, detail="案件が見つかりません")
    deal = DealResponse.from_record(record)

    try:
        result = await service.send_manual_message(
            deal,
            request.phase,
            message=request.message,
            line_user_id=request.line_user_id,
        )
    except OutboundValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.ok:
        raise HTTPException(status_code=502, detail=f"LINE送信に失敗しました: {result.error}")

    return LineSendResponse(
        success=True,
        deal_id=deal.id,
        line_user_id=(request.line_user_id or deal.line_user_id).strip(),
        message="LINE通知を送信しました",
    )


# ==================== テンプレート ====================

@router.get("/templates", response_model=List[TemplateResponse])
async def list_templates(store: TemplateStore = Depends(get_template_store)):
    return [
        TemplateResponse(name=t.name, template=t.template, is_default=t.is_default)
        for t in store.list_templates()
    ]


@router.get("/template/{key:path}", response_model=TemplateResponse)
async def get_template(
    key: str,
    deal_id: Optional[int] = Query(None, description="指定時は案件の値で展開した本文を含める"),
    store: TemplateStore = Depends(get_template_store),
    service: LineService = Depends(get_line_service),
):
    """テンプレートを取得する（deal_id指定時は展開済みの本文も返す）"""
    template = store.get(key)
    if template is None:
        raise HTTPException(status_code=404, detail=f"テンプレート「{key}」が見つかりません")

    rendered = None
    if deal_id is not None:
        record = service.store.get(deal_id)
        if record is None:
            raise HTTPException(status_code=404, detail="案件が見つかりません")
        rendered = store.render(key, DealResponse.from_record(record))

    return TemplateResponse(
        name=key,
        template=template,
        rendered=rendered,
        is_default=key in DEFAULT_TEMPLATES,
    )


@router.put("/template/{key:path}", response_model=TemplateResponse)
async def update_template(
    key: str,
    data: TemplateUpdate,
    store: TemplateStore = Depends(get_template_store),
):
    saved = store.set(key, data.template)
    return TemplateResponse(name=saved.name, template=saved.template, is_default=saved.is_default)


@router.delete("/template/{key:path}")
async def delete_template(key: str, store: TemplateStore = Depends(get_template_store)):
    if not store.delete(key):
        raise HTTPException(status_code=404, detail=f"テンプレート「{key}」が見つかりません")
    return {"message": "テンプレートを削除しました"}


@router.post("/templates/reset", response_model=List[TemplateResponse])
async def reset_templates(store: TemplateStore = Depends(get_template_store)):
    """テンプレートを初期状態に戻す"""
    store.reset_defaults()
    return [
        TemplateResponse(name=t.name, template=t.template, is_default=t.is_default)
        for t in store.list_templates()
    ]


# ==================== Webhook ====================

@router.post("/webhook", response_model=WebhookResponse)
async def line_webhook(
    request: Request,
    deal: Optional[str] = Query(None, description="QRコード経由の案件トークン"),
    x_line_signature: Optional[str] = Header(None, alias="X-Line-Signature"),
    service: LineService = Depends(get_line_service),
):
    """
    LINE Platform からの Webhook を受信する

    署名（X-Line-Signature）を検証してから、友だち追加・メッセージ・ポストバックを処理します。
    個別イベントの処理エラーは200を返してLINE側の再送を防ぎます。
    """
    raw_body = await request.body()

    if not verify_line_signature(raw_body, x_line_signature, settings.LINE_CHANNEL_SECRET):
        logger.warning("⚠️ LINE Webhook 署名検証失敗")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        body = json.loads(raw_body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    logger.info(f"📥 LINE Webhook 受信: {len(body.get('events', []))} events")
    processed = await service.handle_webhook(body, deal_token=deal)
    return WebhookResponse(status="ok", processed_events=processed)


# ==================== 連携状況 ====================

@router.get("/connections", response_model=LineConnectionSummary)
async def get_line_connections(service: LineService = Depends(get_line_service)):
    """LINE連携状況（連携方法別の件数と未連携の案件一覧）"""
    return service.connection_summary()
