from fastapi import APIRouter, File, HTTPException, UploadFile
from app.config import settings
from app.models.myosoku import MyosokuAnalyzeResponse
from app.services.vision_service import ALLOWED_IMAGE_TYPES, get_vision_service
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/myosoku", tags=["myosoku"])


@router.post("/analyze", response_model=MyosokuAnalyzeResponse)
async def analyze_myosoku(file: UploadFile = File(...)):
    """
    マイソク画像から取引台帳の入力項目を抽出する

    対応形式: JPEG, PNG, GIF, WebP（最大 MAX_UPLOAD_SIZE_MB）
    """
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(
            status_code=400,
            detail="Invalid file format. Allowed formats: JPEG, PNG, GIF, WebP"
        )

    image_data = await file.read()
    if not image_data:
        raise HTTPException(status_code=400, detail="画像ファイルが空です")
    if len(image_data) > settings.max_upload_size_bytes:
        raise HTTPException(
            status_code=400,
            detail=f"File size exceeds maximum allowed size of {settings.MAX_UPLOAD_SIZE_MB}MB"
        )

    logger.info(f"🖼️ マイソク画像解析開始: {file.filename} ({len(image_data)} bytes)")
    result = get_vision_service().analyze_myosoku(image_data, file.content_type)
    if not result.ok:
        raise HTTPException(status_code=502, detail=f"画像解析に失敗しました: {result.error}")

    return MyosokuAnalyzeResponse(success=True, filename=file.filename, data=result.value)
