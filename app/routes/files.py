from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from app.core.access import Principal, asset_scope
from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.core.deps import get_storage
from app.core.security import get_current_principal
from app.core.storage import LocalStorage
from app.models import FileAsset

router = APIRouter()


@router.get("/{stored_name}")
async def get_uploaded_file(
    stored_name: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    """上传文件预览（需认证，只能访问自己可见的文件）"""
    file_record = (
        db.query(FileAsset)
        .filter(FileAsset.storedName == stored_name, asset_scope(principal))
        .first()
    )
    if not file_record or not storage.exists(file_record.storedName):
        raise HTTPException(status_code=404, detail="文件不存在")

    # URL 编码文件名以支持中文
    encoded_filename = quote(file_record.originalName)

    return StreamingResponse(
        storage.iter_chunks(file_record.storedName, settings.DOWNLOAD_CHUNK_SIZE),
        media_type=file_record.mimeType or "application/octet-stream",
        headers={"Content-Disposition": f"inline; filename*=UTF-8''{encoded_filename}"},
    )
