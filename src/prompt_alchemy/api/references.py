"""
参考图上传 API
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from prompt_alchemy.api.deps import get_container
from prompt_alchemy.core.exceptions import ReferenceNotReadyError
from prompt_alchemy.services.container import ServiceContainer

router = APIRouter(prefix="/references", tags=["references"])


class UploadReferenceRequest(BaseModel):
    """base64 图片（可带 data URL 前缀）"""
    data: str = Field(min_length=1)
    name: str = "reference"


@router.post("")
async def upload_reference(
    request: UploadReferenceRequest,
    services: ServiceContainer = Depends(get_container),
):
    """上传参考图到图床，返回公开URL"""
    try:
        url = await services.image_host.upload_base64(request.data, request.name)
    except ReferenceNotReadyError as e:
        raise HTTPException(status_code=502, detail=f"参考图未就绪: {e}")
    return {"url": url}
