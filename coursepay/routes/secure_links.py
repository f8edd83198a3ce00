from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.database import get_session
from coursepay.services.secure_link_service import SecureContentIssuer
from coursepay.services.storage_service import FileStorage, get_file_storage

router = APIRouter()


@router.get("/{token}")
async def open_secure_link(
    token: str,
    session: AsyncSession = Depends(get_session),
    storage: FileStorage = Depends(get_file_storage),
):
    file_ref = await SecureContentIssuer(session).resolve_link(token)
    url = storage.presigned_url(file_ref.storage_key, file_name=file_ref.file_name)
    return RedirectResponse(url, status_code=307)
