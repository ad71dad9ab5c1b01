from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from masada.core.database import get_db
from masada.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from masada.core.logging_config import logger
from masada.models.test import Test, TestAsset
from masada.models.user import User, UserType
from masada.modules.auth.dependencies import get_current_user
from masada.schemas.common import success_response
from masada.schemas.test import TestAssetResponse
from masada.services import test_lifecycle
from masada.services.upload_service import upload_service

router = APIRouter()

CACHE_CONTROL = "public, max-age=31536000"


async def get_owned_test(db: AsyncSession, test_id: str, user: User) -> Test:
    test = await db.get(Test, test_id)
    if test is None:
        raise NotFoundError("Test")
    if user.user_type != UserType.ADMIN and test.created_by_id != user.id:
        raise AuthorizationError("You can only manage assets of your own tests")
    return test


@router.get("/tests/{test_id}/assets")
async def list_test_assets(
    test_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    test = await db.get(Test, test_id)
    if test is None:
        raise NotFoundError("Test")

    allowed = (
        current_user.user_type == UserType.ADMIN
        or test.created_by_id == current_user.id
        or (current_user.user_type == UserType.TESTER and test_lifecycle.is_open_for_testing(test))
    )
    if not allowed:
        raise AuthorizationError("You do not have access to this test's assets")

    result = await db.execute(
        select(TestAsset).where(TestAsset.test_id == test.id).order_by(TestAsset.created_at.asc())
    )
    return success_response({
        "assets": [TestAssetResponse.model_validate(a).model_dump(mode="json") for a in result.scalars().all()]
    })


@router.post("/{upload_type}", status_code=status.HTTP_201_CREATED)
async def upload_files(
    upload_type: str,
    files: Optional[List[UploadFile]] = File(None),
    test_id: Optional[str] = Form(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Store up to MAX_FILES_PER_UPLOAD files under the given upload type"""
    upload_service.validate_upload_type(upload_type)
    files = files or []
    upload_service.validate_files(files)

    test = None
    if upload_type == "test-assets":
        if not test_id:
            raise ValidationError("test_id is required for test assets")
        test = await get_owned_test(db, test_id, current_user)

    stored = await upload_service.save_all(upload_type, files)

    if test is not None:
        for item in stored:
            db.add(TestAsset(
                test_id=test.id,
                uploaded_by_id=current_user.id,
                file_name=item["file_name"],
                original_name=item["original_name"] or item["file_name"],
                mime_type=item["mime_type"],
                size=item["size"],
                url=item["url"],
            ))
        await db.commit()

    logger.info(f"[Uploads] {current_user.id} uploaded {len(stored)} file(s) to {upload_type}")
    return success_response({"files": stored}, "Files uploaded successfully")


@router.get("/{upload_type}/{filename}")
async def get_file(upload_type: str, filename: str):
    path = upload_service.resolve_path(upload_type, filename)
    if not path.is_file():
        raise NotFoundError("File")
    return FileResponse(path, headers={"Cache-Control": CACHE_CONTROL})


@router.delete("/{upload_type}/{filename}")
async def delete_file(
    upload_type: str,
    filename: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    path = upload_service.resolve_path(upload_type, filename)

    if upload_type == "test-assets":
        result = await db.execute(select(TestAsset).where(TestAsset.file_name == filename))
        asset = result.scalar_one_or_none()
        if asset is not None:
            test = await db.get(Test, asset.test_id)
            is_owner = test is not None and test.created_by_id == current_user.id
            if current_user.user_type != UserType.ADMIN and not is_owner:
                raise AuthorizationError("You can only delete assets of your own tests")
            await db.execute(delete(TestAsset).where(TestAsset.id == asset.id))
        elif current_user.user_type != UserType.ADMIN:
            raise NotFoundError("File")

    if not path.is_file():
        raise NotFoundError("File")

    await upload_service.delete(upload_type, filename)
    await db.commit()
    return success_response(message="File deleted successfully")
