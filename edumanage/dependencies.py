from fastapi import Depends, HTTPException, status
from functools import lru_cache
from typing import Optional

from .config import MEDIA_ROOT, CAMERA_INDEX, CAMERA_SOURCE
from .db import async_session_maker
from .models.user_model import User, UserRole
from .security import current_active_user
from .services.media_devices import MediaDevices, OpenCVMediaDevices
from .services.sql_store import SQLAlchemyDataStore
from .services.storage import LocalObjectStorage, ObjectStorage
from .services.store import DataStore


@lru_cache
def get_store() -> DataStore:
    return SQLAlchemyDataStore(async_session_maker)


@lru_cache
def get_storage() -> ObjectStorage:
    return LocalObjectStorage(MEDIA_ROOT)


@lru_cache
def _station_camera() -> MediaDevices:
    return OpenCVMediaDevices(CAMERA_INDEX)


def get_media_devices() -> Optional[MediaDevices]:
    """None means each attempt uses the student's browser camera."""
    if CAMERA_SOURCE == "station":
        return _station_camera()
    return None


def current_user_has_role(*required_roles: UserRole):
    async def current_user_contains_role(user: User = Depends(current_active_user)):
        if user.role not in required_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Operation not permitted",
            )
        return user
    return current_user_contains_role


current_staff = current_user_has_role(UserRole.ADMIN, UserRole.TEACHER)
current_student_user = current_user_has_role(UserRole.STUDENT)


async def student_for_user(user: User, store: DataStore) -> dict:
    rows = await store.read("students", {'user_id': str(user.id)})
    if not rows:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student profile not found")
    return rows[0]


async def current_student(user: User = Depends(current_student_user), store: DataStore = Depends(get_store)) -> dict:
    return await student_for_user(user, store)
