from fastapi import APIRouter, Depends

from storefront.api.deps import require_admin
from storefront.models.user import User
from storefront.schemas.settings import SettingsUpdate
from storefront.services.settings_service import SettingsService, get_settings_service
from storefront.utils.response import success

router = APIRouter()


@router.get("", response_model=dict)
@router.get("/", response_model=dict)
def get_store_settings(
    current_admin: User = Depends(require_admin),
    store_settings: SettingsService = Depends(get_settings_service),
):
    return success(data=store_settings.get_all(), message="Settings retrieved successfully")


@router.put("", response_model=dict)
@router.put("/", response_model=dict)
def update_store_settings(
    payload: SettingsUpdate,
    current_admin: User = Depends(require_admin),
    store_settings: SettingsService = Depends(get_settings_service),
):
    values = store_settings.set_many(payload.root)
    return success(data=values, message="Settings updated successfully")
