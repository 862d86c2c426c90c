from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from storefront.api.deps import require_admin
from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.models.user import User
from storefront.schemas.product import CategoryCreate
from storefront.services import catalog_service
from storefront.utils.response import success

router = APIRouter()


@router.get("", response_model=dict)
@router.get("/", response_model=dict)
def get_categories(db: Session = Depends(get_db)):
    categories = catalog_service.list_categories(db)
    return success(
        data=[catalog_service.serialize_category(category) for category in categories],
        message="Categories retrieved successfully",
    )


@router.post("", status_code=status.HTTP_201_CREATED)
@router.post("/", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_category(
    request: Request,
    payload: CategoryCreate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Create category"""
    category = catalog_service.create_category(db, payload.model_dump())
    return success(data=catalog_service.serialize_category(category), message="Category created")
