from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from storefront.api.deps import require_admin
from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.models.user import User
from storefront.schemas.product import ProductCreate, ProductUpdate
from storefront.services import catalog_service, deletion_guard
from storefront.utils.response import success

router = APIRouter()


@router.get("", response_model=dict)
@router.get("/", response_model=dict)
def get_products(
    category_id: Optional[int] = Query(None, alias="categoryId"),
    search: Optional[str] = Query(None, max_length=100),
    db: Session = Depends(get_db),
):
    products = catalog_service.list_products(db, category_id=category_id, search=search)
    return success(
        data=[catalog_service.serialize_product(product) for product in products],
        message="Products retrieved successfully",
    )


@router.get("/slug/{slug}", response_model=dict)
def get_product_by_slug(slug: str, db: Session = Depends(get_db)):
    product = catalog_service.get_product_by_slug(db, slug)
    return success(data=catalog_service.serialize_product(product), message="Product retrieved successfully")


@router.get("/{product_id}", response_model=dict)
def get_product(product_id: int, db: Session = Depends(get_db)):
    product = catalog_service.get_product(db, product_id)
    return success(data=catalog_service.serialize_product(product), message="Product retrieved successfully")


@router.post("", status_code=status.HTTP_201_CREATED)
@router.post("/", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_product(
    request: Request,
    payload: ProductCreate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Create new product"""
    product = catalog_service.create_product(db, payload.model_dump())
    return success(data=catalog_service.serialize_product(product), message="Product created successfully")


@router.put("/{product_id}")
@limiter.limit("30/minute")
def update_product(
    request: Request,
    product_id: int,
    payload: ProductUpdate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Update product"""
    product = catalog_service.update_product(db, product_id, payload.model_dump(exclude_unset=True))
    return success(data=catalog_service.serialize_product(product), message="Product updated successfully")


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
def delete_product(
    request: Request,
    product_id: int,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Delete a product that no order references"""
    deletion_guard.delete_product(db, product_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
