from typing import Any, Dict, List, Optional

import structlog
from slugify import slugify
from sqlalchemy import or_
from sqlalchemy.orm import Session

from storefront.core.exceptions import Conflict, InvalidArgument, NotFound
from storefront.models.category import Category
from storefront.models.product import Product
from storefront.services.pricing import to_money

logger = structlog.get_logger()


def _normalize_slug(value: str) -> str:
    normalized = slugify(value or "")
    if not normalized:
        raise InvalidArgument("Slug cannot be empty")
    return normalized


def _unique_product_slug(db: Session, base: str, exclude_id: Optional[int] = None) -> str:
    slug = base
    suffix = 1
    while True:
        query = db.query(Product.id).filter(Product.slug == slug)
        if exclude_id is not None:
            query = query.filter(Product.id != exclude_id)
        if not query.first():
            return slug
        suffix += 1
        slug = f"{base}-{suffix}"


def _require_category(db: Session, category_id: Optional[int]) -> None:
    if category_id is None:
        return
    if not db.query(Category.id).filter(Category.id == category_id).first():
        raise InvalidArgument(f"Invalid category_id: {category_id}")


def list_products(
    db: Session,
    category_id: Optional[int] = None,
    search: Optional[str] = None,
    include_inactive: bool = False,
) -> List[Product]:
    query = db.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active == True)
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.brand.ilike(pattern)))
    return query.order_by(Product.created_at.desc(), Product.id.desc()).all()


def get_product(db: Session, product_id: int, include_inactive: bool = False) -> Product:
    query = db.query(Product).filter(Product.id == product_id)
    if not include_inactive:
        query = query.filter(Product.is_active == True)
    product = query.first()
    if not product:
        raise NotFound("Product not found")
    return product


def get_product_by_slug(db: Session, slug: str) -> Product:
    product = db.query(Product).filter(Product.slug == slug, Product.is_active == True).first()
    if not product:
        raise NotFound("Product not found")
    return product


def create_product(db: Session, data: Dict[str, Any]) -> Product:
    _require_category(db, data.get("category_id"))
    base_slug = _normalize_slug(data.get("slug") or data["name"])

    product = Product(
        name=data["name"],
        slug=_unique_product_slug(db, base_slug),
        category_id=data.get("category_id"),
        description=data.get("description"),
        brand=data.get("brand"),
        price=to_money(data["price"]),
        original_price=to_money(data["original_price"]) if data.get("original_price") is not None else None,
        stock=data.get("stock", 0),
        is_active=data.get("is_active", True),
        images=list(data.get("images") or []),
        images_360=list(data.get("images_360") or []),
        features=list(data.get("features") or []),
        specifications=dict(data.get("specifications") or {}),
    )
    db.add(product)
    db.commit()
    db.refresh(product)

    logger.info("product_created", product_id=product.id, slug=product.slug)
    return product


def update_product(db: Session, product_id: int, changes: Dict[str, Any]) -> Product:
    """Partial update. The slug only changes when one is passed explicitly."""
    product = get_product(db, product_id, include_inactive=True)
    nullable = {"category_id", "description", "brand", "original_price"}
    changes = {field: value for field, value in changes.items() if value is not None or field in nullable}

    if "category_id" in changes:
        _require_category(db, changes["category_id"])
    if changes.get("slug"):
        changes["slug"] = _unique_product_slug(db, _normalize_slug(changes["slug"]), exclude_id=product.id)

    for field, value in changes.items():
        if field in ("price", "original_price") and value is not None:
            value = to_money(value)
        setattr(product, field, value)

    db.commit()
    db.refresh(product)
    return product


def serialize_product(product: Product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "category_id": product.category_id,
        "description": product.description,
        "brand": product.brand,
        "price": str(to_money(product.price)),
        "original_price": str(to_money(product.original_price)) if product.original_price is not None else None,
        "stock": product.stock,
        "in_stock": product.in_stock,
        "is_active": product.is_active,
        "images": product.images or [],
        "images_360": product.images_360 or [],
        "features": product.features or [],
        "specifications": product.specifications or {},
        "created_at": product.created_at,
    }


def list_categories(db: Session, include_inactive: bool = False) -> List[Category]:
    query = db.query(Category)
    if not include_inactive:
        query = query.filter(Category.is_active == True)
    return query.order_by(Category.name).all()


def create_category(db: Session, data: Dict[str, Any]) -> Category:
    slug = _normalize_slug(data.get("slug") or data["name"])
    duplicate = db.query(Category.id).filter(
        or_(Category.name == data["name"], Category.slug == slug)
    ).first()
    if duplicate:
        raise Conflict("Category with this name or slug already exists")

    category = Category(
        name=data["name"],
        slug=slug,
        description=data.get("description"),
        image_url=data.get("image_url"),
        is_active=data.get("is_active", True),
    )
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def serialize_category(category: Category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "image_url": category.image_url,
        "is_active": category.is_active,
    }
