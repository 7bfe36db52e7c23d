"""
Product catalog: listing, lookup and admin CRUD.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from database import Store
from errors import NoChanges, ProductExists, ProductNotFound
from pagination import clamp_page, paginate, resolve_sort, sort_docs
from schemas import Product, ProductCreate, ProductUpdate, parse

logger = logging.getLogger(__name__)

SORT_FIELDS = ("name", "price", "category", "createdAt")
PLACEHOLDER_IMAGE = "https://picsum.photos/400/300?random={id}"


def _check_unique_name(store: Store, name: str, exclude_id: Optional[int] = None) -> None:
    for p in store.list("products"):
        if p["id"] != exclude_id and p.get("name", "").lower() == name.lower():
            raise ProductExists()


def list_products(
    store: Store,
    category: str = "",
    search: str = "",
    featured: Optional[bool] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    sort_by: str = "name",
    sort_order: str = "asc",
) -> Dict[str, Any]:
    limit, offset = clamp_page(limit, offset)
    field, descending = resolve_sort(sort_by, sort_order, SORT_FIELDS)
    category = (category or "").strip().lower()
    search = (search or "").strip().lower()

    all_products = store.list("products")
    products = all_products
    if category:
        products = [p for p in products if category in p.get("category", "").lower()]
    if search:
        products = [
            p for p in products
            if search in p.get("name", "").lower()
            or search in p.get("description", "").lower()
            or search in p.get("category", "").lower()
        ]
    if featured is not None:
        products = [p for p in products if bool(p.get("featured")) == featured]

    page, pagination = paginate(sort_docs(products, field, descending), limit, offset)
    return {
        "products": page,
        "pagination": pagination,
        "filters": {
            "categories": sorted({p.get("category", "") for p in all_products}),
            "appliedCategory": category,
            "appliedSearch": search,
        },
        "sorting": {"sortBy": field, "sortOrder": "desc" if descending else "asc"},
    }


def get_product(store: Store, product_id: int) -> Dict[str, Any]:
    product = store.get("products", product_id)
    if not product:
        raise ProductNotFound()
    return product


def create_product(store: Store, data: Dict[str, Any], created_by: Optional[int] = None) -> Dict[str, Any]:
    payload = parse(ProductCreate, data)
    _check_unique_name(store, payload.name)

    now = datetime.now(timezone.utc)
    product_id = store.next_id("products")
    product = Product(
        id=product_id,
        name=payload.name,
        description=payload.description,
        price=payload.price,
        category=payload.category,
        stock=payload.stock,
        image=payload.image or PLACEHOLDER_IMAGE.format(id=product_id),
        featured=payload.featured,
        created_at=now,
        updated_at=now,
        created_by=created_by,
    ).model_dump(by_alias=True, mode="json")
    store.put("products", product)
    logger.info("Created product %s (%s)", product["id"], product["name"])
    return product


def update_product(store: Store, product_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    product = get_product(store, product_id)
    payload = parse(ProductUpdate, data)
    changes = payload.model_dump(by_alias=True, exclude_none=True)
    if changes.get("image") == "":
        del changes["image"]
    if not changes:
        raise NoChanges("No valid fields provided for update")
    if "name" in changes:
        _check_unique_name(store, changes["name"], exclude_id=product_id)

    product.update(changes)
    product["updatedAt"] = datetime.now(timezone.utc).isoformat()
    store.put("products", product)
    logger.info("Updated product %s: %s", product_id, sorted(changes))
    return product


def delete_product(store: Store, product_id: int) -> Dict[str, Any]:
    """Remove a product outright. Orders keep their own item snapshots."""
    product = get_product(store, product_id)
    store.delete("products", product_id)
    logger.info("Deleted product %s (%s)", product_id, product.get("name"))
    return {"id": product["id"], "name": product.get("name")}
