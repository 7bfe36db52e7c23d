import os
import uuid
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaValidationError
from starlette.datastructures import UploadFile

import config
import catalog
import orders
from auth import Identity, authorize_admin, login_user, public_user, register_user, verify_authorization
from database import COLLECTIONS, Store, get_store, seed_demo_data
from errors import AppError, AuthenticationError, AuthorizationError, InternalError, NotFoundError, RateLimitError, ValidationError
from ratelimit import LimitConfig, limiter
from schemas import LoginRequest, RateLimitReset, RegisterRequest, field_errors

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
logger = logging.getLogger(__name__)
security_log = logging.getLogger("security")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.SEED_DEMO_DATA:
        seed_demo_data(get_store())
    yield


app = FastAPI(title="Storefront API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


def client_address(request: Request) -> str:
    if config.TRUST_PROXY_HEADERS:
        if request.headers.get("client-ip"):
            return request.headers["client-ip"]
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@app.middleware("http")
async def security_headers(request: Request, call_next):
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Unhandled error on %s %s from %s", request.method, request.url.path, client_address(request))
        response = JSONResponse(status_code=500, content=InternalError().to_dict())
    response.headers.update(SECURITY_HEADERS)
    return response


# Error translation
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s from %s: %s", exc.code, request.method, request.url.path, client_address(request), exc.message)
        return JSONResponse(status_code=exc.status_code, content={"message": InternalError.message, "code": exc.code})
    headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, RateLimitError) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = field_errors(exc, skip_prefix=("body", "query", "path", "header"))
    return JSONResponse(status_code=400, content=ValidationError(errors=errors).to_dict())


@app.exception_handler(SchemaValidationError)
async def schema_validation_handler(request: Request, exc: SchemaValidationError):
    return JSONResponse(status_code=400, content=ValidationError(errors=field_errors(exc)).to_dict())


# Dependencies
def rate_limited(endpoint: str):
    def check(request: Request):
        if not config.RATE_LIMIT_ENABLED:
            return
        max_requests, window_ms = config.RATE_LIMITS[endpoint]
        caller = client_address(request)
        decision = limiter.check(caller, endpoint, LimitConfig(max_requests, window_ms))
        if not decision.allowed:
            security_log.warning("Rate limit exceeded for %s from %s", endpoint, caller)
            raise RateLimitError(decision.retry_after)
    return Depends(check)


def current_identity(request: Request, authorization: Optional[str] = Header(None)) -> Identity:
    try:
        return verify_authorization(authorization)
    except AuthenticationError as e:
        security_log.warning("Rejected token (%s) on %s %s from %s", e.code, request.method, request.url.path, client_address(request))
        raise


def admin_identity(request: Request, identity: Identity = Depends(current_identity)) -> Identity:
    decision = authorize_admin(identity)
    if not decision.allowed:
        security_log.warning("Non-admin user %s (%s) attempted %s %s", identity.id, identity.role.value, request.method, request.url.path)
    decision.enforce()
    return identity


async def _save_upload(upload: UploadFile) -> str:
    ext = os.path.splitext(upload.filename or "")[1].lower()
    if ext not in IMAGE_EXTENSIONS:
        raise ValidationError("Unsupported image type", errors=[{"field": "image", "message": f"Allowed: {', '.join(sorted(IMAGE_EXTENSIONS))}"}])
    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    filename = f"{uuid.uuid4().hex}{ext}"
    with open(os.path.join(config.UPLOAD_DIR, filename), "wb") as f:
        f.write(await upload.read())
    return f"/uploads/{filename}"


async def product_payload(request: Request) -> Dict[str, Any]:
    """Read a product body sent either as JSON or as (multipart) form data."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        data: Dict[str, Any] = {}
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if key == "image" and value.filename:
                    data["image"] = await _save_upload(value)
            else:
                data[key] = value
        return data
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")
    return body


# Health
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/health")
def health(store: Store = Depends(get_store)):
    return {
        "message": "ok",
        "store": store.name,
        "collections": {c: len(store.list(c)) for c in COLLECTIONS},
        "rateLimiting": config.RATE_LIMIT_ENABLED,
    }


# Auth
@app.post("/register", status_code=201, dependencies=[rate_limited("register")])
def register(payload: RegisterRequest, store: Store = Depends(get_store)):
    user = register_user(store, payload)
    return {
        "message": "Registration successful",
        "userId": user["id"],
        "username": user["username"],
        "user": public_user(user),
    }


@app.post("/login", dependencies=[rate_limited("login")])
def login(payload: LoginRequest, store: Store = Depends(get_store)):
    result = login_user(store, payload)
    return {"message": "Login successful", **result}


@app.get("/me")
def get_me(identity: Identity = Depends(current_identity), store: Store = Depends(get_store)):
    user = store.get("users", identity.id)
    if not user:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return {"message": "Profile fetched successfully", "user": public_user(user)}


# Products
@app.get("/products", dependencies=[rate_limited("products")])
def list_products(
    category: str = "",
    search: str = "",
    featured: Optional[bool] = None,
    limit: int = 20,
    offset: int = 0,
    sort_by: str = Query("name", alias="sortBy"),
    sort_order: str = Query("asc", alias="sortOrder"),
    store: Store = Depends(get_store),
):
    data = catalog.list_products(store, category, search, featured, limit, offset, sort_by, sort_order)
    return {"message": "Products fetched successfully", "data": data}


@app.get("/products/{product_id}", dependencies=[rate_limited("products")])
def get_product(product_id: int, store: Store = Depends(get_store)):
    return {"message": "Product fetched successfully", "data": {"product": catalog.get_product(store, product_id)}}


@app.post("/products", status_code=201, dependencies=[rate_limited("product-create")])
async def create_product(request: Request, admin: Identity = Depends(admin_identity), store: Store = Depends(get_store)):
    data = await product_payload(request)
    product = catalog.create_product(store, data, created_by=admin.id)
    security_log.info("Product %s created by admin %s", product["id"], admin.id)
    return {"message": "Product created successfully", "data": {"product": product}}


@app.put("/products/{product_id}", dependencies=[rate_limited("product-manage")])
async def update_product(product_id: int, request: Request, admin: Identity = Depends(admin_identity), store: Store = Depends(get_store)):
    data = await product_payload(request)
    product = catalog.update_product(store, product_id, data)
    security_log.info("Product %s updated by admin %s", product_id, admin.id)
    return {"message": "Product updated successfully", "data": {"product": product}}


@app.delete("/products/{product_id}", dependencies=[rate_limited("product-manage")])
def delete_product(product_id: int, admin: Identity = Depends(admin_identity), store: Store = Depends(get_store)):
    deleted = catalog.delete_product(store, product_id)
    security_log.info("Product %s deleted by admin %s", product_id, admin.id)
    return {"message": "Product deleted successfully", "data": {"deletedProduct": deleted}}


# Orders
@app.post("/orders", status_code=201, dependencies=[rate_limited("order-create")])
def create_order(body: Dict[str, Any] = Body(...), identity: Identity = Depends(current_identity), store: Store = Depends(get_store)):
    order = orders.create_order(store, identity, body)
    summary = {k: order[k] for k in ("id", "orderNumber", "status", "paymentStatus", "subtotal",
                                     "shippingCost", "totalAmount", "createdAt", "estimatedDelivery")}
    return {"message": "Order created successfully", "data": {"order": summary}}


@app.get("/orders", dependencies=[rate_limited("orders")])
def list_orders(
    status: str = "",
    limit: int = 20,
    offset: int = 0,
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    admin_view: bool = Query(False, alias="adminView"),
    identity: Identity = Depends(current_identity),
    store: Store = Depends(get_store),
):
    if admin_view and not identity.is_admin:
        security_log.warning("Non-admin user %s attempted to access all orders", identity.id)
    data = orders.list_orders(store, identity, status, limit, offset, sort_by, sort_order, admin_view)
    return {"message": "Orders fetched successfully", "data": data}


@app.get("/orders/{order_id}", dependencies=[rate_limited("orders")])
def order_detail(order_id: int, identity: Identity = Depends(current_identity), store: Store = Depends(get_store)):
    return {"message": "Order fetched successfully", "data": {"order": orders.get_order(store, identity, order_id)}}


@app.put("/orders/{order_id}", dependencies=[rate_limited("order-manage")])
def update_order(order_id: int, body: Dict[str, Any] = Body(...), admin: Identity = Depends(admin_identity), store: Store = Depends(get_store)):
    result = orders.update_order(store, admin, order_id, body)
    return {"message": "Order updated successfully", "data": result}


# Development helpers
@app.post("/admin/rate-limits/reset")
def reset_rate_limits(request: Request, payload: Optional[RateLimitReset] = None):
    payload = payload or RateLimitReset()
    caller = client_address(request)
    if not config.DEV_MODE:
        security_log.warning("Rate limit reset attempt outside dev mode from %s", caller)
        raise AuthorizationError("Operation not allowed in production")
    if payload.clear_all:
        cleared = limiter.reset_all()
        security_log.info("All rate limits cleared by %s", caller)
        return {"message": "All rate limits cleared successfully", "action": "clear_all", "cleared": cleared}
    if payload.endpoint and payload.ip:
        limiter.reset(payload.ip, payload.endpoint)
        security_log.info("Rate limit cleared for %s on %s by %s", payload.ip, payload.endpoint, caller)
        return {
            "message": f"Rate limit cleared for {payload.ip} on {payload.endpoint}",
            "action": "clear_specific",
            "ip": payload.ip,
            "endpoint": payload.endpoint,
        }
    raise ValidationError("Please provide either clearAll=true or both ip and endpoint parameters")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
