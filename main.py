import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import stats
from config import Settings, configure_logging, load_settings
from context import AppContext, get_context
from database import (
    CATEGORIES, ORDERS, PRODUCTS, USERS,
    connect, create_document, delete_document, ensure_indexes, get_document_by_id,
    get_documents, serialize_doc, to_object_id, update_document, utcnow,
)
from errors import Conflict, Forbidden, NotFound, Unauthorized, envelope, install_error_handlers
from orders import OrderService
from schemas import (
    ROLE_ADMIN, ROLE_USER,
    Category, CategoryCreate, CategoryUpdate, LoginRequest, OrderCreate, OrderStatusUpdate,
    Product, ProductCreate, ProductUpdate, RegisterRequest, Review, ReviewCreate, User, UserUpdate,
)
from security import (
    Identity, PasswordHasher, Permission, TokenService,
    admin_only, can_act_on, get_current_identity, require_permission,
)

logger = logging.getLogger(__name__)

router = APIRouter()

catalog_admin = require_permission(Permission.MANAGE_CATALOG)
users_admin = require_permission(Permission.MANAGE_USERS)
orders_admin = require_permission(Permission.MANAGE_ORDERS)
stats_viewer = require_permission(Permission.VIEW_STATS)


# ===================== Public Endpoints =====================
@router.get("/")
def root():
    return {"message": "Storefront API running"}


@router.get("/health")
def health(ctx: AppContext = Depends(get_context)):
    response = {"status": "ok", "database": "connected"}
    try:
        ctx.db.command("ping")
    except PyMongoError as e:
        logger.warning("Health check ping failed: %s", e)
        response = {"status": "degraded", "database": f"error: {str(e)[:80]}"}
    return response


# ===================== Auth =====================
def _create_user(ctx: AppContext, payload: RegisterRequest, role: str) -> dict:
    if ctx.db[USERS].find_one({"email": payload.email}, {"_id": 1}):
        raise Conflict("Email already registered")
    user = User(
        email=payload.email,
        password_hash=ctx.passwords.hash(payload.password),
        name=payload.name,
        role=role,
    )
    try:
        return create_document(ctx.db, USERS, user)
    except DuplicateKeyError:
        raise Conflict("Email already registered")


@router.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, ctx: AppContext = Depends(get_context)):
    user = _create_user(ctx, payload, ROLE_USER)
    return envelope("User registered successfully", serialize_doc(user))


@router.post("/auth/admin", status_code=201)
def register_admin(payload: RegisterRequest, ctx: AppContext = Depends(get_context),
                   identity: Identity = Depends(admin_only)):
    user = _create_user(ctx, payload, ROLE_ADMIN)
    logger.info("Admin %s created by %s", user["_id"], identity.user_id)
    return envelope("Admin registered successfully", serialize_doc(user))


@router.post("/auth/login")
def login(payload: LoginRequest, ctx: AppContext = Depends(get_context)):
    user = ctx.db[USERS].find_one({"email": payload.email})
    if not user or not ctx.passwords.verify(payload.password, user.get("password_hash", "")):
        raise Unauthorized("Invalid email or password")
    token = ctx.tokens.issue(str(user["_id"]), user.get("role", ROLE_USER))
    return envelope("Login successful", {"user": serialize_doc(user), "token": token})


# ===================== Users =====================
@router.get("/users")
def list_users(ctx: AppContext = Depends(get_context), identity: Identity = Depends(users_admin)):
    users = get_documents(ctx.db, USERS, sort=[("created_at", DESCENDING)])
    return envelope("Users fetched successfully", [serialize_doc(u) for u in users])


@router.get("/users/{user_id}")
def get_user(user_id: str, ctx: AppContext = Depends(get_context),
             identity: Identity = Depends(get_current_identity)):
    oid = to_object_id(user_id, "user")
    if not can_act_on(identity, oid, Permission.MANAGE_USERS):
        raise Forbidden("Access denied")
    user = get_document_by_id(ctx.db, USERS, oid)
    if not user:
        raise NotFound("User not found")
    return envelope("User fetched successfully", serialize_doc(user))


@router.put("/users/{user_id}")
def update_user(user_id: str, payload: UserUpdate, ctx: AppContext = Depends(get_context),
                identity: Identity = Depends(get_current_identity)):
    oid = to_object_id(user_id, "user")
    if not can_act_on(identity, oid, Permission.MANAGE_USERS):
        raise Forbidden("Access denied")
    changes = payload.model_dump(exclude_none=True)
    if "email" in changes and ctx.db[USERS].find_one({"email": changes["email"], "_id": {"$ne": oid}}, {"_id": 1}):
        raise Conflict("Email already in use")
    user = update_document(ctx.db, USERS, oid, changes)
    if not user:
        raise NotFound("User not found")
    return envelope("User updated successfully", serialize_doc(user))


@router.delete("/users/{user_id}")
def delete_user(user_id: str, ctx: AppContext = Depends(get_context),
                identity: Identity = Depends(users_admin)):
    if not delete_document(ctx.db, USERS, to_object_id(user_id, "user")):
        raise NotFound("User not found")
    return envelope("User deleted successfully")


# ===================== Categories =====================
@router.get("/categories")
def list_categories(ctx: AppContext = Depends(get_context),
                    identity: Identity = Depends(get_current_identity)):
    categories = get_documents(ctx.db, CATEGORIES, sort=[("name", 1)])
    return envelope("Categories fetched successfully", [serialize_doc(c) for c in categories])


@router.get("/categories/{category_id}")
def get_category(category_id: str, ctx: AppContext = Depends(get_context),
                 identity: Identity = Depends(get_current_identity)):
    category = get_document_by_id(ctx.db, CATEGORIES, to_object_id(category_id, "category"))
    if not category:
        raise NotFound("Category not found")
    return envelope("Category fetched successfully", serialize_doc(category))


@router.post("/categories", status_code=201)
def create_category(payload: CategoryCreate, ctx: AppContext = Depends(get_context),
                    identity: Identity = Depends(catalog_admin)):
    category = create_document(ctx.db, CATEGORIES, Category(**payload.model_dump()))
    return envelope("Category created successfully", serialize_doc(category))


@router.put("/categories/{category_id}")
def update_category(category_id: str, payload: CategoryUpdate, ctx: AppContext = Depends(get_context),
                    identity: Identity = Depends(catalog_admin)):
    oid = to_object_id(category_id, "category")
    category = update_document(ctx.db, CATEGORIES, oid, payload.model_dump(exclude_none=True))
    if not category:
        raise NotFound("Category not found")
    return envelope("Category updated successfully", serialize_doc(category))


@router.delete("/categories/{category_id}")
def remove_category(category_id: str, ctx: AppContext = Depends(get_context),
                    identity: Identity = Depends(catalog_admin)):
    oid = to_object_id(category_id, "category")
    if ctx.db[PRODUCTS].count_documents({"category_id": oid}) > 0:
        raise Conflict("Cannot delete category with associated products")
    if not delete_document(ctx.db, CATEGORIES, oid):
        raise NotFound("Category not found")
    return envelope("Category deleted successfully")


# ===================== Products =====================
def _with_category(db: Database, product: dict, cache: Optional[dict] = None) -> dict:
    out = dict(product)
    category_id = product.get("category_id")
    if cache is not None and category_id in cache:
        out["category"] = cache[category_id]
        return out
    category = db[CATEGORIES].find_one({"_id": category_id}) or {}
    if cache is not None:
        cache[category_id] = category
    out["category"] = category
    return out


def _require_category(db: Database, category_id: str) -> dict:
    category = get_document_by_id(db, CATEGORIES, to_object_id(category_id, "category"))
    if not category:
        raise NotFound("Category not found")
    return category


@router.get("/products")
def list_products(category_id: Optional[str] = Query(None, alias="categoryId"),
                  ctx: AppContext = Depends(get_context)):
    filter_q = {}
    if category_id:
        filter_q["category_id"] = to_object_id(category_id, "category")
    cache = {}
    products = [_with_category(ctx.db, p, cache) for p in get_documents(ctx.db, PRODUCTS, filter_q)]
    return envelope("Products fetched successfully", [serialize_doc(p) for p in products])


@router.get("/products/{product_id}")
def get_product(product_id: str, ctx: AppContext = Depends(get_context)):
    product = get_document_by_id(ctx.db, PRODUCTS, to_object_id(product_id, "product"))
    if not product:
        raise NotFound("Product not found")
    return envelope("Product fetched successfully", serialize_doc(_with_category(ctx.db, product)))


@router.post("/products", status_code=201)
def create_product(payload: ProductCreate, ctx: AppContext = Depends(get_context),
                   identity: Identity = Depends(catalog_admin)):
    category = _require_category(ctx.db, payload.category_id)
    product = Product(**payload.model_dump(exclude={"category_id"}), category_id=category["_id"])
    doc = create_document(ctx.db, PRODUCTS, product)
    doc["category"] = category
    return envelope("Product created successfully", serialize_doc(doc))


@router.put("/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, ctx: AppContext = Depends(get_context),
                   identity: Identity = Depends(catalog_admin)):
    oid = to_object_id(product_id, "product")
    changes = payload.model_dump(exclude_none=True)
    if "category_id" in changes:
        changes["category_id"] = _require_category(ctx.db, changes["category_id"])["_id"]
    product = update_document(ctx.db, PRODUCTS, oid, changes)
    if not product:
        raise NotFound("Product not found")
    return envelope("Product updated successfully", serialize_doc(_with_category(ctx.db, product)))


@router.delete("/products/{product_id}")
def delete_product(product_id: str, ctx: AppContext = Depends(get_context),
                   identity: Identity = Depends(catalog_admin)):
    oid = to_object_id(product_id, "product")
    if ctx.db[ORDERS].count_documents({"items.product_id": oid}) > 0:
        raise Conflict("Cannot delete product with associated orders")
    if not delete_document(ctx.db, PRODUCTS, oid):
        raise NotFound("Product not found")
    return envelope("Product deleted successfully")


@router.post("/products/{product_id}/reviews")
def add_review(product_id: str, payload: ReviewCreate, ctx: AppContext = Depends(get_context),
               identity: Identity = Depends(get_current_identity)):
    oid = to_object_id(product_id, "product")
    author = get_document_by_id(ctx.db, USERS, to_object_id(identity.user_id, "user"), {"name": 1})
    if not author:
        raise NotFound("User not found")
    review = Review(user_id=author["_id"], user_name=author.get("name", ""), **payload.model_dump())
    product = ctx.db[PRODUCTS].find_one_and_update(
        {"_id": oid},
        {"$push": {"reviews": review.model_dump(by_alias=True)}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not product:
        raise NotFound("Product not found")
    return envelope("Review added successfully", serialize_doc(product))


# ===================== Orders =====================
@router.get("/orders")
def list_orders(status: Optional[str] = None, ctx: AppContext = Depends(get_context),
                identity: Identity = Depends(get_current_identity)):
    orders = ctx.orders.get_orders(identity, status=status)
    return envelope("Orders fetched successfully", [serialize_doc(o) for o in orders])


@router.get("/orders/{order_id}")
def get_order(order_id: str, ctx: AppContext = Depends(get_context),
              identity: Identity = Depends(get_current_identity)):
    return envelope("Order fetched successfully", serialize_doc(ctx.orders.get_order(order_id, identity)))


@router.post("/orders", status_code=201)
def create_order(payload: OrderCreate, ctx: AppContext = Depends(get_context),
                 identity: Identity = Depends(get_current_identity)):
    order = ctx.orders.create_order(identity.user_id, payload.items)
    return envelope("Order created successfully", serialize_doc(order))


@router.put("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusUpdate, ctx: AppContext = Depends(get_context),
                        identity: Identity = Depends(orders_admin)):
    order = ctx.orders.update_order_status(order_id, payload.status)
    return envelope("Order status updated successfully", serialize_doc(order))


@router.delete("/orders/{order_id}")
def delete_order(order_id: str, ctx: AppContext = Depends(get_context),
                 identity: Identity = Depends(get_current_identity)):
    ctx.orders.delete_order(order_id, identity)
    return envelope("Order deleted successfully")


# ===================== Stats =====================
@router.get("/stats/sales")
def sales_stats(ctx: AppContext = Depends(get_context), identity: Identity = Depends(stats_viewer)):
    return envelope("Sales statistics fetched successfully",
                    [serialize_doc(r) for r in stats.sales_by_category(ctx.db)])


@router.get("/stats/products")
def product_stats(ctx: AppContext = Depends(get_context), identity: Identity = Depends(stats_viewer)):
    return envelope("Product statistics fetched successfully",
                    [serialize_doc(r) for r in stats.product_ratings(ctx.db)])


# ===================== App factory =====================
def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    if db is None:
        db = connect(settings)
    ensure_indexes(db)

    app = FastAPI(title="Storefront API", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.context = AppContext(
        settings=settings,
        db=db,
        tokens=TokenService(settings.jwt_secret, timedelta(hours=settings.token_ttl_hours)),
        passwords=PasswordHasher(settings.bcrypt_rounds),
        orders=OrderService(db),
    )
    install_error_handlers(app)
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn
    settings = load_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
