import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import socketio
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

import database
from accounts import AccountService
from analytics import SellerAnalytics
from auth import current_user, get_db, optional_user
from cart import CartService
from errors import MarketplaceError
from favorites import FavoritesService
from listings import ListingCatalog
from mailer import SMTPMailer
from media import CloudinaryMedia
from moderation import ListingModeration
from notifications import NullNotifier, SocketIONotifier, create_socket_server
from orders import OrderService
from schemas import (
    ApproveListingRequest, BatchApproveRequest, CartAddRequest, CartUpdateRequest,
    FavoriteToggleRequest, ForgotPasswordRequest, ListingCreate, ListingUpdate,
    LoginRequest, MergeCartRequest, OrderStatusUpdate, PlaceOrderRequest,
    ProfileUpdate, RegisterRequest, RejectListingRequest, ResetPasswordRequest,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
ALLOWED_ORIGINS = list(dict.fromkeys([FRONTEND_URL, "http://localhost:3000"]))

router = APIRouter()


# ---------- Service lookups ----------
def accounts(request: Request, _db=Depends(get_db)) -> AccountService:
    return request.app.state.accounts


def catalog(request: Request, _db=Depends(get_db)) -> ListingCatalog:
    return request.app.state.catalog


def moderation(request: Request, _db=Depends(get_db)) -> ListingModeration:
    return request.app.state.moderation


def carts(request: Request, _db=Depends(get_db)) -> CartService:
    return request.app.state.carts


def orders(request: Request, _db=Depends(get_db)) -> OrderService:
    return request.app.state.orders


def analytics(request: Request, _db=Depends(get_db)) -> SellerAnalytics:
    return request.app.state.analytics


def favorites(request: Request, _db=Depends(get_db)) -> FavoritesService:
    return request.app.state.favorites


# ---------- Public routes ----------
@router.get("/")
def health():
    return {"status": "ok", "service": "swapcell-marketplace"}


@router.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, svc: AccountService = Depends(accounts)):
    return svc.register(payload)


@router.post("/auth/login")
def login(payload: LoginRequest, svc: AccountService = Depends(accounts)):
    return svc.login(payload.email, payload.password)


@router.post("/auth/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, svc: AccountService = Depends(accounts)):
    svc.request_password_reset(payload.email)
    return {"message": "Verification code sent to your email"}


@router.post("/auth/reset-password")
def reset_password(payload: ResetPasswordRequest, svc: AccountService = Depends(accounts)):
    svc.reset_password(payload.email, payload.code, payload.new_password)
    return {"message": "Password reset successfully"}


@router.get("/phones")
def browse_phones(
    brand: Optional[str] = None,
    condition: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    search: Optional[str] = None,
    sort: Optional[str] = Query(None, description="price_asc|price_desc|newest"),
    svc: ListingCatalog = Depends(catalog),
):
    return svc.browse(brand, condition, min_price, max_price, search, sort)


@router.get("/phones/{phone_id}")
def get_phone(phone_id: str, viewer=Depends(optional_user), svc: ListingCatalog = Depends(catalog)):
    return svc.get(phone_id, viewer)


@router.get("/search/suggestions")
def search_suggestions(query: Optional[str] = None, svc: ListingCatalog = Depends(catalog)):
    return {"suggestions": svc.suggestions(query)}


# ---------- Profile ----------
@router.get("/me")
def me(user=Depends(current_user), svc: AccountService = Depends(accounts)):
    return svc.profile(user)


@router.patch("/me")
def update_me(data: ProfileUpdate, user=Depends(current_user), svc: AccountService = Depends(accounts)):
    return svc.update_profile(user, data)


@router.get("/me/listings")
def my_listings(user=Depends(current_user), svc: ListingCatalog = Depends(catalog)):
    return svc.mine(user)


# ---------- Listings ----------
@router.post("/phones", status_code=201)
def create_phone(data: ListingCreate, user=Depends(current_user), svc: ListingCatalog = Depends(catalog)):
    return svc.create(user, data)


@router.patch("/phones/{phone_id}")
def update_phone(phone_id: str, data: ListingUpdate, user=Depends(current_user), svc: ListingCatalog = Depends(catalog)):
    return svc.update(user, phone_id, data)


@router.delete("/phones/{phone_id}")
def delete_phone(phone_id: str, user=Depends(current_user), svc: ListingCatalog = Depends(catalog)):
    svc.delete(user, phone_id)
    return {"deleted": True}


# ---------- Cart ----------
@router.get("/cart")
def get_cart(user=Depends(current_user), svc: CartService = Depends(carts)):
    return svc.get(user)


@router.post("/cart/add")
def add_to_cart(data: CartAddRequest, user=Depends(current_user), svc: CartService = Depends(carts)):
    return svc.add(user, data.phone_id, data.quantity)


@router.put("/cart/update")
def update_cart(data: CartUpdateRequest, user=Depends(current_user), svc: CartService = Depends(carts)):
    return svc.update_line(user, data.phone_id, data.quantity)


@router.delete("/cart/remove/{phone_id}")
def remove_from_cart(phone_id: str, user=Depends(current_user), svc: CartService = Depends(carts)):
    return svc.remove(user, phone_id)


@router.delete("/cart/clear")
def clear_cart(user=Depends(current_user), svc: CartService = Depends(carts)):
    return svc.clear(user)


@router.post("/cart/merge")
def merge_cart(data: MergeCartRequest, user=Depends(current_user), svc: CartService = Depends(carts)):
    return svc.merge(user, data.guest_items)


# ---------- Orders ----------
@router.post("/orders", status_code=201)
def place_order(data: PlaceOrderRequest, user=Depends(current_user), svc: OrderService = Depends(orders)):
    order = svc.place(user, data)
    return {"message": "Order created successfully", "order": order}


@router.get("/orders/mine")
def my_orders(user=Depends(current_user), svc: OrderService = Depends(orders)):
    return svc.mine(user)


@router.get("/orders/sales")
def my_sales(user=Depends(current_user), svc: OrderService = Depends(orders)):
    return svc.sales(user)


@router.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(current_user), svc: OrderService = Depends(orders)):
    return svc.get(user, order_id)


@router.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, data: OrderStatusUpdate, user=Depends(current_user), svc: OrderService = Depends(orders)):
    return svc.update_status(user, order_id, data.status)


# ---------- Seller analytics ----------
@router.get("/analytics/dashboard")
def seller_dashboard(user=Depends(current_user), svc: SellerAnalytics = Depends(analytics)):
    return svc.dashboard(user)


# ---------- Favorites ----------
@router.post("/favorites/toggle")
def toggle_favorite(data: FavoriteToggleRequest, user=Depends(current_user), svc: FavoritesService = Depends(favorites)):
    return {"favorites": svc.toggle(user, data.phone_id)}


@router.get("/favorites")
def list_favorites(user=Depends(current_user), svc: FavoritesService = Depends(favorites)):
    return svc.list(user)


# ---------- Admin ----------
@router.get("/admin/dashboard/stats")
def dashboard_stats(user=Depends(current_user), svc: ListingModeration = Depends(moderation)):
    return svc.dashboard_stats(user)


@router.get("/admin/activity-log")
def activity_log(page: int = 1, limit: int = 20, user=Depends(current_user), svc: ListingModeration = Depends(moderation)):
    return svc.activity_log(user, page, limit)


@router.get("/admin/listings/pending")
def pending_listings(
    page: int = 1,
    limit: int = 10,
    sort_by: str = "created_at",
    order: str = "desc",
    user=Depends(current_user),
    svc: ListingModeration = Depends(moderation),
):
    return svc.list_pending(user, page, limit, sort_by, order)


@router.get("/admin/listings/all")
def all_listings(
    status: Optional[str] = None,
    search: Optional[str] = None,
    brand: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    sort_by: str = "created_at",
    order: str = "desc",
    user=Depends(current_user),
    svc: ListingModeration = Depends(moderation),
):
    return svc.list_all(user, status, search, brand, page, limit, sort_by, order)


@router.get("/admin/listings/{phone_id}/review")
def listing_for_review(phone_id: str, user=Depends(current_user), svc: ListingModeration = Depends(moderation)):
    return svc.for_review(user, phone_id)


@router.put("/admin/listings/batch-approve")
def batch_approve(data: BatchApproveRequest, user=Depends(current_user), svc: ListingModeration = Depends(moderation)):
    modified = svc.batch_approve(user, data.phone_ids, data.admin_notes)
    return {"message": f"{modified} listings approved successfully", "modified_count": modified}


@router.put("/admin/listings/{phone_id}/approve")
def approve_listing(phone_id: str, data: ApproveListingRequest, user=Depends(current_user), svc: ListingModeration = Depends(moderation)):
    phone = svc.approve(user, phone_id, data.admin_notes)
    return {"message": "Listing approved successfully", "phone": phone}


@router.put("/admin/listings/{phone_id}/reject")
def reject_listing(phone_id: str, data: RejectListingRequest, user=Depends(current_user), svc: ListingModeration = Depends(moderation)):
    phone = svc.reject(user, phone_id, data.reason, data.admin_notes)
    return {"message": "Listing rejected successfully", "phone": phone}


# ---------- Utilities ----------
@router.get("/test")
def test_database(request: Request):
    db = request.app.state.db
    resp = {"backend": "ok", "db": "not configured"}
    try:
        if db is not None:
            resp["db"] = "connected"
            resp["collections"] = db.list_collection_names()
    except PyMongoError as e:
        resp["db_error"] = str(e)
    return resp


async def marketplace_error(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def build_app(db=None, notifier=None, mailer=None, media=None) -> FastAPI:
    """Wire the services around ``db`` and return the FastAPI app.

    Every collaborator is passed in; the defaults drop notifications and
    send real mail only when SMTP is configured.
    """
    if notifier is None:
        notifier = NullNotifier()
    if mailer is None:
        mailer = SMTPMailer()
    if media is None:
        media = CloudinaryMedia()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.db is not None:
            try:
                database.ensure_indexes(app.state.db)
            except PyMongoError:
                logger.exception("could not create indexes")
        yield

    app = FastAPI(title="SwapCell Phone Marketplace API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db = db
    app.state.accounts = AccountService(db, mailer, media)
    app.state.catalog = ListingCatalog(db, notifier, media)
    app.state.moderation = ListingModeration(db, notifier)
    app.state.carts = CartService(db, notifier)
    app.state.orders = OrderService(db, notifier, mailer)
    app.state.favorites = FavoritesService(db)
    app.state.analytics = SellerAnalytics(db)

    app.add_exception_handler(MarketplaceError, marketplace_error)
    app.include_router(router)
    return app


sio = create_socket_server(ALLOWED_ORIGINS)
app = build_app(database.db, SocketIONotifier(sio))
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(asgi_app, host="0.0.0.0", port=port)
