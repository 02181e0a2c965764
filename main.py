import logging
import os
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth import Identity, get_identity, require_admin
from carts import CartService
from checkout import CheckoutOrchestrator
from config import Settings
from coupons import CouponService, CouponValidator
from database import DocumentStore, MongoStore, UnavailableStore, utcnow
from errors import CommerceError, InvalidTransition
from favorites import FavoriteService
from inventory import InventoryLedger
from memstore import MemoryStore
from notifications import SmsNotifier
from orders import OrderQueries, OrderStateMachine
from payments import PaymentVerifier, RazorpayGateway, to_minor_units
from products import ProductService
from schemas import (
    AdminOrderList,
    AdminStats,
    CartItem,
    CartItemIn,
    CartQuantityUpdate,
    CheckoutRequest,
    Coupon,
    CouponIn,
    CouponQuote,
    CouponUpdate,
    Favorite,
    FavoriteIn,
    Order,
    OrderStatus,
    OrderStatusUpdate,
    PaymentIntent,
    PaymentIntentRequest,
    PaymentVerification,
    Product,
    ProductIn,
    ProductUpdate,
)
from stats import get_admin_stats

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: DocumentStore
    products: ProductService
    carts: CartService
    favorites: FavoriteService
    coupons: CouponService
    checkout: CheckoutOrchestrator
    orders: OrderStateMachine
    queries: OrderQueries
    gateway: RazorpayGateway
    notifier: SmsNotifier
    clock: Callable[[], datetime]


def build_store(settings: Settings) -> DocumentStore:
    if settings.database_url:
        store = MongoStore.from_url(settings.database_url, settings.database_name)
        store.ensure_indexes()
        return store
    if settings.use_memory_store:
        logger.warning("USE_MEMORY_STORE set - using the in-memory store, data is lost on restart")
        return MemoryStore()
    logger.warning("DATABASE_URL not set - database endpoints will answer 503")
    return UnavailableStore()


def build_services(
    settings: Settings,
    store: Optional[DocumentStore] = None,
    gateway: Optional[RazorpayGateway] = None,
    notifier: Optional[SmsNotifier] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    store = store or build_store(settings)
    ledger = InventoryLedger()
    validator = CouponValidator(clock=clock)
    verifier = PaymentVerifier(settings.razorpay_key_secret)
    return Services(
        settings=settings,
        store=store,
        products=ProductService(store),
        carts=CartService(store),
        favorites=FavoriteService(store),
        coupons=CouponService(store, validator),
        checkout=CheckoutOrchestrator(store, ledger, validator, settings.shipping_fee, clock=clock),
        orders=OrderStateMachine(store, ledger, validator, verifier, clock=clock),
        queries=OrderQueries(store),
        gateway=gateway or RazorpayGateway(settings.razorpay_key_id, settings.razorpay_key_secret),
        notifier=notifier
        or SmsNotifier(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_phone_number,
            admin_phone=settings.admin_phone,
        ),
        clock=clock,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def create_app(settings: Optional[Settings] = None, **overrides) -> FastAPI:
    settings = settings or Settings.from_env()
    app = FastAPI(title="Jewellery Storefront API")
    app.state.services = build_services(settings, **overrides)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CommerceError)
    async def commerce_error_handler(request: Request, exc: CommerceError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    # ----- Health -----
    @app.get("/")
    def read_root():
        return {"message": "Jewellery Storefront API running"}

    @app.get("/test")
    def test_database(services: Services = Depends(get_services)):
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_url": None,
            "database_name": None,
            "connection_status": "Not Connected",
            "collections": [],
        }
        if services.store.available:
            try:
                response["database"] = f"✅ Available ({services.store.name})"
                response["connection_status"] = "Connected"
                response["collections"] = services.store.collection_names()[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
        response["database_url"] = "✅ Set" if services.settings.database_url else "❌ Not Set"
        response["database_name"] = services.settings.database_name
        response["payment_gateway"] = "✅ Configured" if services.gateway.configured else "❌ Not Configured"
        response["sms"] = "✅ Configured" if services.settings.sms_configured else "❌ Not Configured"
        return response

    # ----- Products -----
    @app.get("/api/products", response_model=List[Product])
    def list_products(category: Optional[str] = None, services: Services = Depends(get_services)):
        return services.products.list_products(category)

    @app.get("/api/products/{product_id}", response_model=Product)
    def get_product(product_id: str, services: Services = Depends(get_services)):
        return services.products.get(product_id)

    @app.post("/api/products", response_model=Product, status_code=201)
    def create_product(
        product: ProductIn,
        admin: Identity = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        return services.products.create(product)

    @app.patch("/api/products/{product_id}", response_model=Product)
    def update_product(
        product_id: str,
        payload: ProductUpdate,
        admin: Identity = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        return services.products.update(product_id, payload)

    @app.delete("/api/products/{product_id}")
    def delete_product(
        product_id: str,
        admin: Identity = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        services.products.delete(product_id)
        return {"deleted": True}

    # ----- Cart -----
    @app.get("/api/cart", response_model=List[CartItem])
    def get_cart(identity: Identity = Depends(get_identity), services: Services = Depends(get_services)):
        return services.carts.list_items(identity.user_id)

    @app.post("/api/cart", response_model=CartItem)
    def add_to_cart(
        item: CartItemIn,
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        return services.carts.add_item(identity.user_id, item)

    @app.put("/api/cart", response_model=CartItem)
    def update_cart_item(
        item: CartQuantityUpdate,
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        return services.carts.set_quantity(identity.user_id, item)

    @app.delete("/api/cart")
    def remove_from_cart(
        product_id: str = Query(..., alias="productId"),
        custom_size: Optional[str] = Query(None, alias="customSize"),
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        services.carts.remove_item(identity.user_id, product_id, custom_size)
        return {"removed": True}

    @app.post("/api/cart/validate-stock")
    def validate_cart_stock(identity: Identity = Depends(get_identity), services: Services = Depends(get_services)):
        issues = services.carts.stock_issues(identity.user_id)
        if issues:
            return JSONResponse(
                status_code=409,
                content={
                    "error": "insufficient_stock",
                    "detail": "Insufficient stock",
                    "stockIssues": jsonable_encoder([i.model_dump(by_alias=True) for i in issues]),
                },
            )
        return {"success": True, "message": "All items in stock"}

    # ----- Favourites -----
    @app.get("/api/favorites", response_model=List[Favorite])
    def list_favorites(identity: Identity = Depends(get_identity), services: Services = Depends(get_services)):
        return services.favorites.list_favorites(identity.user_id)

    @app.post("/api/favorites", response_model=Favorite)
    def add_favorite(
        payload: FavoriteIn,
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        return services.favorites.add(identity.user_id, payload.product_id)

    @app.delete("/api/favorites")
    def remove_favorite(
        product_id: str = Query(..., alias="productId"),
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        return {"removed": services.favorites.remove(identity.user_id, product_id)}

    # ----- Coupons -----
    @app.get("/api/coupons/validate", response_model=CouponQuote)
    def validate_coupon(
        code: str,
        amount: Decimal = Query(..., ge=0),
        services: Services = Depends(get_services),
    ):
        return services.coupons.quote(code, amount)

    @app.get("/api/admin/coupons", response_model=List[Coupon])
    def list_coupons(admin: Identity = Depends(require_admin), services: Services = Depends(get_services)):
        return services.coupons.list_coupons()

    @app.post("/api/admin/coupons", response_model=Coupon, status_code=201)
    def create_coupon(
        payload: CouponIn,
        admin: Identity = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        return services.coupons.create(payload)

    @app.patch("/api/admin/coupons/{coupon_id}", response_model=Coupon)
    def update_coupon(
        coupon_id: str,
        payload: CouponUpdate,
        admin: Identity = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        return services.coupons.update(coupon_id, payload)

    @app.delete("/api/admin/coupons/{coupon_id}")
    def delete_coupon(
        coupon_id: str,
        admin: Identity = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        services.coupons.delete(coupon_id)
        return {"deleted": True}

    # ----- Checkout / Orders -----
    @app.post("/api/orders", response_model=Order, status_code=201)
    def create_order(
        req: CheckoutRequest,
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        return services.checkout.create_order(identity.user_id, req.shipping_info, req.coupon_code)

    @app.get("/api/orders", response_model=List[Order])
    def list_my_orders(identity: Identity = Depends(get_identity), services: Services = Depends(get_services)):
        return services.queries.list_for_user(identity.user_id)

    @app.get("/api/orders/{order_id}", response_model=Order)
    def get_order(order_id: str, identity: Identity = Depends(get_identity), services: Services = Depends(get_services)):
        return services.queries.get(order_id, None if identity.is_admin else identity.user_id)

    @app.delete("/api/orders/{order_id}", response_model=Order)
    def cancel_order(order_id: str, identity: Identity = Depends(get_identity), services: Services = Depends(get_services)):
        return services.orders.cancel(order_id, user_id=identity.user_id)

    # ----- Payments -----
    @app.post("/api/razorpay/order", response_model=PaymentIntent)
    def create_payment_order(
        req: PaymentIntentRequest,
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        order = services.queries.get(req.order_id, identity.user_id)
        if order.status != OrderStatus.PENDING:
            raise InvalidTransition(order.status, OrderStatus.COMPLETED)
        # an order gets one gateway order; reopening checkout reuses it
        if not order.payment_details.gateway_order_id:
            # the amount always comes from the stored order, never from the client
            gateway_order = services.gateway.create_payment_intent(
                order.total_amount, services.settings.currency, receipt=f"order_{order.id}"
            )
            order = services.orders.record_gateway_order(order.id, gateway_order["id"], identity.user_id)
        return PaymentIntent(
            order_id=order.id,
            gateway_order_id=order.payment_details.gateway_order_id,
            amount=to_minor_units(order.total_amount),
            currency=services.settings.currency.upper(),
            key_id=services.settings.razorpay_key_id,
        )

    @app.post("/api/razorpay/verify-payment", response_model=Order)
    def verify_payment(
        payload: PaymentVerification,
        background_tasks: BackgroundTasks,
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        return services.orders.confirm_payment(
            payload.order_id,
            payload.razorpay_order_id,
            payload.razorpay_payment_id,
            payload.razorpay_signature,
            user_id=identity.user_id,
            on_completed=lambda order: background_tasks.add_task(services.notifier.order_completed, order),
        )

    # ----- Admin -----
    @app.get("/api/admin/orders", response_model=AdminOrderList)
    def admin_list_orders(
        status: Optional[str] = None,
        limit: int = Query(100, ge=1, le=500),
        offset: int = Query(0, ge=0),
        admin: Identity = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        return services.queries.admin_list(status, limit=limit, offset=offset)

    @app.patch("/api/admin/orders/{order_id}", response_model=Order)
    def admin_update_order(
        order_id: str,
        payload: OrderStatusUpdate,
        background_tasks: BackgroundTasks,
        admin: Identity = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        before = services.queries.get(order_id)
        order = services.orders.apply_admin_update(order_id, payload)
        if order.status == OrderStatus.SHIPPED and before.status != OrderStatus.SHIPPED:
            background_tasks.add_task(services.notifier.order_shipped, order)
        return order

    @app.get("/api/admin/stats", response_model=AdminStats)
    def admin_stats(admin: Identity = Depends(require_admin), services: Services = Depends(get_services)):
        return get_admin_stats(services.store, services.clock())


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = app.state.services.settings
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    port = int(os.getenv("PORT", settings.port))
    uvicorn.run(app, host="0.0.0.0", port=port)
