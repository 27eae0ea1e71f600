import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

from addresses import AddressBook
from auth import AuthService
from catalog import CatalogService
from config import Settings, configure_logging, load_settings
from database import connect, ensure_indexes
from errors import AuthError, AuthorizationError, MarketplaceError, ValidationError
from orders import OrderService
from schemas import (
    AddressPayload,
    AddressUpdatePayload,
    LoginPayload,
    OrderPayload,
    OrderStatus,
    OrderUpdatePayload,
    PaymentStatus,
    ProductPayload,
    ProductUpdatePayload,
    RegisterPayload,
    ReturnPayload,
    ReviewPayload,
    UserUpdatePayload,
)
from users import UserService

logger = logging.getLogger(__name__)


class Services:
    def __init__(self, db: Database, settings: Settings):
        self.db = db
        self.users = UserService(db)
        self.auth = AuthService(db, settings)
        self.catalog = CatalogService(db)
        self.orders = OrderService(db, self.catalog)
        self.addresses = AddressBook(db)


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user_id(
    services: Services = Depends(get_services),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> str:
    if not authorization:
        raise AuthError("No token provided")
    if not authorization.startswith("Bearer "):
        raise AuthError("Invalid token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        return services.auth.verify_token(token)
    except AuthError:
        raise AuthError("Invalid token") from None


def _fields(payload) -> dict:
    return payload.model_dump(mode="json", exclude_unset=True)


def _same_user(user_id: str, requester_id: str, what: str):
    if user_id != requester_id:
        raise AuthorizationError(f"You can only view your own {what}")


def create_app(settings: Settings, db: Optional[Database] = None) -> FastAPI:
    configure_logging(settings.log_level)
    if db is None:
        db = connect(settings)
    ensure_indexes(db)

    app = FastAPI(title="Marketplace API")
    app.state.services = Services(db, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MarketplaceError)
    def marketplace_error(request: Request, exc: MarketplaceError):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message, "error": exc.kind})

    @app.exception_handler(RequestValidationError)
    def request_validation_error(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {"loc": (), "msg": "Invalid request"}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first['msg']}" if location else first["msg"]
        return JSONResponse(status_code=400, content={"message": message, "error": "ValidationError"})

    @app.exception_handler(Exception)
    def unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"message": "Internal server error"})

    register_routes(app)
    return app


def register_routes(app: FastAPI):

    @app.get("/")
    def read_root():
        return {"message": "Marketplace backend running"}

    @app.get("/test")
    def test_database(services: Services = Depends(get_services)):
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_name": None,
            "collections": [],
        }
        try:
            response["database_name"] = services.db.name
            response["collections"] = services.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            logger.warning("Database check failed: %s", e)
            response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
        return response

    # Users
    @app.post("/users/create", status_code=201)
    @app.post("/users/register", status_code=201)
    def register(payload: RegisterPayload, services: Services = Depends(get_services)):
        profile = payload.model_dump(mode="json", exclude={"password"})
        user = services.auth.register(profile, payload.password)
        return {"message": "User created successfully", "user": user}

    @app.post("/users/login")
    def login(payload: LoginPayload, services: Services = Depends(get_services)):
        result = services.auth.login(payload.email, payload.password)
        return {"message": "Login successful", "token": result["token"], "user": result["user"]}

    @app.get("/users/me")
    def me(user_id: str = Depends(current_user_id), services: Services = Depends(get_services)):
        return services.users.get_user(user_id)

    @app.get("/users/{user_id}")
    def get_user(user_id: str, _: str = Depends(current_user_id), services: Services = Depends(get_services)):
        return services.users.get_user(user_id)

    @app.put("/users/{user_id}")
    def update_user(user_id: str, payload: UserUpdatePayload,
                    requester_id: str = Depends(current_user_id), services: Services = Depends(get_services)):
        user = services.users.update_user(user_id, requester_id, _fields(payload))
        return {"message": "User updated successfully", "user": user}

    @app.delete("/users/{user_id}")
    def delete_user(user_id: str, requester_id: str = Depends(current_user_id),
                    services: Services = Depends(get_services)):
        services.users.delete_user(user_id, requester_id)
        return {"message": "User deleted successfully"}

    # Products
    @app.get("/products")
    def list_products(search: Optional[str] = None, category: Optional[str] = None,
                      services: Services = Depends(get_services)):
        return services.catalog.list_products(search=search, category=category)

    @app.post("/products", status_code=201)
    def create_product(payload: ProductPayload, user_id: str = Depends(current_user_id),
                       services: Services = Depends(get_services)):
        product = services.catalog.create_product(user_id, payload.model_dump(mode="json"))
        return {"message": "Product created successfully", "product": product}

    @app.get("/products/user/{user_id}")
    def list_user_products(user_id: str, services: Services = Depends(get_services)):
        return services.catalog.list_user_products(user_id)

    @app.get("/products/{product_id}")
    def get_product(product_id: str, services: Services = Depends(get_services)):
        return services.catalog.get_product(product_id)

    @app.put("/products/{product_id}")
    def update_product(product_id: str, payload: ProductUpdatePayload,
                       user_id: str = Depends(current_user_id), services: Services = Depends(get_services)):
        product = services.catalog.update_product(product_id, user_id, _fields(payload))
        return {"message": "Product updated successfully", "product": product}

    @app.delete("/products/{product_id}")
    def delete_product(product_id: str, user_id: str = Depends(current_user_id),
                       services: Services = Depends(get_services)):
        services.catalog.delete_product(product_id, user_id)
        return {"message": "Product deleted successfully"}

    @app.post("/products/{product_id}/reviews", status_code=201)
    def add_review(product_id: str, payload: ReviewPayload, user_id: str = Depends(current_user_id),
                   services: Services = Depends(get_services)):
        product = services.catalog.add_review(product_id, user_id, payload.comment, payload.rating)
        return {"message": "Review added successfully", "product": product}

    # Addresses
    @app.post("/addresses", status_code=201)
    def create_address(payload: AddressPayload, user_id: str = Depends(current_user_id),
                       services: Services = Depends(get_services)):
        address = services.addresses.create_address(user_id, payload.model_dump(mode="json"))
        return {"message": "Address created successfully", "address": address}

    @app.get("/addresses/{user_id}")
    def list_addresses(user_id: str, requester_id: str = Depends(current_user_id),
                       services: Services = Depends(get_services)):
        _same_user(user_id, requester_id, "addresses")
        return services.addresses.list_addresses(user_id)

    @app.put("/addresses/{address_id}")
    def update_address(address_id: str, payload: AddressUpdatePayload,
                       user_id: str = Depends(current_user_id), services: Services = Depends(get_services)):
        address = services.addresses.update_address(address_id, _fields(payload), requester_id=user_id)
        return {"message": "Address updated successfully", "address": address}

    @app.delete("/addresses/{address_id}")
    def delete_address(address_id: str, user_id: str = Depends(current_user_id),
                       services: Services = Depends(get_services)):
        services.addresses.delete_address(address_id, requester_id=user_id)
        return {"message": "Address deleted successfully"}

    # Orders
    @app.post("/orders", status_code=201)
    def create_order(payload: OrderPayload, user_id: str = Depends(current_user_id),
                     services: Services = Depends(get_services)):
        if payload.buyer_id and payload.buyer_id != user_id:
            raise AuthorizationError("Orders can only be placed for yourself")
        items = [item.model_dump() for item in payload.items]
        order = services.orders.create_order(payload.buyer_id, payload.seller_id, items,
                                             payload.shipping_address_id)
        return {"message": "Order created successfully", "order": order}

    @app.get("/orders/detail/{order_id}")
    def get_order(order_id: str, user_id: str = Depends(current_user_id),
                  services: Services = Depends(get_services)):
        return services.orders.get_order(order_id, user_id)

    @app.get("/orders/{user_id}")
    def list_orders(user_id: str, role: str = "buyer", requester_id: str = Depends(current_user_id),
                    services: Services = Depends(get_services)):
        _same_user(user_id, requester_id, "orders")
        if role == "seller":
            return services.orders.get_seller_orders(user_id)
        return services.orders.get_user_orders(user_id)

    @app.put("/orders/{order_id}")
    def update_order(order_id: str, payload: OrderUpdatePayload, user_id: str = Depends(current_user_id),
                     services: Services = Depends(get_services)):
        orders = services.orders
        order = None
        if payload.payment_status is not None:
            if payload.payment_status != PaymentStatus.PAID.value:
                raise ValidationError("paymentStatus can only be set to PAID")
            order = orders.pay_order(order_id, user_id)
        if payload.status is not None:
            current = orders.get_order(order_id, user_id)
            if user_id == current["seller_id"]:
                order = orders.update_order_status(order_id, user_id, payload.status)
            elif payload.status == OrderStatus.COMPLETED.value:
                order = orders.complete_order(order_id, user_id)
            elif payload.status == OrderStatus.RETURNED.value:
                order = orders.return_order(order_id, user_id, payload.return_reason)
            elif payload.status == OrderStatus.CANCELED.value:
                order = orders.cancel_order(order_id, user_id)
            else:
                raise AuthorizationError("Unauthorized: Only the seller can update the order status")
        if order is None:
            raise ValidationError("Nothing to update: provide status or paymentStatus")
        return {"message": "Order updated successfully", "order": order}

    @app.post("/orders/{order_id}/pay")
    def pay_order(order_id: str, user_id: str = Depends(current_user_id),
                  services: Services = Depends(get_services)):
        return {"message": "Order paid", "order": services.orders.pay_order(order_id, user_id)}

    @app.post("/orders/{order_id}/complete")
    def complete_order(order_id: str, user_id: str = Depends(current_user_id),
                       services: Services = Depends(get_services)):
        return {"message": "Order completed", "order": services.orders.complete_order(order_id, user_id)}

    @app.post("/orders/{order_id}/return")
    def return_order(order_id: str, payload: ReturnPayload, user_id: str = Depends(current_user_id),
                     services: Services = Depends(get_services)):
        order = services.orders.return_order(order_id, user_id, payload.reason)
        return {"message": "Order returned", "order": order}

    @app.post("/orders/{order_id}/cancel")
    def cancel_order(order_id: str, user_id: str = Depends(current_user_id),
                     services: Services = Depends(get_services)):
        return {"message": "Order canceled", "order": services.orders.cancel_order(order_id, user_id)}

    @app.delete("/orders/{order_id}")
    def delete_order(order_id: str, user_id: str = Depends(current_user_id),
                     services: Services = Depends(get_services)):
        services.orders.delete_order(order_id, user_id)
        return {"message": "Order deleted successfully"}


def __getattr__(name):
    # `uvicorn main:app` builds the app on first access, so importing this module needs no environment
    if name == "app":
        application = create_app(load_settings())
        globals()["app"] = application
        return application
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


if __name__ == "__main__":
    import os

    import uvicorn

    app = create_app(load_settings())
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
