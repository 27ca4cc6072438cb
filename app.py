import logging
from datetime import datetime
from functools import wraps
from typing import Any, Dict, List, Optional, Type

from flask import Flask, g, jsonify, request
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from werkzeug.exceptions import HTTPException

from core.config import Settings, configure_logging
from core.errors import FeedMeError, Forbidden, ValidationError
from core.platform import MealOrderPlatform
from models.meal import SpiceLevel
from models.order import DeliveryDetails

logger = logging.getLogger(__name__)

ROLES = ("customer", "provider", "admin")


# --- Request Schemas ---


class AddOnSchema(BaseModel):
    name: str = Field(..., min_length=1)
    # 가격은 메뉴 카탈로그 값으로 다시 계산됨
    price: Optional[float] = Field(None, ge=0)


class CustomizationSchema(BaseModel):
    spiceLevel: Optional[SpiceLevel] = None
    removedIngredients: Optional[List[str]] = None
    addOns: Optional[List[AddOnSchema]] = None
    specialInstructions: Optional[str] = None


class CartItemRequest(BaseModel):
    mealId: str = Field(..., min_length=1)
    # 수량 검증은 도메인에서 InvalidQuantity로 처리
    quantity: int = 1
    customization: Optional[CustomizationSchema] = None
    deliveryDate: str = ""
    deliverySlot: str = ""
    customerEmail: Optional[str] = None
    deliveryAddress: Optional[str] = None


class CartItemUpdateRequest(BaseModel):
    quantity: Optional[int] = None
    customization: Optional[CustomizationSchema] = None


class DeliverySchema(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+$")
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    zipCode: str = Field(..., min_length=1)
    deliveryDate: str = ""
    deliverySlot: str = ""

    def to_details(self) -> DeliveryDetails:
        return DeliveryDetails(
            name=self.name,
            email=self.email,
            phone=self.phone,
            address=self.address,
            city=self.city,
            zip_code=self.zipCode,
            delivery_date=self.deliveryDate,
            delivery_slot=self.deliverySlot
        )


class OrderMealSchema(BaseModel):
    mealId: str = Field(..., min_length=1)
    quantity: int = 1
    customization: Optional[CustomizationSchema] = None


class CreateOrderRequest(DeliverySchema):
    meals: List[OrderMealSchema] = Field(..., min_length=1)


class TrackingUpdateRequest(BaseModel):
    stage: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    estimatedDeliveryDate: Optional[datetime] = None


class AssignTrackingRequest(BaseModel):
    trackingNumber: str = Field(..., min_length=1)


class EstimatedDeliveryRequest(BaseModel):
    estimatedDeliveryDate: datetime


# --- Helpers ---


def parse_body(schema: Type[BaseModel]) -> Any:
    """Validate the JSON body, turning pydantic errors into a field-level ValidationError"""
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError.for_field("body", "Request body must be a JSON object")
    try:
        return schema.model_validate(data)
    except PydanticValidationError as error:
        errors = [
            {"field": ".".join(str(part) for part in detail["loc"]), "message": detail["msg"]}
            for detail in error.errors()
        ]
        raise ValidationError("Invalid request", errors)


def customization_dict(customization: Optional[CustomizationSchema]) -> Optional[Dict[str, Any]]:
    if customization is None:
        return None
    return customization.model_dump(mode="json", exclude_unset=True)


def respond(result: Dict[str, Any], status: int = 200):
    # 서비스 응답을 {success, message, data} 형식으로 변환
    result = dict(result)
    success = result.pop("success", True)
    message = result.pop("message", "")
    return jsonify({"success": success, "message": message, "data": result}), status


def require_user(*roles: str):
    """Read the principal set by the upstream auth proxy and check its role"""
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            user_id = request.headers.get("X-User-Id")
            role = request.headers.get("X-User-Role", "customer")
            if not user_id:
                raise Forbidden("You are not authorized")
            if role not in ROLES or (roles and role not in roles):
                raise Forbidden("You are not authorized")
            g.user_id = user_id
            g.role = role
            return view(*args, **kwargs)
        return wrapper
    return decorator


def client_ip() -> str:
    return request.remote_addr or "0.0.0.0"


def create_app(platform: Optional[MealOrderPlatform] = None) -> Flask:
    platform = platform or MealOrderPlatform()
    carts = platform.cart_service
    orders = platform.order_service

    app = Flask(__name__)
    app.secret_key = platform.settings.secret_key

    @app.errorhandler(FeedMeError)
    def handle_feedme_error(error: FeedMeError):
        if error.status_code >= 500:
            logger.warning("%s: %s", error.error_code, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"success": False, "error": error.description,
                            "error_code": error.name.upper().replace(" ", "_")}), error.code
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"success": False, "error": "Internal server error",
                        "error_code": FeedMeError.error_code}), 500

    # === 장바구니 ===
    @app.route('/cart', methods=['GET'])
    @require_user("customer")
    def get_cart():
        """Current cart with freshly computed totals"""
        return respond(carts.get_cart_details(g.user_id))

    @app.route('/cart', methods=['POST'])
    @require_user("customer")
    def add_to_cart():
        body = parse_body(CartItemRequest)
        result = carts.add_to_cart(
            g.user_id,
            body.mealId,
            quantity=body.quantity,
            customization=customization_dict(body.customization),
            delivery_date=body.deliveryDate,
            delivery_slot=body.deliverySlot,
            customer_email=body.customerEmail,
            delivery_address=body.deliveryAddress
        )
        return respond(result)

    @app.route('/cart/item/<meal_id>', methods=['PATCH'])
    @require_user("customer")
    def update_cart_item(meal_id):
        body = parse_body(CartItemUpdateRequest)
        if body.quantity is None and body.customization is None:
            raise ValidationError.for_field("quantity", "Nothing to update")
        result = carts.update_item(g.user_id, meal_id, quantity=body.quantity,
                                   customization=customization_dict(body.customization))
        return respond(result)

    @app.route('/cart/item/<meal_id>', methods=['DELETE'])
    @require_user("customer")
    def remove_cart_item(meal_id):
        return respond(carts.remove_item(g.user_id, meal_id))

    @app.route('/cart', methods=['DELETE'])
    @require_user("customer")
    def clear_cart():
        return respond(carts.clear(g.user_id))

    # === 주문 생성 / 결제 ===
    @app.route('/orders/from-cart', methods=['POST'])
    @require_user("customer")
    def create_order_from_cart():
        """Turn the cart into an order and start the gateway checkout"""
        body = parse_body(DeliverySchema)
        result = orders.create_from_cart(
            g.user_id,
            body.to_details(),
            client_ip=client_ip(),
            idempotency_key=request.headers.get("Idempotency-Key")
        )
        return respond(result, 200 if result.get("replayed") else 201)

    @app.route('/orders', methods=['POST'])
    @require_user("customer")
    def create_order():
        body = parse_body(CreateOrderRequest)
        meals = [
            {"mealId": meal.mealId, "quantity": meal.quantity,
             "customization": customization_dict(meal.customization)}
            for meal in body.meals
        ]
        result = orders.create_order(
            g.user_id,
            meals,
            body.to_details(),
            client_ip=client_ip(),
            idempotency_key=request.headers.get("Idempotency-Key")
        )
        return respond(result, 200 if result.get("replayed") else 201)

    @app.route('/orders/<order_id>/payment', methods=['POST'])
    @require_user("customer")
    def retry_payment(order_id):
        order = orders.get_order(order_id)
        if order.customer_id != g.user_id:
            raise Forbidden("You can only pay for your own orders")
        return respond(orders.retry_payment(order_id, client_ip()))

    @app.route('/orders/verify', methods=['GET'])
    @require_user()
    def verify_payment():
        """Called after the gateway redirects the customer back"""
        return respond(orders.verify_payment(request.args.get("order_id", "")))

    # === 배송 추적 ===
    @app.route('/orders/<order_id>/tracking', methods=['PATCH'])
    @require_user("provider", "admin")
    def update_tracking(order_id):
        body = parse_body(TrackingUpdateRequest)
        result = orders.update_tracking(order_id, body.stage, body.message,
                                        body.estimatedDeliveryDate)
        return respond(result)

    @app.route('/orders/tracking/<tracking_number>', methods=['GET'])
    def track_order(tracking_number):
        """Public tracking lookup, no login needed"""
        return respond(orders.track_order(tracking_number))

    @app.route('/orders/<order_id>/assign-tracking', methods=['PATCH'])
    @require_user("provider", "admin")
    def assign_tracking_number(order_id):
        body = parse_body(AssignTrackingRequest)
        return respond(orders.assign_tracking_number(order_id, body.trackingNumber))

    @app.route('/orders/<order_id>/estimated-delivery', methods=['PATCH'])
    @require_user("provider", "admin")
    def set_estimated_delivery(order_id):
        body = parse_body(EstimatedDeliveryRequest)
        return respond(orders.set_estimated_delivery(order_id, body.estimatedDeliveryDate))

    # === 주문 조회 ===
    @app.route('/orders/my-orders', methods=['GET'])
    @require_user("customer")
    def my_orders():
        return respond(orders.get_customer_orders(g.user_id))

    @app.route('/orders/provider/orders', methods=['GET'])
    @require_user("provider")
    def provider_orders():
        return respond(orders.get_provider_orders(g.user_id))

    @app.route('/orders/provider/<provider_id>/orders', methods=['GET'])
    @require_user("provider", "admin")
    def orders_for_provider(provider_id):
        if g.role == "provider" and provider_id != g.user_id:
            raise Forbidden("Providers can only see their own orders")
        return respond(orders.get_provider_orders(provider_id))

    @app.route('/orders', methods=['GET'])
    @require_user("admin")
    def all_orders():
        return respond(orders.list_orders())

    @app.route('/orders/revenue', methods=['GET'])
    @require_user("admin")
    def revenue():
        return respond(orders.calculate_revenue())

    @app.route('/orders/<order_id>', methods=['GET'])
    @require_user()
    def order_details(order_id):
        order = orders.get_order(order_id)
        if g.role == "customer" and order.customer_id != g.user_id:
            raise Forbidden("You can only see your own orders")
        return respond(orders.get_order_details(order_id))

    @app.route('/orders/<order_id>', methods=['DELETE'])
    @require_user("admin")
    def delete_order(order_id):
        return respond(orders.delete_order(order_id))

    @app.route('/health')
    def health():
        """Health check endpoint"""
        return jsonify({'status': 'ok', 'message': 'FeedMe Orders is running!'})

    return app


if __name__ == '__main__':
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    print("=== FeedMe Orders Server ===")
    print(f"Starting server on http://localhost:{settings.port}")
    print("Press Ctrl+C to stop")

    platform = MealOrderPlatform(settings)
    try:
        create_app(platform).run(
            host='0.0.0.0',
            port=settings.port,
            debug=settings.debug
        )
    finally:
        platform.close()
