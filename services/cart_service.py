"""
Cart service - handles cart operations
"""
import logging
from typing import Dict, Any, Optional

from core.errors import InvalidQuantity, ItemNotFound, NotFoundError, ValidationError
from models.cart import Cart, Customization, LineItem
from database.repository import CartRepository, MealRepository
from .pricing import PricingEngine, price_add_ons

logger = logging.getLogger(__name__)


class CartService:
    # 장바구니 관련 비즈니스 로직을 처리하는 서비스 클래스
    # 고객 인증은 호출하는 쪽의 책임 (여기서는 customer_id를 그대로 신뢰)

    def __init__(self, cart_repository: CartRepository, meal_repository: MealRepository,
                 pricing_engine: PricingEngine):
        # CartRepository, MealRepository, PricingEngine 인스턴스 주입
        self.cart_repo = cart_repository
        self.meal_repo = meal_repository
        self.pricing = pricing_engine

    def get_cart(self, customer_id: str) -> Cart:
        # 장바구니가 없으면 빈 장바구니와 동일하게 취급
        return self.cart_repo.get_cart(customer_id) or Cart(customer_id=customer_id)

    def get_cart_details(self, customer_id: str) -> Dict[str, Any]:
        # 장바구니 내용과 총액 조회 (총액은 매번 다시 계산)
        cart = self.get_cart(customer_id)
        message = (f"Your cart has {len(cart.items)} item(s)." if cart.items
                   else "Your cart is empty.")
        return self._cart_response(cart, message)

    def add_to_cart(self, customer_id: str, meal_id: str, quantity: int = 1,
                    customization: Optional[Dict[str, Any]] = None,
                    delivery_date: str = "", delivery_slot: str = "",
                    customer_email: Optional[str] = None,
                    delivery_address: Optional[str] = None) -> Dict[str, Any]:
        # 메뉴 카탈로그에서 메뉴 정보를 확인한 뒤 장바구니에 추가
        meal = self.meal_repo.get_meal_by_id(meal_id)
        if not meal:
            raise NotFoundError(f"Meal not found: {meal_id}")
        if not meal.is_available:
            raise ValidationError.for_field("mealId", f"{meal.name} is not available right now")

        item = LineItem(
            meal_id=meal.meal_id,
            meal_name=meal.name,
            provider_id=meal.provider_id,
            provider_name=meal.provider_name,
            unit_price=meal.price,
            quantity=quantity,
            customization=price_add_ons(meal, Customization.from_dict(customization)),
            delivery_date=delivery_date,
            delivery_slot=delivery_slot
        )
        return self.add_item(customer_id, item, customer_email, delivery_address)

    def add_item(self, customer_id: str, item: LineItem,
                 customer_email: Optional[str] = None,
                 delivery_address: Optional[str] = None) -> Dict[str, Any]:
        """Add a line item, merging with an existing line for the same meal.

        When the meal is already in the cart the quantities are summed. The
        customization of the new add replaces the stored one if it carries
        any customization at all; an uncustomized add keeps the stored one.
        Delivery date/slot follow the same rule.
        """
        cart = self.get_cart(customer_id)
        existing = cart.find_item(item.meal_id)

        if existing:
            existing.quantity += item.quantity
            if not item.customization.is_empty():
                existing.customization = item.customization
            existing.delivery_date = item.delivery_date or existing.delivery_date
            existing.delivery_slot = item.delivery_slot or existing.delivery_slot
        else:
            cart.items.append(item)

        if customer_email:
            cart.customer_email = customer_email
        if delivery_address:
            cart.delivery_address = delivery_address

        self.cart_repo.save_cart(cart)
        logger.info("Added %s x%d to cart of %s", item.meal_id, item.quantity, customer_id)
        return self._cart_response(cart, f"{item.meal_name} has been added to your cart.")

    def update_quantity(self, customer_id: str, meal_id: str, quantity: int) -> Dict[str, Any]:
        # 장바구니 아이템의 수량 수정
        return self.update_item(customer_id, meal_id, quantity=quantity)

    def update_item(self, customer_id: str, meal_id: str, quantity: Optional[int] = None,
                    customization: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        # 수량 및 커스터마이징 수정 (주어진 필드만 변경)
        if quantity is not None and quantity < 1:
            raise InvalidQuantity(quantity)

        cart = self.cart_repo.get_cart(customer_id)
        if not cart:
            raise NotFoundError("Cart not found")

        item = cart.find_item(meal_id)
        if not item:
            raise ItemNotFound(meal_id)

        if quantity is not None:
            item.quantity = quantity
        if customization:
            meal = self.meal_repo.get_meal_by_id(meal_id)
            if not meal:
                raise NotFoundError(f"Meal not found: {meal_id}")
            item.customization = price_add_ons(meal, item.customization.merged_with(customization))

        self.cart_repo.save_cart(cart)
        return self._cart_response(cart, "Cart item has been updated.")

    def remove_item(self, customer_id: str, meal_id: str) -> Dict[str, Any]:
        # 장바구니에서 특정 메뉴 제거 (마지막 아이템이면 장바구니 자체를 삭제)
        cart = self.cart_repo.get_cart(customer_id)
        if not cart or not cart.find_item(meal_id):
            raise ItemNotFound(meal_id)

        cart.items = [item for item in cart.items if item.meal_id != meal_id]

        if cart.is_empty:
            self.cart_repo.delete_cart(customer_id)
            return self._cart_response(Cart(customer_id=customer_id),
                                       "Cart is now empty and has been removed.")

        self.cart_repo.save_cart(cart)
        return self._cart_response(cart, "Item has been removed from your cart.")

    def clear(self, customer_id: str) -> Dict[str, Any]:
        # 장바구니 비우기 (없어도 오류 아님)
        removed_items = self.cart_repo.delete_cart(customer_id)
        return {
            "success": True,
            "removed_items": removed_items,
            "message": "Cart cleared successfully."
        }

    def _cart_response(self, cart: Cart, message: str) -> Dict[str, Any]:
        return {
            "success": True,
            "cart": cart.to_dict(self.pricing.quote(cart.items)),
            "message": message
        }
