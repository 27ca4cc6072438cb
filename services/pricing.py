"""
Pricing engine - turns line items into subtotal, tax, shipping and total
"""
from dataclasses import replace
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from core.errors import ValidationError
from models.cart import AddOn, Customization, LineItem, PriceBreakdown
from models.meal import Meal

TAX_RATE = 0.05
SHIPPING_COST = 100


def round_total(amount: float) -> int:
    # 0.5는 올림 (은행가 반올림 사용 안 함)
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def price_add_ons(meal: Meal, customization: Customization) -> Customization:
    """Replace client-supplied add-on prices with the ones on the meal's catalog entry"""
    if not customization.add_ons:
        return customization

    catalog = {option["name"]: option["price"] for option in meal.add_on_options}
    add_ons = []
    for add_on in customization.add_ons:
        if add_on.name not in catalog:
            raise ValidationError.for_field("addOns", f"{meal.name} has no add-on named {add_on.name}")
        add_ons.append(AddOn(name=add_on.name, price=catalog[add_on.name]))
    return replace(customization, add_ons=add_ons)


class PricingEngine:
    """Pure price calculation. No I/O; identical input gives identical output."""

    def __init__(self, tax_rate: float = TAX_RATE, shipping_cost: float = SHIPPING_COST):
        self.tax_rate = tax_rate
        self.shipping_cost = shipping_cost

    def quote(self, items: Iterable[LineItem]) -> PriceBreakdown:
        items = list(items)
        if not items:
            return PriceBreakdown(subtotal=0, tax=0, shipping=0, total=0)

        subtotal = sum(item.effective_price * item.quantity for item in items)
        tax = subtotal * self.tax_rate
        shipping = self.shipping_cost
        return PriceBreakdown(
            subtotal=subtotal,
            tax=tax,
            shipping=shipping,
            total=round_total(subtotal + tax + shipping)
        )
