"""
Cart related data models
"""
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any

from core.errors import InvalidQuantity, ValidationError
from .meal import SpiceLevel


@dataclass(frozen=True)
class AddOn:
    """Paid extra chosen for a meal"""
    name: str
    price: float

    def __post_init__(self):
        if self.price < 0:
            raise ValidationError.for_field("addOns.price", "Add-on price must be 0 or greater")

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "price": self.price}


@dataclass
class Customization:
    """Per-line customization of a meal"""
    spice_level: Optional[SpiceLevel] = None
    removed_ingredients: List[str] = field(default_factory=list)
    add_ons: List[AddOn] = field(default_factory=list)
    special_instructions: str = ""

    def __post_init__(self):
        # 제거 재료는 집합으로 취급 (중복 제거, 정렬)
        self.removed_ingredients = sorted(set(self.removed_ingredients))

    @property
    def add_on_total(self) -> float:
        return sum(add_on.price for add_on in self.add_ons)

    def is_empty(self) -> bool:
        return (self.spice_level is None and not self.removed_ingredients
                and not self.add_ons and not self.special_instructions)

    def merged_with(self, changes: Dict[str, Any]) -> "Customization":
        """Return a copy with the given wire-format fields replaced"""
        merged = self.to_dict()
        merged.update({key: value for key, value in changes.items() if value is not None})
        return Customization.from_dict(merged)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "spiceLevel": self.spice_level.value if self.spice_level else None,
            "removedIngredients": list(self.removed_ingredients),
            "addOns": [add_on.to_dict() for add_on in self.add_ons],
            "specialInstructions": self.special_instructions
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Customization":
        if not data:
            return cls()
        spice_level = data.get("spiceLevel")
        try:
            spice_level = SpiceLevel(spice_level) if spice_level else None
        except ValueError:
            raise ValidationError.for_field("spiceLevel", f"Unknown spice level: {spice_level}")
        return cls(
            spice_level=spice_level,
            removed_ingredients=list(data.get("removedIngredients") or []),
            add_ons=[AddOn(name=a["name"], price=a.get("price") or 0) for a in data.get("addOns") or []],
            special_instructions=data.get("specialInstructions") or ""
        )


@dataclass
class LineItem:
    """Cart line item data model. One line per meal."""
    meal_id: str
    meal_name: str
    provider_id: str
    provider_name: str
    unit_price: float
    quantity: int
    customization: Customization = field(default_factory=Customization)
    delivery_date: str = ""
    delivery_slot: str = ""

    def __post_init__(self):
        if self.quantity < 1:
            raise InvalidQuantity(self.quantity)
        if self.unit_price < 0:
            raise ValidationError.for_field("price", "Price must be 0 or greater")

    @property
    def effective_price(self) -> float:
        # 단가 + 추가 옵션 가격
        return self.unit_price + self.customization.add_on_total

    @property
    def line_total(self) -> float:
        return self.effective_price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "mealId": self.meal_id,
            "mealName": self.meal_name,
            "providerId": self.provider_id,
            "providerName": self.provider_name,
            "price": self.unit_price,
            "quantity": self.quantity,
            "customization": self.customization.to_dict(),
            "deliveryDate": self.delivery_date,
            "deliverySlot": self.delivery_slot,
            "lineTotal": self.line_total
        }


@dataclass
class PriceBreakdown:
    """Priced totals of a list of line items"""
    subtotal: float
    tax: float
    shipping: float
    total: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "subtotal": self.subtotal,
            "tax": self.tax,
            "shipping": self.shipping,
            "totalPrice": self.total
        }


@dataclass
class Cart:
    """A customer's cart. Totals are never stored; see PricingEngine."""
    customer_id: str
    items: List[LineItem] = field(default_factory=list)
    customer_email: Optional[str] = None
    delivery_address: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def find_item(self, meal_id: str) -> Optional[LineItem]:
        for item in self.items:
            if item.meal_id == meal_id:
                return item
        return None

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_dict(self, pricing: PriceBreakdown) -> Dict[str, Any]:
        """Convert to dictionary, including the computed totals"""
        return {
            "customerId": self.customer_id,
            "customerEmail": self.customer_email,
            "deliveryAddress": self.delivery_address,
            "items": [item.to_dict() for item in self.items],
            "totalQuantity": sum(item.quantity for item in self.items),
            "pricing": pricing.to_dict(),
            "totalAmount": pricing.total
        }
