"""
Meal catalog data models
"""
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional
from enum import Enum


class SpiceLevel(Enum):
    MILD = "Mild"
    MEDIUM = "Medium"
    HOT = "Hot"
    EXTRA_HOT = "Extra Hot"


@dataclass
class Meal:
    """Meal data model"""
    meal_id: str
    name: str
    provider_id: str
    provider_name: str
    price: float
    provider_email: Optional[str] = None
    is_available: bool = True
    description: Optional[str] = None
    add_on_options: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "mealId": self.meal_id,
            "name": self.name,
            "providerId": self.provider_id,
            "providerName": self.provider_name,
            "providerEmail": self.provider_email,
            "price": self.price,
            "isAvailable": self.is_available,
            "description": self.description,
            "addOnOptions": self.add_on_options
        }
