"""
Configuration loading - reads settings from the environment (.env supported)
"""
import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class ShurjoPayConfig:
    """Credentials and endpoints of the ShurjoPay merchant account"""
    endpoint: str
    username: str
    password: str
    prefix: str
    return_url: str
    cancel_url: str
    timeout: float = 10.0


@dataclass
class Settings:
    """Application settings"""
    database_path: str
    secret_key: str
    port: int
    debug: bool
    log_level: str
    shipping_cost: float
    tax_rate: float
    currency: str
    delivery_days: int
    shurjopay: ShurjoPayConfig

    @classmethod
    def from_env(cls) -> "Settings":
        return_url = os.getenv("SP_RETURN_URL", "http://localhost:3000/order-success")
        return cls(
            database_path=os.getenv("DATABASE_PATH", "FeedMeDB.db"),
            secret_key=os.getenv("SECRET_KEY", "your-secret-key-here"),
            port=int(os.getenv("PORT", 5000)),
            debug=_env_bool("DEBUG"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            shipping_cost=float(os.getenv("SHIPPING_COST", 100)),
            tax_rate=float(os.getenv("TAX_RATE", 0.05)),
            currency=os.getenv("CURRENCY", "BDT"),
            delivery_days=int(os.getenv("DELIVERY_DAYS", 7)),
            shurjopay=ShurjoPayConfig(
                endpoint=os.getenv("SP_ENDPOINT", "https://sandbox.shurjopayment.com"),
                username=os.getenv("SP_USERNAME", ""),
                password=os.getenv("SP_PASSWORD", ""),
                prefix=os.getenv("SP_PREFIX", "FM"),
                return_url=return_url,
                cancel_url=os.getenv("SP_CANCEL_URL", return_url),
                timeout=float(os.getenv("SP_TIMEOUT", 10)),
            ),
        )


def configure_logging(level: Optional[str] = None) -> None:
    # 애플리케이션 전체에서 한 번만 호출
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level or "INFO")
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    ))
    root.addHandler(handler)
    root.setLevel(level or "INFO")
