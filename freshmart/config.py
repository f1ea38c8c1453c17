"""
Configuration management for the FreshMart cart service.
Loads settings from environment variables and AWS Secrets Manager.
"""
import os
import json
import logging
from decimal import Decimal
from typing import Optional

import boto3

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration"""

    # Application settings
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "freshmart")
    REGION: str = os.getenv("REGION", "ap-south-1")
    SECRETS_NAME: Optional[str] = os.getenv("SECRETS_NAME")

    # Redis settings
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_AUTH_TOKEN: Optional[str] = os.getenv("REDIS_AUTH_TOKEN")
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_SSL: bool = _env_bool("REDIS_SSL")

    # Redis connection settings
    REDIS_SOCKET_CONNECT_TIMEOUT: int = 5
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_RETRY_ON_TIMEOUT: bool = True
    REDIS_MAX_CONNECTIONS: int = 50
    REDIS_MAX_RETRIES: int = int(os.getenv("REDIS_MAX_RETRIES", "3"))
    REDIS_INITIAL_BACKOFF: float = 0.1  # seconds, doubled per retry
    REDIS_MAX_BACKOFF: float = 2.0

    # Cart settings
    CART_TTL_SECONDS: int = int(os.getenv("CART_TTL_SECONDS", str(7 * 24 * 60 * 60)))  # 7 days
    CHECKOUT_TTL_SECONDS: int = int(os.getenv("CHECKOUT_TTL_SECONDS", str(60 * 60)))
    MAX_ITEMS_PER_CART: int = int(os.getenv("MAX_ITEMS_PER_CART", "200"))

    # Pricing
    FREE_DELIVERY_THRESHOLD: Decimal = Decimal(os.getenv("FREE_DELIVERY_THRESHOLD", "500"))
    DELIVERY_FEE: Decimal = Decimal(os.getenv("DELIVERY_FEE", "40"))
    TAX_RATE: Decimal = Decimal(os.getenv("TAX_RATE", "0.05"))

    # Order service; empty URL selects the local simulated order book
    ORDER_SERVICE_URL: str = os.getenv("ORDER_SERVICE_URL", "")
    ORDER_SERVICE_TOKEN: Optional[str] = os.getenv("ORDER_SERVICE_TOKEN")
    ORDER_SERVICE_TIMEOUT: float = float(os.getenv("ORDER_SERVICE_TIMEOUT", "10"))
    ESTIMATED_DELIVERY_MINUTES: int = int(os.getenv("ESTIMATED_DELIVERY_MINUTES", "30"))
    # Credited to a delivery partner's pending earnings per completed delivery
    DELIVERY_PAYOUT: Decimal = Decimal(os.getenv("DELIVERY_PAYOUT", "30"))

    @classmethod
    def redis_url(cls) -> str:
        scheme = "rediss" if cls.REDIS_SSL else "redis"
        auth = f":{cls.REDIS_AUTH_TOKEN}@" if cls.REDIS_AUTH_TOKEN else ""
        return f"{scheme}://{auth}{cls.REDIS_HOST}:{cls.REDIS_PORT}/{cls.REDIS_DB}"

    @classmethod
    def load_secrets(cls) -> None:
        """Load Redis and order service credentials from AWS Secrets Manager"""
        if not cls.SECRETS_NAME:
            return  # Nothing to load, environment only

        try:
            client = boto3.client("secretsmanager", region_name=cls.REGION)
            response = client.get_secret_value(SecretId=cls.SECRETS_NAME)
            secret_data = json.loads(response["SecretString"])
        except Exception as e:
            logger.warning(f"Could not load secrets from Secrets Manager: {e}")
            return

        if not cls.REDIS_AUTH_TOKEN:
            cls.REDIS_AUTH_TOKEN = secret_data.get("auth_token")
        if "endpoint" in secret_data:
            cls.REDIS_HOST = secret_data["endpoint"]
        if not cls.ORDER_SERVICE_TOKEN:
            cls.ORDER_SERVICE_TOKEN = secret_data.get("order_service_token")


# Load secrets at module import
Config.load_secrets()
