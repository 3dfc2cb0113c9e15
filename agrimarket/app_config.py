# agrimarket/app_config.py

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class AppConfig:
    mongo_uri: str = "mongodb://localhost:27017/agri_marketplace_db"
    jwt_secret_key: str = "change-me-super-secret"
    request_timeout_s: float = 10.0
    store_max_workers: int = 8
    recent_orders_limit: int = 5
    log_level: str = "INFO"
    disable_mongo: bool = False


def load_config() -> AppConfig:
    """
    Load all service configuration in a clean centralized way.
    Every value can be overridden from the environment.
    """
    # ------------------------------
    # Mongo
    # ------------------------------
    mongo_uri = os.getenv("MONGO_URI", AppConfig.mongo_uri)
    disable_mongo = os.getenv("DISABLE_MONGO", "0") == "1"
    store_max_workers = int(os.getenv("STORE_MAX_WORKERS", str(AppConfig.store_max_workers)))

    # ------------------------------
    # Security Keys
    # ------------------------------
    jwt_secret_key = os.getenv("JWT_SECRET_KEY", AppConfig.jwt_secret_key)

    # ------------------------------
    # Request handling
    # ------------------------------
    request_timeout_s = float(os.getenv("REQUEST_TIMEOUT_S", str(AppConfig.request_timeout_s)))
    recent_orders_limit = int(os.getenv("RECENT_ORDERS_LIMIT", str(AppConfig.recent_orders_limit)))
    log_level = os.getenv("LOG_LEVEL", AppConfig.log_level).upper()

    if request_timeout_s <= 0:
        raise ValueError("REQUEST_TIMEOUT_S must be positive")
    if store_max_workers < 1:
        raise ValueError("STORE_MAX_WORKERS must be at least 1")
    if recent_orders_limit < 0:
        raise ValueError("RECENT_ORDERS_LIMIT must not be negative")

    return AppConfig(
        mongo_uri=mongo_uri,
        jwt_secret_key=jwt_secret_key,
        request_timeout_s=request_timeout_s,
        store_max_workers=store_max_workers,
        recent_orders_limit=recent_orders_limit,
        log_level=log_level,
        disable_mongo=disable_mongo,
    )
