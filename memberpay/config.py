import os, dotenv
from typing import Dict, Any
from pathlib import Path

# Get the project root directory (parent of memberpay directory)
PROJECT_ROOT = Path(__file__).parent.parent

DEFAULTS = {
    "APP_ENV": "local",
    "APP_URL": "http://localhost:8000",
    "FRONTEND_URL": "http://localhost:3000",
    "DATABASE_URL": "sqlite:///./memberpay.db",
    "LOG_LEVEL": "INFO",
    "JWT_SECRET": "change-me",
    "JWT_ALGORITHM": "HS256",
    "PAYMENT_GATEWAY": "mock",
    "DEFAULT_CURRENCY": "KES",
    "WEBHOOK_SECRET": "",
    "PESAPAL_ENVIRONMENT": "sandbox",
    "PESAPAL_CONSUMER_KEY": "",
    "PESAPAL_CONSUMER_SECRET": "",
    "PESAPAL_IPN_ID": "",
    "STRIPE_SECRET_KEY": "",
    "STRIPE_WEBHOOK_SECRET": "",
}

PESAPAL_BASE_URLS = {
    "sandbox": "https://cybqa.pesapal.com/pesapalv3/api",
    "live": "https://pay.pesapal.com/v3/api",
}

# Environments where the mock checkout endpoints are reachable
MOCK_ENVIRONMENTS = ("local", "testing", "staging")


def create_config() -> Dict[str, Any]:
    config = {
        **DEFAULTS,
        **os.environ,
        **dotenv.dotenv_values(PROJECT_ROOT / ".env"),
        **dotenv.dotenv_values(PROJECT_ROOT / ".env.local"),
        **dotenv.dotenv_values(PROJECT_ROOT / ".env.development.local"),
    }

    # Numeric settings arrive as strings from the environment
    config["PENDING_PAYMENT_TTL_MINUTES"] = int(config.get("PENDING_PAYMENT_TTL_MINUTES") or 60)
    config["GATEWAY_TIMEOUT_SECONDS"] = float(config.get("GATEWAY_TIMEOUT_SECONDS") or 15)
    config["GATEWAY_CB_FAILURE_THRESHOLD"] = int(config.get("GATEWAY_CB_FAILURE_THRESHOLD") or 5)
    config["GATEWAY_CB_RESET_SECONDS"] = float(config.get("GATEWAY_CB_RESET_SECONDS") or 60)
    config["SUBSCRIPTION_GRACE_DAYS"] = int(config.get("SUBSCRIPTION_GRACE_DAYS") or 14)

    config["CORS_ORIGINS"] = [
        origin.strip() for origin in (config.get("CORS_ORIGINS") or config["FRONTEND_URL"]).split(",") if origin.strip()
    ]

    config["PESAPAL"] = {
        "BASE_URL": config.get("PESAPAL_BASE_URL")
        or PESAPAL_BASE_URLS.get(config["PESAPAL_ENVIRONMENT"], PESAPAL_BASE_URLS["sandbox"]),
        "CONSUMER_KEY": config["PESAPAL_CONSUMER_KEY"],
        "CONSUMER_SECRET": config["PESAPAL_CONSUMER_SECRET"],
        "IPN_ID": config["PESAPAL_IPN_ID"],
        "IPN_URL": f"{config['APP_URL']}/api/payments/webhook/pesapal",
        "CALLBACK_URL": f"{config['APP_URL']}/api/payments/callback",
    }

    return config

config = create_config()
