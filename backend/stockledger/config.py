# backend/stockledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Concurrency: bounded retries for lost lot/sequence races
    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "3"))
    LEDGER_RETRY_BACKOFF = float(os.environ.get("LEDGER_RETRY_BACKOFF", "0.1"))

    # Demand forecasting defaults (overridable per run)
    FORECAST_DAYS = int(os.environ.get("FORECAST_DAYS", "30"))
    FORECAST_MIN_SALES_THRESHOLD = int(os.environ.get("FORECAST_MIN_SALES_THRESHOLD", "1"))
    FORECAST_DEMAND_DAYS = int(os.environ.get("FORECAST_DEMAND_DAYS", "7"))
    FORECAST_SAFETY_STOCK_FACTOR = float(os.environ.get("FORECAST_SAFETY_STOCK_FACTOR", "1.2"))
    FORECAST_SEASONAL_ADJUSTMENT = float(os.environ.get("FORECAST_SEASONAL_ADJUSTMENT", "1.0"))
