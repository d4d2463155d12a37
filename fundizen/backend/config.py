from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


class TransferAccount(dict):
    """Dictionary-backed bank account shown to donors choosing a manual transfer."""

    def __init__(self, bank_name: str, account_name: str, account_number: str):
        super().__init__(bank_name=bank_name, account_name=account_name, account_number=account_number)

    @property
    def bank_name(self) -> str:
        return self.get("bank_name", "")

    @property
    def account_name(self) -> str:
        return self.get("account_name", "")

    @property
    def account_number(self) -> str:
        return self.get("account_number", "")


def _split_csv(value: Optional[str], default: List[str]) -> List[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    """Runtime settings shared across the backend application."""

    def __init__(self) -> None:
        self.title: str = "Fundizen Donation API"
        self.version: str = "1.0.0"
        self.api_base_url: str = os.getenv("FUNDIZEN_API_URL", "http://localhost:8080/api")
        self.frontend_url: str = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
        self.cors_origins: List[str] = _split_csv(
            os.getenv("CORS_ORIGINS"),
            ["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.currency: str = os.getenv("DONATION_CURRENCY", "MYR")
        self.min_donation: Decimal = Decimal(os.getenv("MIN_DONATION", "5"))
        self.max_donation: Decimal = Decimal(os.getenv("MAX_DONATION", "100000"))
        self.predefined_amounts: List[int] = [25, 50, 100, 250, 500, 1000]
        self.gateway_timeout: float = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "30"))
        self.flow_ttl: int = int(os.getenv("FLOW_TTL_SECONDS", "1800"))
        self.flow_cache_size: int = int(os.getenv("FLOW_CACHE_SIZE", "10000"))
        self.identity_jwt_secret: Optional[str] = os.getenv("IDENTITY_JWT_SECRET")
        self.identity_jwks_url: Optional[str] = os.getenv("IDENTITY_JWKS_URL")
        self.identity_audience: Optional[str] = os.getenv("IDENTITY_AUDIENCE")
        self.transfer_account = TransferAccount(
            bank_name=os.getenv("TRANSFER_BANK_NAME", "Maybank"),
            account_name=os.getenv("TRANSFER_ACCOUNT_NAME", "Fundizen Berhad"),
            account_number=os.getenv("TRANSFER_ACCOUNT_NUMBER", ""),
        )


settings = Settings()
