from pydantic_settings import BaseSettings
from typing import List, Optional
from datetime import timedelta


class Settings(BaseSettings):
    ENV: str = "development"
    SECRET_KEY: str = "change-me-in-production"
    DATABASE_URL: str = "sqlite:////data/sqlite.db"
    LOG_LEVEL: str = "INFO"

    # Админ для seed-скрипта
    ADMIN_EMAIL: Optional[str] = None
    ADMIN_PHONE: Optional[str] = None

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Фронтенд (страница результата оплаты)
    FRONTEND_URL: str = "http://localhost:5173"

    # Деньги: минимальная единица валюты (VND - целые донги)
    MONEY_UNIT: str = "1"
    CURRENCY: str = "VND"

    # Оплата
    PAYMENT_TIMEOUT_MINUTES: int = 15
    PAYMENT_HTTP_TIMEOUT_SECONDS: float = 10.0
    PAYMENT_HTTP_RETRIES: int = 3

    # MoMo
    MOMO_API_URL: str = "https://test-payment.momo.vn/v2/gateway/api/create"
    MOMO_PARTNER_CODE: str = "MOMO"
    MOMO_ACCESS_KEY: str = ""
    MOMO_SECRET_KEY: str = ""
    MOMO_REQUEST_TYPE: str = "captureWallet"
    MOMO_REDIRECT_URL: str = "http://localhost:8000/api/payments/momo/return"
    MOMO_IPN_URL: str = "http://localhost:8000/api/payments/momo/ipn"

    # VNPay
    VNPAY_BASE_URL: str = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
    VNPAY_TMN_CODE: str = ""
    VNPAY_HASH_SECRET: str = ""
    VNPAY_VERSION: str = "2.1.0"
    VNPAY_COMMAND: str = "pay"
    VNPAY_LOCALE: str = "vn"
    VNPAY_RETURN_URL: str = "http://localhost:8000/api/payments/vnpay/return"

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def payment_timeout(self) -> timedelta:
        return timedelta(minutes=self.PAYMENT_TIMEOUT_MINUTES)

    class Config:
        env_file = ".env"


settings = Settings()
