import os
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    database_url: Optional[str] = None
    database_name: str = "storefront"
    # opt-in: without a database the API answers 503 unless this is set
    use_memory_store: bool = False

    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    currency: str = "INR"
    shipping_fee: Decimal = Field(Decimal("50.00"), ge=0)

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    admin_phone: Optional[str] = None

    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    port: int = 8000
    log_level: str = "INFO"

    @property
    def gateway_configured(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)

    @property
    def sms_configured(self) -> bool:
        return bool(
            self.twilio_account_sid
            and self.twilio_account_sid.startswith("AC")
            and self.twilio_auth_token
            and self.twilio_phone_number
        )

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "database_url": os.getenv("DATABASE_URL"),
            "database_name": os.getenv("DATABASE_NAME"),
            "use_memory_store": os.getenv("USE_MEMORY_STORE"),
            "razorpay_key_id": os.getenv("RAZORPAY_KEY_ID"),
            "razorpay_key_secret": os.getenv("RAZORPAY_KEY_SECRET"),
            "currency": os.getenv("CURRENCY"),
            "shipping_fee": os.getenv("SHIPPING_FEE"),
            "twilio_account_sid": os.getenv("TWILIO_ACCOUNT_SID"),
            "twilio_auth_token": os.getenv("TWILIO_AUTH_TOKEN"),
            "twilio_phone_number": os.getenv("TWILIO_PHONE_NUMBER"),
            "admin_phone": os.getenv("ADMIN_PHONE"),
            "port": os.getenv("PORT"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        origins = os.getenv("CORS_ORIGINS")
        if origins:
            values["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]
        # unset variables fall back to the field defaults
        return cls(**{k: v for k, v in values.items() if v is not None})
