import os
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)

DEFAULT_GATEWAY_URL = "https://merchant.qpay.mn/v2"


@dataclass(frozen=True)
class GatewaySettings:
    base_url: str
    username: str
    password: str
    invoice_code: str
    invoice_receiver_code: str
    invoice_description: str
    sender_branch_code: str
    timeout: float

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        return cls(
            base_url=os.getenv("GATEWAY_BASE_URL", DEFAULT_GATEWAY_URL).rstrip("/"),
            username=os.getenv("GATEWAY_USERNAME", ""),
            password=os.getenv("GATEWAY_PASSWORD", ""),
            invoice_code=os.getenv("GATEWAY_INVOICE_CODE", ""),
            invoice_receiver_code=os.getenv("GATEWAY_INVOICE_RECEIVER_CODE", ""),
            invoice_description=os.getenv("GATEWAY_INVOICE_DESCRIPTION", ""),
            sender_branch_code=os.getenv("GATEWAY_SENDER_BRANCH_CODE", "App"),
            timeout=float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "5")),
        )


def callback_base_url() -> str:
    return os.getenv("CALLBACK_BASE_URL", "http://localhost:8000").rstrip("/")


def log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def payment_rate_limit() -> str:
    return os.getenv("PAYMENT_RATE_LIMIT", "30/minute")
