import os
from typing import List
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

class Settings:
    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))
    RELOAD: bool = os.getenv("RELOAD", "false").lower() == "true"

    # Admin API security
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "your-secret-admin-key-here")

    # CORS configuration
    CORS_ENABLED: bool = os.getenv("CORS_ENABLED", "true").lower() == "true"
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")
    CORS_ALLOW_CREDENTIALS: bool = os.getenv("CORS_ALLOW_CREDENTIALS", "true").lower() == "true"
    CORS_ALLOW_METHODS: str = os.getenv("CORS_ALLOW_METHODS", "GET,POST,PUT,DELETE,OPTIONS")
    CORS_ALLOW_HEADERS: str = os.getenv("CORS_ALLOW_HEADERS", "Content-Type,Authorization")

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./lnaddress.db")

    # Lightning address configuration
    DOMAIN: str = os.getenv("DOMAIN", "localhost:8000")
    MIN_SENDABLE: int = int(os.getenv("MIN_SENDABLE", "1000"))              # msats
    MAX_SENDABLE: int = int(os.getenv("MAX_SENDABLE", "11000000000"))       # msats

    # LND REST configuration
    LND_REST_URL: str = os.getenv("LND_REST_URL", "https://localhost:8080")
    LND_MACAROON_HEX: str = os.getenv("LND_MACAROON_HEX", "")
    LND_TLS_CERT_PATH: str = os.getenv("LND_TLS_CERT_PATH", "")

    # Invoice settings
    INVOICE_EXPIRY_SECONDS: int = int(os.getenv("INVOICE_EXPIRY_SECONDS", "3600"))

    # Settlement reconciliation
    SETTLEMENT_STREAM_ENABLED: bool = os.getenv("SETTLEMENT_STREAM_ENABLED", "true").lower() == "true"
    SETTLEMENT_STREAM_RETRY_SECONDS: int = int(os.getenv("SETTLEMENT_STREAM_RETRY_SECONDS", "10"))
    EXPIRY_CHECK_INTERVAL_SECONDS: int = int(os.getenv("EXPIRY_CHECK_INTERVAL_SECONDS", "60"))
    RECONCILE_INTERVAL_SECONDS: int = int(os.getenv("RECONCILE_INTERVAL_SECONDS", "300"))

    # Nostr zap receipts
    NOSTR_PRIVATE_KEY: str = os.getenv("NOSTR_PRIVATE_KEY", "")  # hex or nsec
    NOSTR_RELAYS: str = os.getenv("NOSTR_RELAYS", "wss://relay.damus.io,wss://nos.lol,wss://relay.primal.net")
    RELAY_TIMEOUT_SECONDS: float = float(os.getenv("RELAY_TIMEOUT_SECONDS", "10"))
    RECEIPT_WORKERS: int = int(os.getenv("RECEIPT_WORKERS", "4"))
    RECEIPT_PUBLISH_MAX_ATTEMPTS: int = int(os.getenv("RECEIPT_PUBLISH_MAX_ATTEMPTS", "5"))
    RECEIPT_PUBLISH_BASE_DELAY: float = float(os.getenv("RECEIPT_PUBLISH_BASE_DELAY", "2.0"))
    RECEIPT_PUBLISH_MAX_DELAY: float = float(os.getenv("RECEIPT_PUBLISH_MAX_DELAY", "60.0"))

    @property
    def cors_origins_list(self) -> List[str]:
        """Convert CORS_ORIGINS string to list"""
        if self.CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def cors_methods_list(self) -> List[str]:
        """Convert CORS_ALLOW_METHODS string to list"""
        if self.CORS_ALLOW_METHODS == "*":
            return ["*"]
        return [method.strip() for method in self.CORS_ALLOW_METHODS.split(",") if method.strip()]

    @property
    def cors_headers_list(self) -> List[str]:
        """Convert CORS_ALLOW_HEADERS string to list"""
        if self.CORS_ALLOW_HEADERS == "*":
            return ["*"]
        return [header.strip() for header in self.CORS_ALLOW_HEADERS.split(",") if header.strip()]

    @property
    def nostr_relays_list(self) -> List[str]:
        """Convert NOSTR_RELAYS string to list"""
        return [relay.strip() for relay in self.NOSTR_RELAYS.split(",") if relay.strip()]

# Global settings instance
settings = Settings()
