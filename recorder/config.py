import os
from functools import lru_cache
from pydantic import BaseModel

class Settings(BaseModel):
    # Public URL the tracking pixel is served from (may differ behind a proxy)
    public_base_url: str = os.getenv("PUBLIC_BASE_URL", os.getenv("APP_BASE_URL", "http://localhost:8000"))
    env: str = os.getenv("ENV", "dev")

    cors_origins_csv: str = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins_csv.split(",") if o.strip()]

    # LLM
    llm_provider: str = os.getenv("LLM_PROVIDER", "openai")  # openai|ollama
    openai_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    ollama_base: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "llama3.1")

    # Email
    smtp_host: str = os.getenv("SMTP_HOST", "")
    smtp_port: int = int(os.getenv("SMTP_PORT", "587"))
    smtp_user: str = os.getenv("SMTP_USER", "")
    smtp_pass: str = os.getenv("SMTP_PASS", "")
    from_email: str = os.getenv("FROM_EMAIL", "")
    from_name: str = os.getenv("FROM_NAME", "HALL Recorder")
    resend_api_key: str = os.getenv("RESEND_API_KEY") or os.getenv("EMAIL_API_KEY", "")
    email_service: str = os.getenv("EMAIL_SERVICE", "resend").lower()
    support_email: str = os.getenv("SUPPORT_EMAIL", "support@hallia.ai")

    # Gmail OAuth (per-user sending)
    gmail_client_id: str = os.getenv("GMAIL_CLIENT_ID", "")
    gmail_client_secret: str = os.getenv("GMAIL_CLIENT_SECRET", "")

    # Stripe
    stripe_secret_key: str = os.getenv("STRIPE_SECRET_KEY", "")
    price_id_starter: str = os.getenv("PRICE_ID_STARTER", "price_1SSyMI14zZqoQtSCb1gqGhke")
    price_id_unlimited: str = os.getenv("PRICE_ID_UNLIMITED", "price_1SSyNh14zZqoQtSCqPL9VwTj")
    starter_minutes_quota: int = int(os.getenv("STARTER_MINUTES_QUOTA", "600"))

    # Password reset
    reset_code_ttl_minutes: int = int(os.getenv("RESET_CODE_TTL_MINUTES", "15"))
    min_password_length: int = int(os.getenv("MIN_PASSWORD_LENGTH", "6"))

    # Open tracking
    tracking_min_delay_seconds: float = float(os.getenv("TRACKING_MIN_DELAY_SECONDS", "5"))

    # Auth
    jwt_secret: str = os.getenv("JWT_SECRET", os.getenv("APP_SECRET", "change-me"))
    jwt_alg: str = os.getenv("JWT_ALG", "HS256")
    jwt_expires_minutes: int = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

    @property
    def is_dev(self) -> bool:
        return self.env == "dev"

@lru_cache
def get_settings() -> Settings:
    return Settings()
