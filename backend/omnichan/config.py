from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Facebook Settings
    FACEBOOK_APP_SECRET: str = ""
    FACEBOOK_GRAPH_VERSION: str = "v18.0"
    FACEBOOK_GRAPH_URL: str = "https://graph.facebook.com"
    WEBHOOK_VERIFY_TOKEN: str = "omnichan-webhook-verify-token"

    # Outbound gateway calls give up after this many seconds
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    # Application Settings
    DATABASE_URL: str = "sqlite:///./omnichan.db"
    API_V1_STR: str = "/api"
    LOG_LEVEL: str = "INFO"

    # Webhook dispatch queue
    WEBHOOK_QUEUE_SIZE: int = 1000
    WEBHOOK_WORKERS: int = 4

    # Environment
    ENVIRONMENT: str = "development"  # development or production

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "allow"


# Initialize settings
settings = Settings()
