"""Settings via pydantic-settings with QUARRY_ env prefix.

Credentials and infrastructure endpoints use validation_alias to read the
same unprefixed env vars (MYSQL_HOST, R2_BUCKET_NAME, ...) the deployment
already exports, so a single .env file drives the whole bot.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="QUARRY_", env_file=".env")

    log_level: str = "info"

    # LLM
    anthropic_api_key: str = Field("", validation_alias="ANTHROPIC_API_KEY")
    # Dual auth: auth_token (Bearer) takes precedence over api_key (x-api-key)
    anthropic_auth_token: str = Field("", validation_alias="ANTHROPIC_AUTH_TOKEN")
    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = 64000
    temperature: float = 1.0
    thinking_budget: int = 20000  # 0 disables extended thinking
    api_base_url: str = "https://api.anthropic.com"
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 300  # seconds

    # Conversation loop
    max_iterations: int = 50  # model round-trips per invocation
    progress_interval: float = 1.0  # seconds between unforced edits
    progress_min_chars: int = 50  # chars appended before an unforced edit
    message_limit: int = 4096  # platform max message length

    # MySQL (read-only analytics access)
    db_host: str = Field("localhost", validation_alias="MYSQL_HOST")
    db_port: int = Field(3306, validation_alias="MYSQL_PORT")
    db_user: str = Field("quarry", validation_alias="MYSQL_USER")
    db_password: str = Field("", validation_alias="MYSQL_PASSWORD")
    db_name: str = Field("analytics", validation_alias="MYSQL_DATABASE")
    db_pool_size: int = 10
    db_max_overflow: int = 5
    schema_cache_ttl: int = 3600  # seconds, 0 = never expires

    # Cloudflare R2
    r2_account_id: str = Field("", validation_alias="R2_ACCOUNT_ID")
    r2_access_key_id: str = Field("", validation_alias="R2_ACCESS_KEY_ID")
    r2_secret_access_key: str = Field("", validation_alias="R2_SECRET_ACCESS_KEY")
    r2_bucket_name: str = Field("quarry", validation_alias="R2_BUCKET_NAME")
    r2_public_url: str = Field("", validation_alias="R2_PUBLIC_URL")
    r2_key_prefix: str = "quarry"
    r2_url_expiry: int = 7 * 24 * 60 * 60  # presigned URL lifetime, seconds

    # Telegram
    telegram_bot_token: str = Field("", validation_alias="TELEGRAM_BOT_TOKEN")
    allowed_users: str = ""  # comma-separated Telegram user IDs, empty = all
    history_window: int = 10  # recent chat messages kept for thread context
    history_max_chats: int = 1000  # chats remembered, least recently active dropped first

    # Daily report
    report_chat_id: int | None = None
    report_cron: str = "0 9 * * *"
    timezone: str = "Asia/Seoul"

    # HTTP
    host: str = "0.0.0.0"
    port: int = 8000

    @model_validator(mode="after")
    def _validate_thinking(self) -> "Settings":
        if self.thinking_budget:
            if self.thinking_budget < 1024:
                raise ValueError("thinking_budget must be >= 1024 (API minimum) or 0 to disable")
            if self.thinking_budget >= self.max_tokens:
                raise ValueError(
                    f"thinking_budget ({self.thinking_budget}) must be < "
                    f"max_tokens ({self.max_tokens}). Increase max_tokens."
                )
        return self

    @property
    def db_url(self) -> str:
        return f"mysql+aiomysql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def r2_endpoint_url(self) -> str:
        return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"

    @property
    def allowed_user_ids(self) -> set[int] | None:
        ids = {int(uid.strip()) for uid in self.allowed_users.split(",") if uid.strip()}
        return ids or None
