from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # Database (defaults to SQLite for local dev)
    DATABASE_URL: str = "sqlite:///./leasing_kanban.db"

    # LINE Messaging API（未設定時は送信を行わない）
    LINE_CHANNEL_ACCESS_TOKEN: str = ""
    LINE_CHANNEL_SECRET: str = ""
    LINE_BOT_ID: str = "@your-bot-id"
    LINE_API_BASE_URL: str = "https://api.line.me/v2/bot"

    # Slack（期限リマインダー）
    SLACK_BOT_TOKEN: str = ""
    SLACK_CHANNEL_ID: str = ""
    SLACK_REMINDER_INTERVAL_SECONDS: float = 0.5

    # 取引台帳システム
    LEDGER_API_BASE_URL: str = ""
    LEDGER_REQUEST_INTERVAL_SECONDS: float = 0.1

    # Azure OpenAI（マイソク画像解析）
    AZURE_OPENAI_API_KEY: str = ""
    AZURE_OPENAI_ENDPOINT: str = ""
    AZURE_OPENAI_DEPLOYMENT_NAME: str = "gpt-4o-mini"
    AZURE_OPENAI_API_VERSION: str = "2024-08-01-preview"

    # リマインダースケジューラー
    REMINDER_SCHEDULER_ENABLED: bool = True
    REMINDER_HOURS: str = "9,15"
    REMINDER_TIMEZONE: str = "Asia/Tokyo"
    REMINDER_DAYS_BEFORE: int = 2

    # メッセージテンプレート・LINE連携
    MESSAGE_TEMPLATES_PATH: str = "./message_templates.json"
    CUSTOMER_CHECKLIST_URL: str = ""
    PENDING_SELECTION_TTL_MINUTES: int = 30

    # Application
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"
    HTTP_TIMEOUT_SECONDS: float = 30.0
    MAX_UPLOAD_SIZE_MB: int = 10

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def max_upload_size_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024


settings = Settings()
