from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # Database Configuration
    database_url: str = "sqlite+aiosqlite:///./devpulse.db"
    sql_echo: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    cors_origins: List[str] = ["*"]

    # Observer broadcast
    broadcast_send_timeout: float = 5.0  # seconds before a slow observer's send is abandoned

    # Producer client
    client_base_url: str = "http://127.0.0.1:3000"
    client_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False

settings = Settings()
