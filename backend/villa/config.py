"""
应用配置
从环境变量 / .env 读取配置
"""
from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用设置"""

    # 应用基础配置
    APP_NAME: str = "Villa Booking Engine"
    VILLA_NAME: str = "Devlata Villa"
    DEBUG: bool = False

    # 数据库配置
    DATABASE_URL: str = "sqlite:///./villa.db"

    # JWT 配置
    SECRET_KEY: str = "villa-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 480

    # 入住/退房默认时间（当地时间）
    DEFAULT_CHECK_IN_TIME: str = "12:00"
    DEFAULT_CHECK_OUT_TIME: str = "10:00"

    # 邮件配置
    EMAIL_ENABLED: bool = False
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    EMAIL_FROM: Optional[str] = None

    model_config = ConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


# 全局设置实例
settings = Settings()
