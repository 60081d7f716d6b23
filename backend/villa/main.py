"""
Villa 预订引擎主应用入口
日历占用、客户子账本与汇总账本一致性服务
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from villa.config import settings
from villa.database import init_db
from villa.routers import auth, bookings, customers, ledgers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 初始化数据库
    init_db()

    # 注册事件处理器
    from villa.services.event_handlers import register_event_handlers
    register_event_handlers()

    # 注册邮件渠道
    if settings.EMAIL_ENABLED:
        from villa.core.notification import NotificationChannelRegistry
        from villa.notification.email_channel import EmailChannel
        NotificationChannelRegistry().register(EmailChannel.from_settings(settings))
        logger.info(f"Email channel registered ({settings.SMTP_HOST}:{settings.SMTP_PORT})")

    yield


# 创建应用
app = FastAPI(
    title=settings.APP_NAME,
    description=f"{settings.VILLA_NAME} 预订可用性与财务账本一致性服务",
    version="1.0.0",
    lifespan=lifespan
)

# CORS 配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 生产环境应限制具体域名
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(auth.router)
app.include_router(bookings.router)
app.include_router(customers.router)
app.include_router(ledgers.router)


@app.get("/")
def root():
    return {"name": settings.APP_NAME, "villa": settings.VILLA_NAME, "version": "1.0.0"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}
