"""
数据库配置 - SQLAlchemy 持久化层
客户、占用、子账本与汇总账本都通过这里的会话读写
"""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from villa.config import settings

SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL


def configure_sqlite(engine: Engine, wal: bool = True) -> Engine:
    """
    让 pysqlite 的事务由 SQLAlchemy 显式控制

    驱动默认的隐式 BEGIN 会破坏 SAVEPOINT（账本镜像写入依赖 begin_nested），
    这里关闭驱动的事务管理并在 begin 事件中自行发出 BEGIN
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        if wal:
            # 启用 WAL 模式以提高并发性能
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


_is_sqlite = SQLALCHEMY_DATABASE_URL.startswith("sqlite")
_connect_args = {"check_same_thread": False} if _is_sqlite else {}

engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=_connect_args, echo=settings.DEBUG)
if _is_sqlite:
    configure_sqlite(engine, wal=":memory:" not in SQLALCHEMY_DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """依赖注入：获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """初始化数据库表"""
    from villa.models import ontology  # noqa
    Base.metadata.create_all(bind=engine)
