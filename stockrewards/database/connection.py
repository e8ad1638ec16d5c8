from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from stockrewards.config import settings


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """설정된 URL로 엔진 생성

    SQLite는 드라이버 기본 트랜잭션 처리를 끄고 모든 트랜잭션을
    BEGIN IMMEDIATE로 시작합니다. 쓰기 트랜잭션이 직렬화되고
    SAVEPOINT(begin_nested)가 정상 동작합니다.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_engine(
        database_url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # 연결 유효성 검사
        pool_recycle=3600,  # 1시간마다 연결 재생성
        echo=echo,  # 디버그 모드에서 SQL 로깅
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    # Use expire_on_commit=False to avoid DetachedInstanceError when accessing
    # attributes after commit within the same request scope.
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=bind,
        expire_on_commit=False,
    )


engine = build_engine(settings.database_url, echo=settings.DEBUG)

SessionLocal = build_session_factory(engine)
