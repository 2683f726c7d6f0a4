from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from messaging.settings import get_settings

database_url = get_settings().database_url

engine = create_async_engine(
    database_url,
    connect_args=(
        {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    ),
)

async_session_maker = async_sessionmaker(engine, expire_on_commit=False)
