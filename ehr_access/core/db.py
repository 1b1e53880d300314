from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from .config import settings
from .base import Base

engine = create_async_engine(settings.POSTGRES_DSN, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def get_session():
    async with SessionLocal() as session:
        yield session

def import_models():
    # every mapped module must be imported before create_all
    from ehr_access.modules.access_requests import models as _access_requests  # noqa: F401
    from ehr_access.modules.sharing import models as _sharing  # noqa: F401
    from ehr_access.modules.audit import models as _audit  # noqa: F401
    from ehr_access.modules.events import outbox as _outbox  # noqa: F401

async def init_models():
    # In dev-only "create_all" mode the app owns the schema; otherwise, migrations do.
    if settings.DB_MANAGE.lower() == "create_all":
        import_models()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
