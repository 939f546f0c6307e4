from sqlalchemy.orm import Session

from .auth_service import seed_company_admin
from .config import settings
from .database import Base, engine
from .routes import auth_router, fees_router


def init_erp_core() -> None:
    Base.metadata.create_all(bind=engine)
    db = Session(bind=engine)
    try:
        seed_company_admin(db, settings)
    finally:
        db.close()


__all__ = ["auth_router", "fees_router", "init_erp_core"]
