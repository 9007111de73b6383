from collections.abc import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.services.calendar import SlotCatalog, build_catalog
from app.services.notifications import DatabaseNotificationGateway, NotificationGateway
from app.services.replacement_resolver import ReplacementResolver


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_catalog() -> SlotCatalog:
    return build_catalog()


def get_notifier(db: Session = Depends(get_db)) -> NotificationGateway:
    return DatabaseNotificationGateway(db)


def get_resolver(
    db: Session = Depends(get_db),
    notifier: NotificationGateway = Depends(get_notifier),
    catalog: SlotCatalog = Depends(get_catalog),
) -> ReplacementResolver:
    return ReplacementResolver(db, notifier=notifier, catalog=catalog)
