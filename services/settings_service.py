import logging
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from database.models import Setting

logger = logging.getLogger(__name__)

DEFAULT_STORE_SETTINGS = {
    "store_name": "NATIONAL MINI MART",
    "store_tagline": "Your Trusted Store",
    "store_address": "",
    "store_phone": "",
    "gst_number": "",
    "receipt_footer": "Thank you for shopping with us!",
}


def get_store_settings(session: Session) -> Dict[str, str]:
    """Store identity for receipts, falling back to defaults for missing keys."""
    settings = dict(DEFAULT_STORE_SETTINGS)
    try:
        rows = session.exec(select(Setting)).all()
    except SQLAlchemyError as e:
        logger.warning("Could not read store settings, using defaults: %s", e)
        session.rollback()
        return settings

    for row in rows:
        if row.value:
            settings[row.key] = row.value
    return settings


def update_store_settings(session: Session, values: Dict[str, Optional[str]]) -> Dict[str, str]:
    for key, value in values.items():
        if key not in DEFAULT_STORE_SETTINGS or value is None:
            continue
        row = session.get(Setting, key)
        if row:
            row.value = value
        else:
            row = Setting(key=key, value=value)
        session.add(row)
    session.commit()
    return get_store_settings(session)


def ensure_default_settings(session: Session):
    for key, value in DEFAULT_STORE_SETTINGS.items():
        if not session.get(Setting, key):
            session.add(Setting(key=key, value=value))
    session.commit()
