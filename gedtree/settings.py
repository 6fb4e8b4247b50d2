"""
Site-wide and per-user preferences.

These are read straight from the database on every call; the only cached
preferences are the per-tree ones held by a Tree instance.
"""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import SiteSetting, User, UserSetting

logger = logging.getLogger(__name__)

# Site preferences
DEFAULT_TREE = "DEFAULT_GEDCOM"
NEXT_XREF = "next_xref"

# User preferences
PREF_AUTO_ACCEPT_EDITS = "auto_accept"

# User-tree preferences
PREF_TREE_ACCOUNT_XREF = "gedcomid"
PREF_TREE_DEFAULT_XREF = "default-xref"
PREF_TREE_ROLE = "canedit"

ROLE_ACCEPT = "accept"
ROLE_ADMIN = "admin"


def get_site_preference(session: Session, setting_name: str, default: str = "") -> str:
    value = session.execute(
        select(SiteSetting.setting_value).where(SiteSetting.setting_name == setting_name)
    ).scalar_one_or_none()
    return default if value is None else value


def set_site_preference(session: Session, setting_name: str, setting_value: str) -> None:
    setting = session.get(SiteSetting, setting_name)
    if setting is None:
        session.add(SiteSetting(setting_name=setting_name, setting_value=setting_value))
    elif setting.setting_value != setting_value:
        setting.setting_value = setting_value
    else:
        return
    session.flush()
    logger.info('Site preference "%s" set to "%s"', setting_name, setting_value)


def get_user_preference(session: Session, user: User, setting_name: str, default: str = "") -> str:
    value = session.execute(
        select(UserSetting.setting_value).where(
            UserSetting.user_id == user.id,
            UserSetting.setting_name == setting_name,
        )
    ).scalar_one_or_none()
    return default if value is None else value


def set_user_preference(session: Session, user: User, setting_name: str, setting_value: str) -> None:
    setting = session.get(UserSetting, (user.id, setting_name))
    if setting is None:
        session.add(UserSetting(user_id=user.id, setting_name=setting_name, setting_value=setting_value))
    else:
        setting.setting_value = setting_value
    session.flush()


def auto_accepts_edits(session: Session, user: User) -> bool:
    return get_user_preference(session, user, PREF_AUTO_ACCEPT_EDITS) == "1"


def find_user(session: Session, user_name: str) -> User | None:
    return session.execute(select(User).where(User.user_name == user_name)).scalar_one_or_none()


def create_user(session: Session, user_name: str, real_name: str = "", email: str | None = None) -> User:
    user = User(user_name=user_name, real_name=real_name or user_name, email=email)
    session.add(user)
    session.flush()
    return user
