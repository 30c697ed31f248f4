"""
Read side of the menu and flavor catalog used by the ticket builder.

Order counts are advisory statistics. They are bumped in the caller's
transaction with a single UPDATE so concurrent tickets never lose an increment
to a read-modify-write.
"""
from typing import Optional

from sqlalchemy.orm import Session

import models


def get_menu_item(db: Session, menu_item_id: int) -> Optional[models.MenuItem]:
    return db.query(models.MenuItem).filter(models.MenuItem.id == menu_item_id).first()


def find_flavor_by_name(db: Session, name: str) -> Optional[models.WingFlavor]:
    return db.query(models.WingFlavor).filter(models.WingFlavor.name == name).first()


def increment_menu_item_count(db: Session, menu_item_id: int, amount: int = 1) -> None:
    db.query(models.MenuItem).filter(models.MenuItem.id == menu_item_id).update(
        {models.MenuItem.order_count: models.MenuItem.order_count + amount},
        synchronize_session=False,
    )


def increment_flavor_count(db: Session, flavor_id: int, amount: int = 1) -> None:
    db.query(models.WingFlavor).filter(models.WingFlavor.id == flavor_id).update(
        {models.WingFlavor.order_count: models.WingFlavor.order_count + amount},
        synchronize_session=False,
    )


def get_staff_member(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()
