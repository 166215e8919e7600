"""
ORM models

Tables:
  app_user     : account owning inventory records and storage boxes
  item         : CS2 item catalog (keyed by market hash name, synced externally)
  item_price   : price history samples per catalog item
  storage_box  : storage units: Steam boxes (asset_id set) or manual boxes (asset_id NULL)
  item_user    : one physically held item owned by a user

Inventory location:
  item_user.storage_box_id IS NULL  → active (main) inventory
  item_user.storage_box_id = <box>  → stored in that box

Identity:
  item_user.asset_id is assigned by Steam and is NOT stable for items that
  pass through a storage unit; withdraw previews re-match by properties and
  heal the stored asset_id.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cs2_tracker.core.database import Base


def wear_category_for(float_value: Optional[float]) -> Optional[str]:
    """FN/MW/FT/WW/BS bucket for a wear float, None when unknown."""
    if float_value is None:
        return None
    if 0.0 <= float_value < 0.07:
        return "FN"
    if 0.07 <= float_value < 0.15:
        return "MW"
    if 0.15 <= float_value < 0.38:
        return "FT"
    if 0.38 <= float_value < 0.45:
        return "WW"
    if 0.45 <= float_value <= 1.0:
        return "BS"
    return None


class User(Base):
    __tablename__ = "app_user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(180), unique=True, nullable=False)
    steam_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class Item(Base):
    """CS2 catalog entry. Matched against snapshots by market hash name."""

    __tablename__ = "item"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hash_name: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    rarity: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    stattrak_available: Mapped[bool] = mapped_column(Boolean, default=False)
    souvenir_available: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())


class ItemPrice(Base):
    """Price sample for a catalog item (one row per item per sample time)."""

    __tablename__ = "item_price"
    __table_args__ = (
        UniqueConstraint("item_id", "price_date", name="uq_item_price_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(ForeignKey("item.id", ondelete="CASCADE"), index=True, nullable=False)
    price_date: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    median_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    volume: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    source: Mapped[str] = mapped_column(String(32), default="steam", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class StorageBox(Base):
    """
    Storage unit.

    Steam boxes carry the unit's asset_id and are refreshed from snapshots
    (name, reported_count, modification_date). Manual boxes have no
    asset_id and are only ever changed by explicit user actions.

    reported_count is what Steam claims the unit holds; it may differ from
    the number of item_user rows pointing at the box.
    """

    __tablename__ = "storage_box"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("app_user.id", ondelete="CASCADE"), index=True, nullable=False)
    asset_id: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    reported_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    modification_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def is_manual(self) -> bool:
        return self.asset_id is None


class ItemUser(Base):
    """One held item. storage_box_id NULL means it sits in the active inventory."""

    __tablename__ = "item_user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("app_user.id", ondelete="CASCADE"), index=True, nullable=False)
    item_id: Mapped[int] = mapped_column(ForeignKey("item.id", ondelete="RESTRICT"), index=True, nullable=False)
    item: Mapped[Item] = relationship(lazy="selectin")

    asset_id: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)
    float_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pattern_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    wear_category: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    inspect_link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    is_stattrak: Mapped[bool] = mapped_column(Boolean, default=False)
    is_souvenir: Mapped[bool] = mapped_column(Boolean, default=False)
    stattrak_counter: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # [{slot, name, type, image_url, wear}], {name, image_url}
    stickers: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    keychain: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    name_tag: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    storage_box_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("storage_box.id", ondelete="SET NULL"), index=True, nullable=True
    )

    acquired_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    acquired_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())
