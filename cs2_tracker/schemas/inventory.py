"""Typed records flowing through the import / storage box diff engine"""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, computed_field


# ---------- parsed snapshot ----------

class Sticker(BaseModel):
    slot: Optional[int] = None
    name: str
    type: str = "Sticker"   # Sticker | Patch
    image_url: Optional[str] = None
    wear: Optional[float] = None


class Keychain(BaseModel):
    name: str
    image_url: Optional[str] = None


class NormalizedRecord(BaseModel):
    """One tradeable item parsed out of a snapshot"""
    asset_id: str
    class_id: str
    instance_id: str
    name: Optional[str] = None
    market_hash_name: Optional[str] = None
    float_value: Optional[float] = None
    pattern_index: Optional[int] = None
    inspect_link: Optional[str] = None
    is_stattrak: bool = False
    is_souvenir: bool = False
    stickers: Optional[List[Sticker]] = None
    keychain: Optional[Keychain] = None
    name_tag: Optional[str] = None


class UnmatchedRecord(BaseModel):
    """Snapshot record with no catalog entry; reported only, never stored"""
    name: str
    market_hash_name: str
    class_id: str
    asset_id: str


class StorageBoxDescriptor(BaseModel):
    """Storage unit metadata as declared inside a snapshot"""
    asset_id: Optional[str] = None
    name: str = "Storage Unit"
    item_count: int = 0
    modification_date: Optional[datetime] = None


# ---------- priced display entries ----------

class PricedSticker(Sticker):
    hash_name: str
    price: float = 0.0


class PricedKeychain(Keychain):
    hash_name: str
    price: float = 0.0


class DiffEntry(BaseModel):
    """Row of an import preview: an item to add or an item to remove"""
    selection_key: str                  # add-<asset_id> | remove-<asset_id>
    asset_id: Optional[str]
    item_id: int
    record_id: Optional[int] = None     # set for removals (existing item_user row)
    hash_name: str
    name: str
    float_value: Optional[float] = None
    pattern_index: Optional[int] = None
    is_stattrak: bool = False
    is_souvenir: bool = False
    name_tag: Optional[str] = None
    stickers: List[PricedSticker] = Field(default_factory=list)
    keychain: Optional[PricedKeychain] = None
    price: Optional[float] = None
    median_price: Optional[float] = None

    @computed_field
    @property
    def sticker_value(self) -> float:
        return round(sum(s.price for s in self.stickers), 2)

    @computed_field
    @property
    def keychain_value(self) -> float:
        return self.keychain.price if self.keychain else 0.0

    @computed_field
    @property
    def total_price(self) -> float:
        """Display total: base + stickers + charm."""
        return round((self.price or 0.0) + self.sticker_value + self.keychain_value, 2)

    @computed_field
    @property
    def tradeable_value(self) -> float:
        """Base + charm. Applied stickers cannot be taken off, so they add nothing."""
        return round((self.price or 0.0) + self.keychain_value, 2)


class ImportPreview(BaseModel):
    total_items: int = 0
    items_to_add: List[DiffEntry] = Field(default_factory=list)
    items_to_remove: List[DiffEntry] = Field(default_factory=list)
    unmatched_items: List[UnmatchedRecord] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    session_key: Optional[str] = None
    storage_box_count: int = 0

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


# ---------- staged payloads (held in the session store) ----------

class StagedItem(BaseModel):
    item_id: int
    data: NormalizedRecord


class StagedImport(BaseModel):
    user_id: int
    items_to_add: List[StagedItem] = Field(default_factory=list)
    items_to_remove: List[str] = Field(default_factory=list)     # asset ids
    storage_boxes: List[StorageBoxDescriptor] = Field(default_factory=list)


class StagedTransaction(BaseModel):
    type: Literal["deposit", "withdraw"]
    user_id: int
    storage_box_id: int
    items_to_move: List[int] = Field(default_factory=list)       # item_user ids
    storage_box: Optional[StorageBoxDescriptor] = None


# ---------- results ----------

class ApplyResult(BaseModel):
    total_processed: int = 0
    added_count: int = 0
    removed_count: int = 0
    error_count: int = 0
    errors: List[str] = Field(default_factory=list)
    skipped_items: List[str] = Field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return self.error_count == 0 and (self.added_count > 0 or self.removed_count > 0)


class MoveEntry(BaseModel):
    record_id: int
    asset_id: Optional[str]
    hash_name: str
    name: str
    float_value: Optional[float] = None
    pattern_index: Optional[int] = None


class DepositPreview(BaseModel):
    items_to_deposit: List[MoveEntry] = Field(default_factory=list)
    current_item_count: int = 0
    new_item_count: int = 0
    errors: List[str] = Field(default_factory=list)
    session_key: str = ""


class WithdrawPreview(BaseModel):
    items_to_withdraw: List[MoveEntry] = Field(default_factory=list)
    current_item_count: int = 0
    new_item_count: int = 0
    healed_asset_ids: int = 0
    errors: List[str] = Field(default_factory=list)
    session_key: str = ""


class TransactionResult(BaseModel):
    items_moved: int = 0
    success: bool = False
    errors: List[str] = Field(default_factory=list)
