"""Pydantic models for the Steam Community inventory JSON export"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _SteamModel(BaseModel):
    # Steam mixes numeric and string ids depending on the endpoint
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")


class SteamAsset(_SteamModel):
    """One row of the assets array"""
    assetid: str
    classid: str
    instanceid: str = "0"
    amount: str = "1"


class SteamTag(_SteamModel):
    category: str = ""
    internal_name: str = ""
    localized_tag_name: Optional[str] = None


class SteamDescriptionLine(_SteamModel):
    """Entry of a description's nested descriptions array (HTML-ish text blob)"""
    name: str = ""
    value: str = ""
    type: Optional[str] = None


class SteamAction(_SteamModel):
    link: str = ""
    name: Optional[str] = None


class SteamDescription(_SteamModel):
    """One row of the descriptions array, keyed by classid + instanceid"""
    classid: str
    instanceid: str = "0"
    name: str = ""
    market_hash_name: str = ""
    type: Optional[str] = None
    icon_url: Optional[str] = None
    tradable: int = 0
    marketable: int = 0
    tags: List[SteamTag] = Field(default_factory=list)
    descriptions: List[SteamDescriptionLine] = Field(default_factory=list)
    actions: List[SteamAction] = Field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.classid}_{self.instanceid}"


class SteamAssetProperty(_SteamModel):
    propertyid: int
    float_value: Optional[float] = None
    int_value: Optional[int] = None
    string_value: Optional[str] = None


class SteamAssetProperties(_SteamModel):
    assetid: str
    asset_properties: List[SteamAssetProperty] = Field(default_factory=list)


class SteamInventorySnapshot(_SteamModel):
    """Full inventory export: three parallel arrays"""
    assets: List[SteamAsset] = Field(default_factory=list)
    descriptions: List[SteamDescription] = Field(default_factory=list)
    asset_properties: List[SteamAssetProperties] = Field(default_factory=list)
    total_inventory_count: int = 0
    more_items: Optional[int] = None
    last_assetid: Optional[str] = None
