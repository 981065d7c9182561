"""Browser tab models reported by the UI."""

from typing import Optional

from pydantic import BaseModel, Field


class TabSummary(BaseModel):
    """An open browser tab."""

    id: int
    url: str
    title: Optional[str] = None
    fav_icon_url: Optional[str] = Field(None, description="Tab favicon URL")
    pinned: bool = False
    group_id: Optional[int] = None


class TabWithStatus(TabSummary):
    """An open tab annotated with its stash status."""

    url_hash: str = ""
    stashed: bool = False
    item_id: Optional[str] = None
    stashable: bool = False
