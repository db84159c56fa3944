from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SharePointFile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str                                    # drive item id
    site_id: str
    label: str                                 # file name shown in the picker
    content_type: Optional[str] = Field(default=None, alias="contentType")


class SharePointUploadRequest(BaseModel):
    files: List[SharePointFile]


class WebScrapeRequest(BaseModel):
    url: str = Field(min_length=1)
    workspace_id: str = Field(min_length=1)
