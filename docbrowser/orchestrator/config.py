from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class BrowserSettings(BaseSettings):
    DOCBROWSER_PAGE_SIZE: int = Field(default=100, ge=1, le=10000)
    DOCBROWSER_CACHE_TTL_SECONDS: float = Field(default=300.0, gt=0)
    DOCBROWSER_DEBOUNCE_SECONDS: float = Field(default=0.5, ge=0)
    DOCBROWSER_MAX_INIT_ATTEMPTS: int = Field(default=3, ge=1)
    # filter history, per connection:namespace
    DOCBROWSER_SAVED_HISTORY_LIMIT: int = Field(default=20, ge=1)
    DOCBROWSER_RECENT_HISTORY_LIMIT: int = Field(default=30, ge=1)
    # max distinct array elements kept as samples by attribute discovery
    DOCBROWSER_DISCOVERY_SAMPLE_LIMIT: int = Field(default=1000, ge=1)

    class Config:
        env_file = ".env"
        case_sensitive = False
