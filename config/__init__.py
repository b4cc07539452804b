"""
Configuration Management Module
Environment-driven settings for every collaborator.
"""
from .settings import (
    Settings,
    LLMSettings,
    SearchSettings,
    ScraperSettings,
    GenerationSettings,
    StoreSettings,
    NotificationSettings,
    get_settings,
    get_llm_settings,
    get_search_settings,
    get_scraper_settings,
    get_generation_settings,
    get_store_settings,
)

__all__ = [
    "Settings",
    "LLMSettings",
    "SearchSettings",
    "ScraperSettings",
    "GenerationSettings",
    "StoreSettings",
    "NotificationSettings",
    "get_settings",
    "get_llm_settings",
    "get_search_settings",
    "get_scraper_settings",
    "get_generation_settings",
    "get_store_settings",
]
