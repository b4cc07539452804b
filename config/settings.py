"""
Settings Configuration
Pydantic-validated configuration for every collaborator and engine.
"""
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class LLMSettings(BaseSettings):
    """Generative model configuration"""
    provider: str = Field(default="anthropic", description="LLM provider: anthropic, openai")
    model_name: Optional[str] = Field(default=None, description="Model name (provider default when empty)")
    temperature: float = Field(default=0.7, description="Default sampling temperature")
    max_tokens: int = Field(default=4096, description="Default output token ceiling")
    timeout: float = Field(default=600.0, description="Per-request timeout (seconds)")
    max_retries: int = Field(default=3, description="Attempts for transient model errors")
    base_url: Optional[str] = Field(default=None, description="OpenAI-compatible base URL")

    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API Key")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API Key")

    class Config:
        env_prefix = "LLM_"


class SearchSettings(BaseSettings):
    """Web search (Google Custom Search JSON API) configuration"""
    google_api_key: Optional[str] = Field(default=None, description="Google API key")
    google_cx: Optional[str] = Field(default=None, description="Programmable search engine id")
    endpoint: str = Field(default="https://www.googleapis.com/customsearch/v1", description="Search endpoint")
    max_results: int = Field(default=15, description="Upper bound on collected results")
    page_size: int = Field(default=10, description="Results per page")
    page_delay: float = Field(default=0.5, description="Delay between pages (seconds)")
    timeout: float = Field(default=10.0, description="Per-page timeout (seconds)")
    max_retries: int = Field(default=3, description="Attempts per page on transient errors")

    class Config:
        env_prefix = "SEARCH_"


class ScraperSettings(BaseSettings):
    """Scrape collaborator configuration"""
    service_url: Optional[str] = Field(default=None, description="External scrape service base URL")
    discovered_timeout: float = Field(default=100.0, description="Timeout per discovered URL (seconds)")
    user_timeout: float = Field(default=300.0, description="Timeout per user-supplied URL (seconds)")
    discovered_budget: int = Field(default=150_000, description="Shared character budget for discovered sources")
    user_budget: int = Field(default=200_000, description="Shared character budget for user sources")
    min_length: int = Field(default=500, description="Shortest usable extracted text")
    failure_markers: List[str] = Field(
        default_factory=lambda: [
            "403 Client Error",
            "SSL Error",
            "Access Denied",
            "Forbidden",
            "Just a moment...",
            "Enable JavaScript and cookies",
        ],
        description="Substrings that mark an access-denied or error page",
    )
    inter_fetch_delay: float = Field(default=2.0, description="Pause between sequential fetches (seconds)")
    max_retries: int = Field(default=2, description="Attempts per URL on transport errors")

    class Config:
        env_prefix = "SCRAPER_"


class GenerationSettings(BaseSettings):
    """Engine thresholds and ratios"""
    user_source_threshold: int = Field(default=200_000, description="Skip discovery above this many user-source chars")
    planning_threshold: int = Field(default=10_000, description="Below this length the writer improvises the skeleton")
    multi_writer_threshold: int = Field(default=50_000, description="From this length several writers are used")
    chars_per_writer: int = Field(default=48_000, description="Length handled by one writer")
    max_writers: int = Field(default=7, description="Upper bound on writers")
    chars_per_section: int = Field(default=3_000, description="Length per top-level section in single plans")
    max_subsections: int = Field(default=3, description="Subsections allowed per section in single plans")
    context_window_chars: int = Field(default=5_000, description="Trailing context passed to later writers")
    source_prompt_chars: int = Field(default=50_000, description="Source material cap per writer prompt")
    preview_chars: int = Field(default=20_000, description="Preview size per candidate during selection")
    min_selected: int = Field(default=3, description="Minimum sources kept by selection")
    max_selected: int = Field(default=8, description="Maximum sources kept by selection")
    query_max_words: int = Field(default=8, description="Word cap on the search query")
    continuation_attempts: int = Field(default=3, description="Continuation calls per truncated assignment")
    heading_similarity: float = Field(default=0.8, description="Similarity at which a planned heading counts as written")
    ending_window_chars: int = Field(default=800, description="Tail inspected by the ending check")
    chars_per_token: float = Field(default=4.0, description="Characters per output token estimate")
    token_margin: float = Field(default=1.85, description="Multiplier over the estimated token need")
    token_floor: int = Field(default=1_000, description="Smallest output token ceiling")
    token_ceiling: int = Field(default=64_000, description="Largest output token ceiling")
    writer_temperature: float = Field(default=0.7, description="Temperature for prose")
    planner_temperature: float = Field(default=0.5, description="Temperature for skeletons")
    utility_temperature: float = Field(default=0.3, description="Temperature for query/selection/checks")

    class Config:
        env_prefix = "GENERATION_"


class StoreSettings(BaseSettings):
    """Job store configuration"""
    backend: str = Field(default="file", description="memory or file")
    path: str = Field(default="./data/jobs", description="Directory for the file store")
    write_retries: int = Field(default=3, description="Attempts per store write")
    write_retry_wait: float = Field(default=0.5, description="Base wait between write attempts (seconds)")

    class Config:
        env_prefix = "STORE_"


class NotificationSettings(BaseSettings):
    """Order notification configuration"""
    webhook_url: Optional[str] = Field(default=None, description="Chat webhook for completed/failed orders")
    log_dir: Optional[str] = Field(default="./data/notifications", description="Directory for the jsonl log")
    timeout: float = Field(default=10.0, description="Webhook timeout (seconds)")

    class Config:
        env_prefix = "NOTIFY_"


class Settings(BaseSettings):
    """Root settings aggregating every section"""

    llm: LLMSettings = Field(default_factory=LLMSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    scraper: ScraperSettings = Field(default_factory=ScraperSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    notification: NotificationSettings = Field(default_factory=NotificationSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """Load settings after applying the given .env file"""
        if env_path is None:
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        return cls(
            llm=LLMSettings(),
            search=SearchSettings(),
            scraper=ScraperSettings(),
            generation=GenerationSettings(),
            store=StoreSettings(),
            notification=NotificationSettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings"""
    return Settings.load_from_env_file()


def get_llm_settings() -> LLMSettings:
    return get_settings().llm


def get_search_settings() -> SearchSettings:
    return get_settings().search


def get_scraper_settings() -> ScraperSettings:
    return get_settings().scraper


def get_generation_settings() -> GenerationSettings:
    return get_settings().generation


def get_store_settings() -> StoreSettings:
    return get_settings().store
