from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PARKFINDER_", env_file=".env", extra="ignore")

    log_level: str = "INFO"

    # Live report matching: a report within this distance updates the existing spot.
    report_match_threshold_m: float = 20.0
    verification_confirmations: int = 3
    discovery_bonus_points: int = 20

    # Deduplication
    dedup_threshold_m: float = 5.0
    dedup_grid_size_deg: float = 0.00005
    dedup_strategy: str = "grid"  # "grid" | "exact"

    # Ingestion
    persist_batch_size: int = 500
    request_timeout_s: float = 30.0
    rate_limit_retries: int = 3
    rate_limit_backoff_s: float = 2.0

    opendata_base_url: str = "https://data.sfgov.org/resource"
    opendata_app_token: str | None = None

    meters_dataset: str = "8vzz-qzz9"
    meters_page_size: int = 5000
    meters_page_delay_s: float = 0.5

    census_dataset: str = "fq9u-a2g7"
    census_page_size: int = 1000
    census_page_delay_s: float = 0.5

    citations_dataset: str = "ab4h-6ztd"
    citations_page_size: int = 5000
    citations_page_delay_s: float = 1.0
    citations_max_records: int = 50000
    citations_months_back: int = 6
    citation_cluster_deg: float = 0.0001
    citation_min_cluster: int = 3

    overpass_url: str = "https://overpass-api.de/api/interpreter"
    overpass_region_delay_s: float = 2.0

    google_places_api_key: str | None = None
    google_places_url: str = "https://places.googleapis.com/v1/places:searchNearby"
    google_places_timeout_s: float = 10.0
    google_places_page_delay_s: float = 2.0
    google_places_search_radius_m: float = 1500.0

    # Local cache path (CSV/GeoJSON/JSON) for the file-backed source
    local_file_path: str | None = None
    local_file_confidence: float = 0.90

    # Read side
    default_radius_m: float = 500.0
    static_cache_ttl_s: int = 1800
    places_cache_ttl_s: int = 3600
    cache_sweep_interval_s: float = 300.0


settings = Settings()
