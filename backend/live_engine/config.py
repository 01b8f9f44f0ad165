from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    redis_url: str = "redis://localhost:6379/0"
    feed_channel: str = "transit:vehicles"
    feed_state_key: str = "transit:state"
    route_source_url: str = "http://localhost:3000/api"

    # Render clock
    frame_rate_hz: float = 10.0
    interpolation_duration_ms: int = 3000  # matches the feed tick
    interpolation_min_ms: int = 1000
    interpolation_max_ms: int = 6000
    heading_min_displacement_m: float = 3.0

    # Vehicle lifecycle
    stale_timeout_seconds: int = 30
    vehicle_ttl_seconds: int = 120
    max_snap_distance_m: float = 300.0

    viewport_padding_deg: float = 0.005
    suggestion_count: int = 3
    eta_push_interval_seconds: int = 2
    stop_refresh_hours: int = 24

    model_config = {"env_prefix": "", "case_sensitive": False}


settings = Settings()
