from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):

    replicate_api_token: str = Field(
        default="",
        description="Replicate API token (must start with token_prefix)"
    )
    token_prefix: str = Field(
        default="r8_",
        description="Literal prefix every valid token carries"
    )
    model_version: str = Field(
        # nightmareai/real-esrgan
        default="4f20845348825fcb41e9d1a38f32230da37f818f2d011f0a2007a3c39050d032",
        description="Model version submitted with each prediction"
    )
    proxy_base_url: str = Field(
        default="http://localhost:8888",
        description="Origin serving the application-side API proxy"
    )
    proxy_prefix: str = Field(
        default="/api",
        description="Path prefix the application proxy forwards to the remote API"
    )
    remote_api_prefix: str = Field(
        default="https://api.replicate.com/v1",
        description="Remote API host prefix rewritten onto proxy_prefix"
    )
    fetch_proxy_prefix: str = Field(
        default="https://thingproxy.freeboard.io/fetch/",
        description="Cross-origin fetch proxy prepended to artifact URLs"
    )
    poll_interval: float = Field(
        default=2.5,
        gt=0.0,
        description="Seconds between status polls"
    )
    poll_deadline: float = Field(
        default=180.0,
        gt=0.0,
        description="Seconds allowed for polling, counted from the first poll"
    )
    http_timeout: float = Field(
        default=60.0,
        gt=0.0,
        description="Per-request HTTP timeout in seconds"
    )
    state_dir: str = Field(
        default="./.enhancer",
        description="Directory holding the credit and language stores"
    )
    service_port: int = Field(
        default=18013,
        ge=1,
        le=65535,
        description="Port of the enhancement service"
    )

    class Config:
        env_file = ".env"
        env_prefix = "ENHANCER_"
        case_sensitive = False


settings = Settings()
