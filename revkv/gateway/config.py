"""
Configuration for the revkv HTTP gateway.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Gateway configuration loaded from environment."""

    host: str = Field(default="127.0.0.1", description="Gateway bind host")
    port: int = Field(default=2379, description="Gateway bind port")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins",
    )

    # Range defaults
    default_list_limit: int = Field(
        default=-1,
        description="Range limit when the request gives none (<= 0 = unbounded)",
    )

    model_config = {"env_prefix": "REVKV_GATEWAY_"}
