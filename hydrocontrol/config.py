"""
config.py — Runtime settings
=============================
Read from the environment (prefix HYDROCONTROL_) or a local .env file:

    HYDROCONTROL_TRAINING_STEP_INTERVAL=1.0 uvicorn hydrocontrol.main:app
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "HydroControl API"
    log_level: str = "INFO"
    seed_sample_data: bool = True
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]

    # Training
    training_step_interval: float = Field(default=5.0, gt=0)
    milestone_interval: int = Field(default=100, ge=1)
    exploration_floor: float = 0.01

    # Live status stream
    status_interval: float = Field(default=5.0, gt=0)
    progress_interval: float = Field(default=2.0, gt=0)

    # Simulated collaborators
    engine_latency: float = 0.0
    random_seed: Optional[int] = None

    model_config = {"env_prefix": "HYDROCONTROL_", "env_file": ".env", "extra": "ignore"}
