#!filepath: desim/config/log_config.py
from typing import Optional

from pydantic import BaseModel


class LogConfig(BaseModel):
    # None = 只输出到 stderr
    dir: Optional[str] = None
    rotation: str = "1 day"
    retention: str = "30 days"
    level: str = "INFO"
