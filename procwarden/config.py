"""Global configuration — loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


class ProcwardenSettings(BaseSettings):
    working_directory: Path = Path(".")
    timeout_s: float | None = None  # None disables the watchdog
    stream_stop_timeout_s: float | None = None  # None joins pumpers without a bound
    pump_buffer_size: int = 8192
    destroy_on_exit: bool = False  # kill live children when the interpreter exits

    model_config = {"env_prefix": "PROCWARDEN_"}


settings = ProcwardenSettings()
