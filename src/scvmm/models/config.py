"""Configuration models."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class AgentConfig(BaseModel):
    """Controller agent configuration."""
    store_dir: str = Field(default="./store")
    script_dir: Optional[str] = Field(default=None, description="Directory of *.ps1 function bodies")
    log_level: str = Field(default="INFO")
    workers: int = Field(default=4, ge=1)
    resync_interval: int = Field(default=600, ge=5)
    extra_debug: bool = Field(default=False)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class WinRMConfig(BaseModel):
    """Remote session transport settings."""
    port: int = Field(default=5985, ge=1, le=65535)
    ssl: bool = Field(default=False)
    auth: str = Field(default="ntlm")
    cert_validation: bool = Field(default=True)
    operation_timeout: int = Field(default=60, ge=1)
    read_timeout: int = Field(default=90, ge=1)

    @field_validator("read_timeout")
    @classmethod
    def validate_read_timeout(cls, v, info):
        """The read timeout must outlast the operation timeout."""
        operation_timeout = info.data.get("operation_timeout")
        if operation_timeout is not None and v <= operation_timeout:
            raise ValueError("read_timeout must be greater than operation_timeout")
        return v


class RequeueConfig(BaseModel):
    """Requeue intervals in seconds."""
    short: int = Field(default=10, ge=1, description="After a mutating call")
    poll: int = Field(default=30, ge=1, description="While waiting for a remote transition")
    long: int = Field(default=60, ge=1, description="While waiting for guest network details")
    error: int = Field(default=60, ge=1, description="After a structured remote error")


class ControllerConfig(BaseModel):
    """Main configuration model."""
    agent: AgentConfig = Field(default_factory=AgentConfig)
    winrm: WinRMConfig = Field(default_factory=WinRMConfig)
    requeue: RequeueConfig = Field(default_factory=RequeueConfig)

    class Config:
        """Pydantic config."""
        extra = "ignore"
