"""
Pydantic models for broker configuration.

Every field has a default so an empty or missing broker.yml is valid.
Unknown keys are ignored to keep older config files loadable.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from deskbroker.config.settings import DEFAULT_HEIGHT, DEFAULT_WIDTH


class AllocatorConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    display_base: int = 100
    export_port_base: int = 5900
    bridge_port_base: int = 6080
    max_sessions: int = 0
    reclaim: bool = True
    probe_ports: bool = False


class ProgramsConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    display: str = "Xvfb"
    window_manager: str = "fluxbox"
    frame_export: str = "x11vnc"
    bridge: str = "websockify"
    application: str = "chromium"
    cvt: str = "cvt"
    xrandr: str = "xrandr"


class ApplicationConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    chromium_flags: bool = True
    extra_args: list[str] = []
    extensions_dir: str = ""
    profile_template: str = ""


class StartupConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    display_settle_seconds: float = 0.5
    wm_settle_seconds: float = 0.5
    wait_for_display: bool = True
    display_timeout: float = 10.0
    wait_for_export: bool = False
    export_timeout: float = 10.0


class GeometryConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    output: str = "screen"
    refresh_rate: float = 60.0
    grace_seconds: float = 0.5
    command_timeout: float = 5.0


class SessionsConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    workdir_root: str = ""
    workdir_prefix: str = "desktop"
    bridge_bind: str = "0.0.0.0"
    view_only: bool = False
    default_width: int = DEFAULT_WIDTH
    default_height: int = DEFAULT_HEIGHT
    fail_on_helper_exit: bool = True
    terminate_timeout: float = 5.0


class RateLimitingConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    default_limit: str = "200/minute"
    admin_limit: str = "30/minute"


class SecurityConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    rate_limiting: RateLimitingConfig = RateLimitingConfig()


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    level: str = "INFO"
    # Level at which child stdout/stderr lines are logged
    process_output: str = "DEBUG"


class BrokerSettings(BaseModel):
    """Root settings model mirroring broker.yml structure."""

    model_config = ConfigDict(extra="ignore")

    allocator: AllocatorConfig = AllocatorConfig()
    programs: ProgramsConfig = ProgramsConfig()
    application: ApplicationConfig = ApplicationConfig()
    startup: StartupConfig = StartupConfig()
    geometry: GeometryConfig = GeometryConfig()
    sessions: SessionsConfig = SessionsConfig()
    security: SecurityConfig = SecurityConfig()
    logging: LoggingConfig = LoggingConfig()
