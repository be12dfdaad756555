from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.models import BackendKind, ResourceLimits


class IsolateConfig(BaseModel):
    binary: str = "isolate"
    box_root: Path = Path("/var/local/lib/isolate")  # used only if --init prints nothing
    use_cgroups: bool = False
    meta_dir: Path = Path("/tmp/codejudge-meta")
    build_processes: int = 64
    run_processes: int = 1
    extra_time_seconds: float = 0.5
    grace_seconds: float = 1.0
    path_env: str = "/usr/local/bin:/usr/bin:/bin"


class ContainerConfig(BaseModel):
    binary: str = "docker"
    name_prefix: str = "codejudge"
    images: Dict[str, str] = {}   # language -> image, overrides the strategy default
    user: str = "65534:65534"
    network: str = "none"
    workdir: str = "/tmp"
    pids_limit: int = 64
    enforce_memory: bool = True
    grace_seconds: float = 1.0


class DefaultLimits(BaseModel):
    cpu_time_seconds: float = 2.0
    wall_time_seconds: float = 5.0
    memory_kib: int = 256 * 1024

    def to_limits(self) -> ResourceLimits:
        return ResourceLimits(self.cpu_time_seconds, self.wall_time_seconds, self.memory_kib)


class Settings(BaseSettings):
    # ---- core ----
    backend: BackendKind = BackendKind.ISOLATE
    staging_dir: Path = Path("jobs")
    max_output_bytes: int = 64 * 1024
    build_timeout_seconds: float = 30.0
    acquire_timeout_seconds: float = 30.0
    # execution-unit ids: isolate box ids, container name suffixes
    unit_id_base: int = 0
    unit_count: int = 16

    # ---- backends ----
    isolate: IsolateConfig = Field(default_factory=IsolateConfig)
    container: ContainerConfig = Field(default_factory=ContainerConfig)

    # ---- used by the HTTP layer when a request omits limits ----
    default_limits: DefaultLimits = Field(default_factory=DefaultLimits)

    # env prefix SBX_*, nested via SBX_ISOLATE__BINARY=...
    model_config = SettingsConfigDict(env_prefix="SBX_", env_nested_delimiter="__", extra="ignore")


_SECTIONS = ("isolate", "container", "default_limits")


def _merge(base: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for key, value in data.items():
        if key in _SECTIONS:
            # a malformed section keeps its defaults
            if isinstance(value, dict):
                out[key] = {**(base.get(key) or {}), **value}
            continue
        out[key] = value
    return out


def load_settings() -> Settings:
    # 0) base from SBX_* env
    s = Settings()

    # 1) conf/sandbox.yaml (or SANDBOX_CONF)
    sbx_yaml = os.environ.get("SANDBOX_CONF", "conf/sandbox.yaml")
    try:
        with open(sbx_yaml, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    # 2) YAML over env-derived values
    s = Settings.model_validate(_merge(s.model_dump(), data))

    # 3) explicit env switch wins over the file
    if os.getenv("SBX_BACKEND"):
        s = s.model_copy(update={"backend": BackendKind(os.environ["SBX_BACKEND"])})
    return s
