"""Pydantic models describing a packaging run."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError

DEFAULT_CONFIG_NAME = "bindings-pack.yaml"
TYPECHECK_COMMAND = ["npx", "tsc", "-p", "tsconfig.cloudflare.json", "--outDir", "{output_dir}"]


class WorkerHooks(BaseModel):
    module: str = Field(
        default="../bindings/js/web/worker-helpers.js",
        description="Module the factory imports the worker start/stop hooks from.",
    )
    names: List[str] = Field(default_factory=lambda: ["startWorkers", "terminateWorkers"])

    model_config = ConfigDict(extra="forbid")


class EdgeTargetConfig(BaseModel):
    output_dir: Path = Path("dist/cloudflare")
    bindings_dir: Path = Path("src/bindings/compiled/web_bindings")
    loader_module: str = "plonk_wasm.js"
    payload_binding: str = "wasmCode"
    location_placeholder: str = '"/"'
    default_binding: str = "__wbg_init"
    factory_name: str = "plonkWasm"
    worker_hooks: WorkerHooks = Field(default_factory=WorkerHooks)
    typecheck_command: List[str] = Field(default_factory=lambda: list(TYPECHECK_COMMAND))
    assets: Dict[str, str] = Field(
        default_factory=lambda: {
            "src/bindings/compiled/web_bindings/": "{output_dir}/web_bindings/",
            "src/snarky.d.ts": "{output_dir}/snarky.d.ts",
            "src/snarky.web.js": "{output_dir}/snarky.js",
            "src/bindings/js/web/": "{output_dir}/bindings/js/web/",
        },
        description="Static assets copied into the output root (source -> destination).",
    )
    minify_scripts: List[str] = Field(default_factory=lambda: ["web_bindings/o1js_web.bc.js"])
    published_loader: str = "web_bindings/plonk_wasm.js"
    platform_suffix: str = ".web"
    external: List[str] = Field(default_factory=lambda: ["*.bc.js"])
    resolve_extensions: List[str] = Field(default_factory=lambda: [".js", ".ts"])
    drop_labels: List[str] = Field(default_factory=lambda: ["CJS"])
    verbatim_prefix: str = "string:"
    payload_extension: str = ".wasm"

    model_config = ConfigDict(extra="forbid")

    @property
    def loader_path(self) -> Path:
        return self.bindings_dir / self.loader_module

    @property
    def temporary_loader_path(self) -> Path:
        stem = self.loader_module.rsplit(".", 1)[0]
        return self.bindings_dir / f"{stem}.tmp.js"


class ServerTargetConfig(BaseModel):
    output_dir: Path = Path("dist/cloudflare-node")
    bindings_dir: Path = Path("src/bindings/compiled/node_bindings")
    staged_bindings_name: str = "_node_bindings"
    typecheck_command: List[str] = Field(default_factory=lambda: list(TYPECHECK_COMMAND))
    assets: List[str] = Field(
        default_factory=lambda: [
            "src/snarky.d.ts",
            "src/bindings/compiled/_node_bindings",
            "src/bindings/compiled/node_bindings/plonk_wasm.d.cts",
        ]
    )
    source_prefix: str = "src/"
    companion_suffixes: List[str] = Field(default_factory=lambda: ["bc.cjs", "plonk_wasm.cjs"])
    resolve_extensions: List[str] = Field(default_factory=lambda: [".node.js", ".ts", ".js"])
    drop_labels: List[str] = Field(default_factory=lambda: ["CJS"])
    host_platform: Optional[str] = Field(
        default=None,
        description="Platform used for the inline table; defaults to the running host.",
    )

    model_config = ConfigDict(extra="forbid")


class BuildConfig(BaseModel):
    """Top-level configuration for both targets."""

    project_root: Path = Path(".")
    entry: Path = Path("src/index.ts")
    esbuild_command: List[str] = Field(default_factory=lambda: ["npx", "esbuild"])
    target: str = "esnext"
    edge: EdgeTargetConfig = Field(default_factory=EdgeTargetConfig)
    server: ServerTargetConfig = Field(default_factory=ServerTargetConfig)

    model_config = ConfigDict(extra="forbid")

    @property
    def root(self) -> Path:
        return self.project_root.resolve()

    def path(self, value: Path | str) -> Path:
        """Resolve ``value`` against the project root."""

        candidate = Path(value)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        return candidate

    @property
    def entry_script(self) -> str:
        """File name the type-check step emits for the entry point."""

        return Path(self.entry).with_suffix(".js").name


def load_config(path: Optional[Path] = None, *, project_root: Optional[Path] = None) -> BuildConfig:
    """Load configuration from YAML, falling back to defaults when absent."""

    payload: Dict[str, object] = {}
    if path is not None:
        try:
            loaded = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        except OSError as exc:
            raise ConfigError(f"Unable to read config {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config {path} must contain a mapping.")
        payload = loaded
    if project_root is not None:
        payload = {**payload, "project_root": str(project_root)}
    elif path is not None and "project_root" not in payload:
        payload = {**payload, "project_root": str(Path(path).resolve().parent)}
    try:
        return BuildConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


def discover_config(project_root: Path) -> Optional[Path]:
    candidate = Path(project_root) / DEFAULT_CONFIG_NAME
    return candidate if candidate.is_file() else None
