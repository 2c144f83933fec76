"""Per-target build pipelines for the edge and server artifacts."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .bundler import Bundler, BuildOptions, EsbuildBundler, TransformOptions
from .commands import CommandRunner, render_command, run_command
from .config import BuildConfig, EdgeTargetConfig
from .errors import BuildError, FileSystemFailure
from .plugins import (
    BinaryPayloadPlugin,
    CompanionBinaryModulePlugin,
    ExternalNativeModulePlugin,
    VerbatimTextPlugin,
)
from .publish import ArtifactPublisher
from .rewrite import RewriteOptions, rewrite_post_bundle, rewrite_pre_bundle
from .utils import read_text, write_text

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    IDLE = "idle"
    SOURCE_REWRITTEN = "source_rewritten"
    BUNDLED = "bundled"
    POST_REWRITTEN = "post_rewritten"
    REPACKAGED_BUNDLED = "repackaged_bundled"
    PUBLISHED = "published"
    DONE = "done"


EDGE_STAGES: Tuple[Stage, ...] = (
    Stage.IDLE,
    Stage.SOURCE_REWRITTEN,
    Stage.BUNDLED,
    Stage.POST_REWRITTEN,
    Stage.REPACKAGED_BUNDLED,
    Stage.PUBLISHED,
    Stage.DONE,
)
SERVER_STAGES: Tuple[Stage, ...] = (Stage.IDLE, Stage.BUNDLED, Stage.PUBLISHED, Stage.DONE)


@dataclass
class BuildContext:
    config: BuildConfig
    bundler: Bundler
    publisher: ArtifactPublisher
    runner: CommandRunner = run_command


@dataclass
class BuildResult:
    """Outcome of one target pipeline."""

    target: str
    sequence: Tuple[Stage, ...]
    stages: List[Stage] = field(default_factory=lambda: [Stage.IDLE])
    entry: Optional[Path] = None
    files: List[Path] = field(default_factory=list)

    @property
    def stage(self) -> Stage:
        return self.stages[-1]

    def advance(self, stage: Stage) -> None:
        expected = self.sequence[len(self.stages)] if len(self.stages) < len(self.sequence) else None
        if stage is not expected:
            raise BuildError(f"Target '{self.target}' cannot move from {self.stage.value} to {stage.value}.")
        self.stages.append(stage)
        logger.info("[%s] %s", self.target, stage.value)

    def to_dict(self) -> Dict[str, object]:
        return {
            "target": self.target,
            "stage": self.stage.value,
            "stages": [stage.value for stage in self.stages],
            "entry": str(self.entry) if self.entry else None,
            "files": [str(path) for path in self.files],
        }


@dataclass(frozen=True)
class TargetSpec:
    name: str
    description: str
    runner: Callable[[BuildContext], Awaitable[BuildResult]]


_TARGETS: Dict[str, TargetSpec] = {}


def register_target(spec: TargetSpec) -> None:
    if spec.name in _TARGETS:
        raise ValueError(f"Target '{spec.name}' already registered.")
    _TARGETS[spec.name] = spec


def get_target(name: str) -> TargetSpec:
    try:
        return _TARGETS[name]
    except KeyError as exc:
        available = ", ".join(sorted(_TARGETS))
        raise KeyError(f"Unknown target '{name}'. Available targets: {available}.") from exc


def list_targets() -> Iterable[TargetSpec]:
    return _TARGETS.values()


def create_context(
    config: BuildConfig,
    *,
    bundler: Optional[Bundler] = None,
    runner: Optional[CommandRunner] = None,
) -> BuildContext:
    return BuildContext(
        config=config,
        bundler=bundler or EsbuildBundler(config.root, config.esbuild_command),
        publisher=ArtifactPublisher(config.root),
        runner=runner or run_command,
    )


async def build_targets(names: Sequence[str], context: BuildContext) -> List[BuildResult]:
    """Run target pipelines one after another; the first failure aborts the run."""

    specs = [get_target(name) for name in names]
    results: List[BuildResult] = []
    for spec in specs:
        logger.info("Building %s target", spec.name)
        results.append(await spec.runner(context))
    return results


def edge_rewrite_options(edge: EdgeTargetConfig) -> RewriteOptions:
    return RewriteOptions(
        payload_binding=edge.payload_binding,
        location_placeholder=edge.location_placeholder,
        worker_hooks=tuple(edge.worker_hooks.names),
        default_binding=edge.default_binding,
        factory_name=edge.factory_name,
        worker_helpers_module=edge.worker_hooks.module,
    )


async def build_edge(context: BuildContext) -> BuildResult:
    """Build the edge bundle: inlined payload, loader exposed as a factory."""

    config = context.config
    edge = config.edge
    publisher = context.publisher
    result = BuildResult(target="edge", sequence=EDGE_STAGES)
    output_dir = config.path(edge.output_dir)
    loader_path = config.path(edge.loader_path)
    tmp_path = config.path(edge.temporary_loader_path)
    options = edge_rewrite_options(edge)
    payload_plugin = BinaryPayloadPlugin(edge.payload_extension)
    logger.info("Using bindings from %s", loader_path.parent)

    with publisher.scoped_temporary(tmp_path):
        source = await _read(loader_path)
        await _write(tmp_path, rewrite_pre_bundle(source, options))
        result.advance(Stage.SOURCE_REWRITTEN)

        await context.bundler.build(
            BuildOptions(
                entry_point=tmp_path,
                outfile=tmp_path,
                format="esm",
                target=config.target,
                plugins=[payload_plugin],
            )
        )
        result.advance(Stage.BUNDLED)

        bundled = await _read(tmp_path)
        await _write(tmp_path, rewrite_post_bundle(bundled, options))
        result.advance(Stage.POST_REWRITTEN)

        await _typecheck(context, edge.typecheck_command, output_dir)

        replacements = _placeholders(config, output_dir)
        assets = {source: render_command([target], replacements)[0] for source, target in edge.assets.items()}
        result.files.extend(await publisher.copy(assets, ignore=[tmp_path.name]))

        for script in edge.minify_scripts:
            await _minify(context, output_dir / script)

        published_loader = output_dir / edge.published_loader
        await publisher.copy({tmp_path: published_loader})
        result.files.append(published_loader)
        result.files.extend(
            await publisher.move_and_rename(f"**/*{edge.platform_suffix}.js", edge.platform_suffix, base=output_dir)
        )

        entry = output_dir / config.entry_script
        await context.bundler.build(
            BuildOptions(
                entry_point=entry,
                outfile=entry,
                format="esm",
                target=config.target,
                resolve_extensions=edge.resolve_extensions,
                plugins=[payload_plugin, VerbatimTextPlugin(edge.verbatim_prefix)],
                external=edge.external,
                drop_labels=edge.drop_labels,
                minify=True,
                log_level="error",
            )
        )
        result.advance(Stage.REPACKAGED_BUNDLED)

        await publisher.delete_temporary(tmp_path)

    result.entry = _verify_output(output_dir, entry, edge.platform_suffix)
    result.advance(Stage.PUBLISHED)
    result.advance(Stage.DONE)
    return result


async def build_server(context: BuildContext) -> BuildResult:
    """Build the server bundle: CommonJS entry with native and companion modules left external."""

    config = context.config
    server = config.server
    publisher = context.publisher
    result = BuildResult(target="server", sequence=SERVER_STAGES)
    output_dir = config.path(server.output_dir)
    bindings_dir = config.path(server.bindings_dir)
    logger.info("Using bindings from %s", bindings_dir)

    await publisher.copy({bindings_dir: bindings_dir.with_name(server.staged_bindings_name)})

    await _typecheck(context, server.typecheck_command, output_dir)

    output_prefix = _relative_posix(output_dir, config.root) + "/"
    result.files.extend(await publisher.copy_from_to(server.assets, server.source_prefix, output_prefix))

    entry = output_dir / config.entry_script
    await context.bundler.build(
        BuildOptions(
            entry_point=entry,
            outfile=entry,
            format="cjs",
            platform="node",
            target=config.target,
            resolve_extensions=server.resolve_extensions,
            plugins=[
                ExternalNativeModulePlugin(host_platform=server.host_platform),
                CompanionBinaryModulePlugin(output_dir, server.companion_suffixes),
            ],
            drop_labels=server.drop_labels,
            minify=False,
        )
    )
    result.advance(Stage.BUNDLED)

    result.entry = _verify_output(output_dir, entry, None)
    result.advance(Stage.PUBLISHED)
    result.advance(Stage.DONE)
    return result


async def _typecheck(context: BuildContext, template: Sequence[str], output_dir: Path) -> None:
    command = render_command(template, _placeholders(context.config, output_dir))
    logger.info("Running %s", " ".join(command))
    await context.runner(command, context.config.root)


async def _minify(context: BuildContext, path: Path) -> None:
    code = await _read(path)
    minified = await context.bundler.transform(
        code, TransformOptions(target=context.config.target, minify=True, log_level="error")
    )
    await _write(path, minified)
    logger.debug("Minified %s (%d -> %d bytes)", path, len(code), len(minified))


def _verify_output(output_dir: Path, entry: Path, suffix: Optional[str]) -> Path:
    if not entry.is_file():
        raise BuildError(f"Expected entry file {entry} was not produced.")
    if suffix:
        leftovers = sorted(output_dir.glob(f"**/*{suffix}.js"))
        if leftovers:
            names = ", ".join(str(path) for path in leftovers)
            raise BuildError(f"Platform-suffixed files remain after publishing: {names}")
    return entry


def _placeholders(config: BuildConfig, output_dir: Path) -> Dict[str, str]:
    return {
        "output_dir": _relative_posix(output_dir, config.root),
        "project_root": str(config.root),
    }


def _relative_posix(path: Path, root: Path) -> str:
    return Path(os.path.relpath(path, root)).as_posix()


async def _read(path: Path) -> str:
    try:
        return await asyncio.to_thread(read_text, path)
    except OSError as exc:
        raise FileSystemFailure("read", path, exc) from exc


async def _write(path: Path, content: str) -> None:
    try:
        await asyncio.to_thread(write_text, path, content)
    except OSError as exc:
        raise FileSystemFailure("write", path, exc) from exc


register_target(TargetSpec(name="edge", description="Edge bundle with inlined binary payload.", runner=build_edge))
register_target(TargetSpec(name="server", description="CommonJS server bundle with external native modules.", runner=build_server))
