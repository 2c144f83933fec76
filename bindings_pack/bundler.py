"""Bundler interface and the esbuild-backed implementation."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import re
import shutil
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .commands import run_command
from .errors import BuildError, BundlerFailure, FileSystemFailure
from .plugins import (
    ImportClass,
    LoadArgs,
    LoadResult,
    ResolutionPlugin,
    ResolveArgs,
    classify_specifier,
)
from .utils import compute_sha256, relative_specifier, write_bytes, write_text

logger = logging.getLogger(__name__)

DEFAULT_RESOLVE_EXTENSIONS = (".tsx", ".ts", ".jsx", ".js", ".css", ".json")
SCANNED_SUFFIXES = {".js", ".mjs", ".cjs", ".ts", ".mts", ".cts", ".jsx", ".tsx"}
PAYLOAD_SUFFIXES = {"binary": ".bin", "text": ".txt"}

_SPECIFIER = re.compile(
    r"""(?<![\w$.])(?:from\s*|import\s*\(?\s*|require\s*\(\s*)(?P<quote>['"])(?P<specifier>[^'"\n]+)(?P=quote)"""
)
_LEADING_RELATIVE = re.compile(r"^(?:\.{1,2}/)+")


@dataclass(slots=True)
class BuildOptions:
    """One bundling pass."""

    entry_point: Path
    outfile: Path
    format: str = "esm"
    platform: Optional[str] = None
    target: str = "esnext"
    resolve_extensions: Sequence[str] = DEFAULT_RESOLVE_EXTENSIONS
    plugins: Sequence[ResolutionPlugin] = ()
    external: Sequence[str] = ()
    drop_labels: Sequence[str] = ()
    minify: bool = False
    log_level: str = "warning"
    allow_overwrite: bool = True


@dataclass(slots=True)
class TransformOptions:
    target: str = "esnext"
    minify: bool = True
    log_level: str = "error"
    loader: str = "js"


class Bundler(ABC):
    name: str

    @abstractmethod
    async def build(self, options: BuildOptions) -> Path:
        """Bundle ``options.entry_point`` into ``options.outfile``."""

    @abstractmethod
    async def transform(self, code: str, options: TransformOptions) -> str:
        """Transform a single script without bundling."""


@dataclass(slots=True)
class StagedBuild:
    """Module graph mirrored with plugin decisions applied."""

    root: Path
    entry_point: Path
    external: List[str] = field(default_factory=list)
    loaders: Dict[str, str] = field(default_factory=dict)
    classifications: Dict[str, ImportClass] = field(default_factory=dict)


def is_local_specifier(specifier: str) -> bool:
    return specifier.startswith(("./", "../", "/")) or specifier in {".", ".."}


def external_pattern(path: str) -> str:
    """Return the esbuild ``--external`` pattern matching an import path."""

    if not is_local_specifier(path):
        return path
    return "*" + _LEADING_RELATIVE.sub("", path).lstrip("/")


class ModuleStager:
    """Walks the module graph from an entry point and mirrors it under ``stage_root``.

    Plugin-claimed specifiers are rewritten in the mirrored sources: external
    ones to the plugin's path, loaded ones to payload files written next to
    the mirror. Ordinary local modules keep their specifiers; the mirror keeps
    the project layout so relative imports and package lookups still resolve.
    """

    def __init__(self, project_root: Path, stage_root: Path, options: BuildOptions) -> None:
        self.project_root = Path(project_root).resolve()
        self.stage_root = Path(stage_root)
        self.options = options
        self.payload_dir = self.stage_root / "__payloads__"
        self._staged = StagedBuild(root=self.stage_root, entry_point=self.stage_root)
        self._seen: set[Path] = set()
        self._queue: List[Path] = []

    def stage(self) -> StagedBuild:
        entry = self._resolve_file(Path(self.options.entry_point))
        if entry is None:
            raise FileSystemFailure("resolve entry point", self.options.entry_point)
        self._staged.entry_point = self.mirror_path(entry)
        self._queue.append(entry)
        while self._queue:
            module = self._queue.pop()
            if module in self._seen:
                continue
            self._seen.add(module)
            self._stage_module(module)
        return self._staged

    def mirror_path(self, path: Path) -> Path:
        try:
            relative = path.resolve().relative_to(self.project_root)
        except ValueError as exc:
            raise BuildError(f"Module {path} lies outside the project root {self.project_root}") from exc
        return self.stage_root / relative

    def _stage_module(self, module: Path) -> None:
        staged_path = self.mirror_path(module)
        if module.suffix not in SCANNED_SUFFIXES:
            try:
                staged_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(module, staged_path)
            except OSError as exc:
                raise FileSystemFailure("stage", module, exc) from exc
            return
        try:
            source = module.read_text(encoding="utf-8")
        except OSError as exc:
            raise FileSystemFailure("read module", module, exc) from exc

        pieces: List[str] = []
        last = 0
        for match in _SPECIFIER.finditer(source):
            specifier = match.group("specifier")
            replacement = self._route(specifier, module, staged_path)
            if replacement is None or replacement == specifier:
                continue
            pieces.append(source[last : match.start("specifier")])
            pieces.append(replacement)
            last = match.end("specifier")
        pieces.append(source[last:])
        write_text(staged_path, "".join(pieces))
        logger.debug("Staged %s", staged_path)

    def _route(self, specifier: str, module: Path, staged_path: Path) -> Optional[str]:
        if any(fnmatch.fnmatchcase(specifier, pattern) for pattern in self.options.external):
            return None

        classification = classify_specifier(specifier, self.options.plugins)
        self._staged.classifications[specifier] = classification.import_class
        plugin = classification.plugin
        if plugin is not None:
            resolved = plugin.resolve(ResolveArgs(specifier=specifier, importer=module, resolve_dir=module.parent))
            if resolved is not None:
                logger.debug("%s claimed %s -> %s", plugin.name, specifier, resolved.path)
                if resolved.external:
                    pattern = external_pattern(resolved.path)
                    if pattern not in self._staged.external:
                        self._staged.external.append(pattern)
                    return resolved.path
                loaded = plugin.load(LoadArgs(path=resolved.path, namespace=resolved.namespace))
                if loaded is not None:
                    payload = self._write_payload(Path(resolved.path), loaded)
                    return relative_specifier(payload, staged_path.parent)
                target = self._resolve_file(Path(resolved.path))
                if target is not None:
                    self._queue.append(target)
                    return relative_specifier(self.mirror_path(target), staged_path.parent)
                return None

        if not is_local_specifier(specifier):
            return None
        target = self._resolve_file(module.parent / specifier)
        if target is None:
            logger.debug("Leaving unresolved specifier %s in %s", specifier, module)
            return None
        self._queue.append(target)
        if specifier.startswith("/"):
            return relative_specifier(self.mirror_path(target), staged_path.parent)
        return None

    def _write_payload(self, source: Path, loaded: LoadResult) -> Path:
        suffix = PAYLOAD_SUFFIXES.get(loaded.loader)
        if suffix is None:
            raise BuildError(f"Unsupported loader '{loaded.loader}' for {source}")
        digest = compute_sha256(loaded.contents)[:12]
        payload = self.payload_dir / f"{source.stem}.{digest}{suffix}"
        if isinstance(loaded.contents, bytes):
            write_bytes(payload, loaded.contents)
        else:
            write_text(payload, loaded.contents)
        self._staged.loaders[suffix] = loaded.loader
        return payload

    def _resolve_file(self, candidate: Path) -> Optional[Path]:
        if candidate.is_file():
            return candidate.resolve()
        for extension in self.options.resolve_extensions:
            with_extension = candidate.with_name(candidate.name + extension)
            if with_extension.is_file():
                return with_extension.resolve()
        if candidate.is_dir():
            for extension in self.options.resolve_extensions:
                index = candidate / f"index{extension}"
                if index.is_file():
                    return index.resolve()
        return None


class EsbuildBundler(Bundler):
    """Drives the esbuild command line over a staged module graph."""

    name = "esbuild"

    def __init__(self, project_root: Path, command: Sequence[str] = ("npx", "esbuild")) -> None:
        self.project_root = Path(project_root).resolve()
        self.command = list(command)

    async def build(self, options: BuildOptions) -> Path:
        with tempfile.TemporaryDirectory(prefix=".bindings-pack-stage-", dir=self.project_root) as tmp_dir:
            stager = ModuleStager(self.project_root, Path(tmp_dir), options)
            staged = await asyncio.to_thread(stager.stage)
            args = self.build_arguments(options, staged)
            logger.info("Bundling %s -> %s (%s)", options.entry_point, options.outfile, options.format)
            await run_command(args, self.project_root, failure=BundlerFailure)
        return Path(options.outfile)

    async def transform(self, code: str, options: TransformOptions) -> str:
        args = [
            *self.command,
            f"--loader={options.loader}",
            f"--target={options.target}",
            f"--log-level={options.log_level}",
        ]
        if options.minify:
            args.append("--minify")
        return await run_command(args, self.project_root, stdin=code.encode("utf-8"), failure=BundlerFailure)

    def build_arguments(self, options: BuildOptions, staged: StagedBuild) -> List[str]:
        args = [
            *self.command,
            str(staged.entry_point),
            "--bundle",
            f"--outfile={Path(options.outfile).resolve()}",
            f"--format={options.format}",
            f"--target={options.target}",
            f"--log-level={options.log_level}",
        ]
        if options.platform:
            args.append(f"--platform={options.platform}")
        if options.resolve_extensions:
            args.append(f"--resolve-extensions={','.join(options.resolve_extensions)}")
        for pattern in [*options.external, *staged.external]:
            args.append(f"--external:{pattern}")
        for suffix, loader in sorted(staged.loaders.items()):
            args.append(f"--loader:{suffix}={loader}")
        if options.drop_labels:
            args.append(f"--drop-labels={','.join(options.drop_labels)}")
        if options.minify:
            args.append("--minify")
        if options.allow_overwrite:
            args.append("--allow-overwrite")
        return args
