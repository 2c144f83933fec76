"""Import resolution plugins and the specifier classifier."""

from __future__ import annotations

import logging
import re
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Sequence, Tuple, Union

from .errors import FileSystemFailure, PluginResolutionAmbiguity
from .utils import relative_specifier

logger = logging.getLogger(__name__)

_PACKAGE_PATH = re.compile(r"^[^./\\]|^\.[^./\\]|^\.\.[^/\\]")

# Specifiers inlined instead of externalized on a given host platform.
INLINE_ON_PLATFORM: Mapping[str, Tuple[str, ...]] = {
    "win32": ("index.js",),
}


class ImportClass(str, Enum):
    ORDINARY_MODULE = "ordinary_module"
    BINARY_PAYLOAD = "binary_payload"
    VERBATIM_TEXT = "verbatim_text"
    EXTERNAL_NATIVE = "external_native"
    COMPANION_BINARY_MODULE = "companion_binary_module"


@dataclass(frozen=True)
class ResolveArgs:
    specifier: str
    importer: Path
    resolve_dir: Path


@dataclass(frozen=True)
class ResolveResult:
    path: str
    external: bool = False
    namespace: str = "file"


@dataclass(frozen=True)
class LoadArgs:
    path: str
    namespace: str = "file"


@dataclass(frozen=True)
class LoadResult:
    contents: Union[bytes, str]
    loader: str


class ResolutionPlugin(ABC):
    """Intercepts resolution and loading for one class of import."""

    name: str
    import_class: ImportClass

    @abstractmethod
    def matches(self, specifier: str) -> bool:
        ...

    def resolve(self, args: ResolveArgs) -> Optional[ResolveResult]:
        """Resolve a claimed specifier; ``None`` defers to the bundler."""

        return ResolveResult(path=str((args.resolve_dir / args.specifier).resolve()))

    def load(self, args: LoadArgs) -> Optional[LoadResult]:
        return None


class BinaryPayloadPlugin(ResolutionPlugin):
    name = "binary-payload"
    import_class = ImportClass.BINARY_PAYLOAD

    def __init__(self, extension: str = ".wasm") -> None:
        self.extension = extension

    def matches(self, specifier: str) -> bool:
        return specifier.endswith(self.extension)

    def load(self, args: LoadArgs) -> Optional[LoadResult]:
        try:
            contents = Path(args.path).read_bytes()
        except OSError as exc:
            raise FileSystemFailure("read binary payload", args.path, exc) from exc
        return LoadResult(contents=contents, loader="binary")


class VerbatimTextPlugin(ResolutionPlugin):
    """Loads ``string:``-prefixed imports as string constants."""

    name = "verbatim-text"
    import_class = ImportClass.VERBATIM_TEXT
    namespace = "src-string"

    def __init__(self, prefix: str = "string:") -> None:
        self.prefix = prefix

    def matches(self, specifier: str) -> bool:
        return specifier.startswith(self.prefix)

    def resolve(self, args: ResolveArgs) -> Optional[ResolveResult]:
        target = (args.resolve_dir / args.specifier[len(self.prefix) :]).resolve()
        return ResolveResult(path=str(target), namespace=self.namespace)

    def load(self, args: LoadArgs) -> Optional[LoadResult]:
        try:
            contents = Path(args.path).read_text(encoding="utf-8")
        except OSError as exc:
            raise FileSystemFailure("read verbatim text", args.path, exc) from exc
        return LoadResult(contents=contents, loader="text")


class ExternalNativeModulePlugin(ResolutionPlugin):
    """Leaves package imports to the host's own module loader."""

    name = "external-native"
    import_class = ImportClass.EXTERNAL_NATIVE

    def __init__(
        self,
        *,
        host_platform: Optional[str] = None,
        inline_table: Mapping[str, Tuple[str, ...]] = INLINE_ON_PLATFORM,
    ) -> None:
        self.host_platform = host_platform or sys.platform
        self.inline_suffixes = tuple(inline_table.get(self.host_platform, ()))

    def matches(self, specifier: str) -> bool:
        return bool(_PACKAGE_PATH.match(specifier))

    def is_inlined(self, specifier: str) -> bool:
        return specifier.endswith(self.inline_suffixes) if self.inline_suffixes else False

    def resolve(self, args: ResolveArgs) -> Optional[ResolveResult]:
        if self.is_inlined(args.specifier):
            logger.debug("Inlining %s on %s", args.specifier, self.host_platform)
            return None
        return ResolveResult(path=args.specifier, external=True)


class CompanionBinaryModulePlugin(ResolutionPlugin):
    """Externalizes precompiled interop modules, re-pointed at the output directory."""

    name = "companion-binary-module"
    import_class = ImportClass.COMPANION_BINARY_MODULE

    def __init__(self, output_dir: Path, suffixes: Sequence[str] = ("bc.cjs", "plonk_wasm.cjs")) -> None:
        self.output_dir = Path(output_dir).resolve()
        self.suffixes = tuple(suffixes)

    def matches(self, specifier: str) -> bool:
        return specifier.endswith(self.suffixes)

    def resolve(self, args: ResolveArgs) -> Optional[ResolveResult]:
        target = (args.resolve_dir / args.specifier).resolve()
        return ResolveResult(path=relative_specifier(target, self.output_dir), external=True)


@dataclass(frozen=True)
class Classification:
    import_class: ImportClass
    plugin: Optional[ResolutionPlugin] = None


def classify_specifier(specifier: str, plugins: Sequence[ResolutionPlugin]) -> Classification:
    """Map a specifier to its import class.

    Unclaimed specifiers are ordinary module edges. A specifier claimed by
    more than one plugin is rejected.
    """

    claimants = [plugin for plugin in plugins if plugin.matches(specifier)]
    if len(claimants) > 1:
        raise PluginResolutionAmbiguity(specifier, [plugin.name for plugin in claimants])
    if not claimants:
        return Classification(ImportClass.ORDINARY_MODULE)
    return Classification(claimants[0].import_class, claimants[0])
