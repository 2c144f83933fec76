"""Packaging tooling for generated WebAssembly bindings."""

__version__ = "0.1.0"
from .bundler import Bundler, BuildOptions, EsbuildBundler, TransformOptions
from .config import BuildConfig, EdgeTargetConfig, ServerTargetConfig, load_config
from .errors import (
    BuildError,
    BundlerFailure,
    ConfigError,
    ExternalProcessFailure,
    FileSystemFailure,
    PluginResolutionAmbiguity,
    StructuralMismatch,
)
from .pipeline import BuildContext, BuildResult, Stage, build_edge, build_server, build_targets, create_context
from .plugins import ImportClass, classify_specifier
from .publish import ArtifactPublisher
from .rewrite import RewriteOptions, rewrite_post_bundle, rewrite_pre_bundle

__all__ = [
    "__version__",
    "ArtifactPublisher",
    "BuildConfig",
    "BuildContext",
    "BuildError",
    "BuildOptions",
    "BuildResult",
    "Bundler",
    "BundlerFailure",
    "ConfigError",
    "EdgeTargetConfig",
    "EsbuildBundler",
    "ExternalProcessFailure",
    "FileSystemFailure",
    "ImportClass",
    "PluginResolutionAmbiguity",
    "RewriteOptions",
    "ServerTargetConfig",
    "Stage",
    "StructuralMismatch",
    "TransformOptions",
    "build_edge",
    "build_server",
    "build_targets",
    "classify_specifier",
    "create_context",
    "load_config",
    "rewrite_post_bundle",
    "rewrite_pre_bundle",
]
