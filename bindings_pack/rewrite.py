"""Text rewrites applied to the generated WebAssembly loader module.

Both passes are pure functions over source text. The pre-bundle pass prepares
the loader so the bundler can inline the binary payload; the post-bundle pass
turns the bundled ES module into an invocable factory function.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Tuple

from .errors import StructuralMismatch

_WASM_URL = re.compile(
    r"""new\s+URL\(\s*(['"])(?P<name>[^'"\n]+\.wasm)\1\s*,\s*import\.meta\.url\s*\)"""
)
_IMPORT_META_URL = re.compile(r"\bimport\.meta\.url\b")
_EXPORT_CLAUSE = re.compile(r"(?m)^[ \t]*export\s*\{(?P<body>[^{}]*)\}[ \t]*;?")
_EXPORT_SPECIFIER = re.compile(r"^(?P<local>[\w$]+)(?:\s+as\s+(?P<exported>[\w$]+))?$")
_UNINITIALIZED_DECLARATION = re.compile(
    r"(?m)^(?P<kind>var|let)\s+(?P<names>[\w$]+(?:\s*,\s*[\w$]+)*)\s*;[ \t]*(?:\r?\n)?"
)
_MODULE_STATEMENT = re.compile(r"(?m)^[ \t]*(?:export\b|import\s*[\w${*'\"])")


@dataclass(frozen=True)
class RewriteOptions:
    """Names used when rewriting the loader module."""

    payload_binding: str = "wasmCode"
    location_placeholder: str = '"/"'
    worker_hooks: Tuple[str, ...] = ("startWorkers", "terminateWorkers")
    default_binding: str = "__wbg_init"
    factory_name: str = "plonkWasm"
    worker_helpers_module: str = "../bindings/js/web/worker-helpers.js"


DEFAULT_OPTIONS = RewriteOptions()


@dataclass(frozen=True)
class ExportSpecifier:
    local: str
    exported: str

    def render(self) -> str:
        if self.local == self.exported:
            return self.local
        return f"{self.exported}: {self.local}"


@dataclass(frozen=True)
class ExportClause:
    """Location and parsed contents of an ``export { ... };`` statement."""

    start: int
    end: int
    specifiers: Tuple[ExportSpecifier, ...]

    def default_specifiers(self) -> List[ExportSpecifier]:
        return [spec for spec in self.specifiers if spec.exported == "default"]


def rewrite_pre_bundle(source: str, options: RewriteOptions = DEFAULT_OPTIONS) -> str:
    """Prepare a generated loader module for bundling.

    The runtime URL construction of the binary payload becomes a static
    import the bundler can inline, ``import.meta.url`` is replaced by a fixed
    placeholder, and the worker hooks are forward-declared.
    """

    payload_names = {match.group("name") for match in _WASM_URL.finditer(source)}
    if not payload_names:
        raise StructuralMismatch(
            "Loader module does not construct its binary payload URL from import.meta.url."
        )
    if len(payload_names) > 1:
        raise StructuralMismatch(
            f"Loader module references more than one binary payload: {', '.join(sorted(payload_names))}"
        )
    payload = payload_names.pop()
    if not payload.startswith((".", "/")):
        payload = f"./{payload}"

    source = _WASM_URL.sub(options.payload_binding, source)
    source = _IMPORT_META_URL.sub(options.location_placeholder, source)
    header = [
        f"import {options.payload_binding} from '{payload}';",
        f"let {', '.join(options.worker_hooks)};",
    ]
    return "\n".join(header) + "\n" + source


def find_export_clause(source: str) -> ExportClause:
    """Locate and parse the trailing export clause of a bundled module."""

    matches = list(_EXPORT_CLAUSE.finditer(source))
    if not matches:
        raise StructuralMismatch("Bundled loader module has no export block.")
    match = matches[-1]
    return ExportClause(
        start=match.start(),
        end=match.end(),
        specifiers=tuple(_parse_specifiers(match.group("body"))),
    )


def rewrite_post_bundle(source: str, options: RewriteOptions = DEFAULT_OPTIONS) -> str:
    """Turn a bundled loader module into a factory-function module.

    The export block becomes the factory's return value with the default
    export renamed to ``options.default_binding``; the worker hooks are
    imported for real and attached to the factory as ``deps``.
    """

    clause = find_export_clause(source)
    defaults = clause.default_specifiers()
    if not defaults:
        raise StructuralMismatch("Export block of the bundled loader has no default alias.")
    if len(defaults) > 1:
        candidates = ", ".join(spec.local for spec in defaults)
        raise StructuralMismatch(f"Export block has more than one default alias candidate: {candidates}")

    entries = []
    for spec in clause.specifiers:
        if spec.exported == "default":
            entries.append(f"default: {options.default_binding}")
        else:
            entries.append(spec.render())
    returned = "return { " + ", ".join(entries) + " };"
    body = source[: clause.start] + returned + source[clause.end :]
    body = strip_forward_declarations(body, options.worker_hooks)

    stray = _MODULE_STATEMENT.search(body)
    if stray is not None:
        line = body[stray.start() :].splitlines()[0].strip()
        raise StructuralMismatch(f"Module-level statement left inside the factory body: {line}")
    if not declares_top_level(source[: clause.start], options.default_binding):
        raise StructuralMismatch(
            f"Bundled loader does not declare '{options.default_binding}' at top level; "
            f"the default export is '{defaults[0].local}'."
        )

    hooks = ", ".join(options.worker_hooks)
    factory = options.factory_name
    return (
        f"import {{ {hooks} }} from '{options.worker_helpers_module}';\n"
        f"export default {factory};\n"
        f"function {factory}() {{\n"
        f"{body.rstrip()}\n"
        "}\n"
        f"{factory}.deps = [{hooks}];\n"
    )


def strip_forward_declarations(source: str, names: Tuple[str, ...]) -> str:
    """Drop top-level uninitialized ``var``/``let`` declarations of ``names``."""

    wanted = set(names)

    def _replace(match: re.Match[str]) -> str:
        declared = [name.strip() for name in match.group("names").split(",")]
        if not wanted.intersection(declared):
            return match.group(0)
        remaining = [name for name in declared if name not in wanted]
        if not remaining:
            return ""
        return f"{match.group('kind')} {', '.join(remaining)};\n"

    return _UNINITIALIZED_DECLARATION.sub(_replace, source)


def declares_top_level(source: str, name: str) -> bool:
    """Whether ``source`` has an unindented function, class or variable declaration of ``name``."""

    pattern = re.compile(
        r"(?m)^(?:(?:async\s+)?function\s*\*?\s*|class\s+|(?:var|let|const)\s+(?:[^;\n]*?,\s*)?)"
        + re.escape(name)
        + r"(?![\w$])"
    )
    return pattern.search(source) is not None


def _parse_specifiers(body: str) -> List[ExportSpecifier]:
    specifiers: List[ExportSpecifier] = []
    for raw in body.split(","):
        entry = " ".join(raw.split())
        if not entry:
            continue
        match = _EXPORT_SPECIFIER.match(entry)
        if match is None:
            raise StructuralMismatch(f"Unrecognised export specifier: {entry}")
        local = match.group("local")
        specifiers.append(ExportSpecifier(local=local, exported=match.group("exported") or local))
    return specifiers
