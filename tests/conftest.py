from __future__ import annotations

import re
import sys
from pathlib import Path
from typing import List, Sequence, Tuple

import pytest

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
if str(PACKAGE_ROOT) not in sys.path:
    sys.path.insert(0, str(PACKAGE_ROOT))

from bindings_pack.bundler import Bundler, BuildOptions, TransformOptions  # noqa: E402

LOADER_SOURCE = """let wasm;

function helperFn(a) {
    return wasm.helper(a);
}

async function __wbg_init(module_or_path) {
    if (typeof module_or_path === 'undefined') {
        module_or_path = new URL('plonk_wasm_bg.wasm', import.meta.url);
    }
    const base = import.meta.url;
    wasm = await load(module_or_path, base);
    return wasm;
}

export { __wbg_init as default, helperFn };
"""

_PAYLOAD_IMPORT = re.compile(r"import (\w+) from '[^']+\.wasm';")
_HOOK_DECLARATION = re.compile(r"let (\w+), (\w+);")


def emulate_bundle(source: str) -> str:
    """Mimic what the bundler does to the pre-rewritten loader module."""

    source = _PAYLOAD_IMPORT.sub(r"var \1 = new Uint8Array([0, 97, 115, 109]);", source)
    return _HOOK_DECLARATION.sub(r"var \1;\nvar \2;", source)


class FakeBundler(Bundler):
    name = "fake"

    def __init__(self) -> None:
        self.builds: List[BuildOptions] = []
        self.transforms: List[Tuple[str, TransformOptions]] = []

    async def build(self, options: BuildOptions) -> Path:
        self.builds.append(options)
        source = Path(options.entry_point).read_text(encoding="utf-8")
        outfile = Path(options.outfile)
        outfile.parent.mkdir(parents=True, exist_ok=True)
        outfile.write_text(emulate_bundle(source), encoding="utf-8")
        return outfile

    async def transform(self, code: str, options: TransformOptions) -> str:
        self.transforms.append((code, options))
        return " ".join(code.split())


class FakeTypeChecker:
    """Stands in for tsc: writes the compiled entry into ``--outDir``."""

    def __init__(self) -> None:
        self.commands: List[List[str]] = []

    async def __call__(self, command: Sequence[str], cwd: Path) -> str:
        self.commands.append(list(command))
        out_dir = cwd / command[command.index("--outDir") + 1]
        out_dir.mkdir(parents=True, exist_ok=True)
        (out_dir / "index.js").write_text("import './snarky.js';\nexport const ready = true;\n", encoding="utf-8")
        (out_dir / "lib.web.js").write_text("export const lib = 1;\n", encoding="utf-8")
        return ""


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    web = tmp_path / "src" / "bindings" / "compiled" / "web_bindings"
    _write(web / "plonk_wasm.js", LOADER_SOURCE)
    (web / "plonk_wasm_bg.wasm").write_bytes(b"\x00asm\x01\x00\x00\x00")
    _write(web / "o1js_web.bc.js", "function  big ( ) {\n  return 1;\n}\n")

    node = tmp_path / "src" / "bindings" / "compiled" / "node_bindings"
    _write(node / "plonk_wasm.cjs", "module.exports = {};\n")
    _write(node / "plonk_wasm.d.cts", "export {};\n")
    _write(node / "o1js_node.bc.cjs", "module.exports = {};\n")

    _write(tmp_path / "src" / "snarky.d.ts", "export {};\n")
    _write(tmp_path / "src" / "snarky.web.js", "export const snarky = 'web';\n")
    _write(tmp_path / "src" / "bindings" / "js" / "web" / "worker-helpers.js", "export function startWorkers() {}\n")
    _write(tmp_path / "src" / "bindings" / "js" / "web" / "extra.web.js", "export const extra = 1;\n")
    return tmp_path


@pytest.fixture()
def fake_bundler() -> FakeBundler:
    return FakeBundler()


@pytest.fixture()
def fake_typechecker() -> FakeTypeChecker:
    return FakeTypeChecker()
