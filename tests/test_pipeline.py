from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from bindings_pack.bundler import BuildOptions, EsbuildBundler
from bindings_pack.config import BuildConfig
from bindings_pack.errors import BuildError, ExternalProcessFailure, StructuralMismatch
from bindings_pack.pipeline import (
    EDGE_STAGES,
    SERVER_STAGES,
    BuildResult,
    Stage,
    build_edge,
    build_server,
    build_targets,
    create_context,
    get_target,
    _verify_output,
)

from conftest import FakeBundler, FakeTypeChecker

FAILING_TYPECHECK = [sys.executable, "-c", "print('error X'); raise SystemExit(1)"]


def _config(project: Path, **overrides: object) -> BuildConfig:
    return BuildConfig.model_validate({"project_root": str(project), **overrides})


def test_edge_pipeline_publishes_factory_module(
    project: Path, fake_bundler: FakeBundler, fake_typechecker: FakeTypeChecker
) -> None:
    context = create_context(_config(project), bundler=fake_bundler, runner=fake_typechecker)

    result = asyncio.run(build_edge(context))

    out = project / "dist" / "cloudflare"
    assert tuple(result.stages) == EDGE_STAGES
    assert result.entry == (out / "index.js").resolve()

    loader = (out / "web_bindings" / "plonk_wasm.js").read_text(encoding="utf-8")
    assert loader.startswith("import { startWorkers, terminateWorkers } from '../bindings/js/web/worker-helpers.js';")
    assert "function plonkWasm() {" in loader
    assert "return { default: __wbg_init, helperFn };" in loader
    assert "plonkWasm.deps = [startWorkers, terminateWorkers];" in loader
    assert "var startWorkers;" not in loader
    assert "import.meta.url" not in loader
    assert not (project / "src" / "bindings" / "compiled" / "web_bindings" / "plonk_wasm.tmp.js").exists()

    assert (out / "snarky.js").read_text(encoding="utf-8") == "export const snarky = 'web';\n"
    assert (out / "snarky.d.ts").exists()
    assert (out / "bindings" / "js" / "web" / "extra.js").exists()
    assert not (out / "bindings" / "js" / "web" / "extra.web.js").exists()
    assert (out / "lib.js").exists()
    assert not list(out.glob("**/*.web.js"))

    assert (out / "web_bindings" / "o1js_web.bc.js").read_text(encoding="utf-8") == "function big ( ) { return 1; }"
    assert len(fake_bundler.transforms) == 1

    assert fake_typechecker.commands == [["npx", "tsc", "-p", "tsconfig.cloudflare.json", "--outDir", "dist/cloudflare"]]

    loader_build, entry_build = fake_bundler.builds
    assert loader_build.format == "esm"
    assert [plugin.name for plugin in loader_build.plugins] == ["binary-payload"]
    assert entry_build.minify is True
    assert entry_build.external == ["*.bc.js"]
    assert entry_build.drop_labels == ["CJS"]
    assert list(entry_build.resolve_extensions) == [".js", ".ts"]
    assert [plugin.name for plugin in entry_build.plugins] == ["binary-payload", "verbatim-text"]


def test_server_pipeline_bundles_commonjs_entry(
    project: Path, fake_bundler: FakeBundler, fake_typechecker: FakeTypeChecker
) -> None:
    config = _config(project, server={"host_platform": "linux"})
    context = create_context(config, bundler=fake_bundler, runner=fake_typechecker)

    result = asyncio.run(build_server(context))

    out = project / "dist" / "cloudflare-node"
    assert tuple(result.stages) == SERVER_STAGES
    assert result.entry == (out / "index.js").resolve()
    assert (project / "src" / "bindings" / "compiled" / "_node_bindings" / "plonk_wasm.cjs").exists()
    assert (out / "snarky.d.ts").exists()
    assert (out / "bindings" / "compiled" / "_node_bindings" / "o1js_node.bc.cjs").exists()
    assert (out / "bindings" / "compiled" / "node_bindings" / "plonk_wasm.d.cts").exists()

    (build,) = fake_bundler.builds
    assert build.format == "cjs"
    assert build.platform == "node"
    assert build.minify is False
    assert list(build.resolve_extensions) == [".node.js", ".ts", ".js"]
    assert [plugin.name for plugin in build.plugins] == ["external-native", "companion-binary-module"]
    assert build.plugins[0].host_platform == "linux"
    assert not fake_bundler.transforms


@pytest.mark.parametrize("target", ["edge", "server"])
def test_failed_typecheck_aborts_without_output(project: Path, fake_bundler: FakeBundler, target: str) -> None:
    config = _config(project, **{target: {"typecheck_command": FAILING_TYPECHECK}})
    context = create_context(config, bundler=fake_bundler)

    with pytest.raises(ExternalProcessFailure) as excinfo:
        asyncio.run(build_targets([target], context))

    assert "error X" in str(excinfo.value)
    assert excinfo.value.returncode == 1
    output_dir = config.path(getattr(config, target).output_dir)
    assert not output_dir.exists()
    assert not (project / "src" / "bindings" / "compiled" / "web_bindings" / "plonk_wasm.tmp.js").exists()


def test_structural_mismatch_stops_edge_pipeline(
    project: Path, fake_bundler: FakeBundler, fake_typechecker: FakeTypeChecker
) -> None:
    loader = project / "src" / "bindings" / "compiled" / "web_bindings" / "plonk_wasm.js"
    loader.write_text("export default function init() {}\n", encoding="utf-8")
    context = create_context(_config(project), bundler=fake_bundler, runner=fake_typechecker)

    with pytest.raises(StructuralMismatch):
        asyncio.run(build_edge(context))

    assert not fake_bundler.builds
    assert not fake_typechecker.commands


def test_targets_run_sequentially(project: Path, fake_bundler: FakeBundler, fake_typechecker: FakeTypeChecker) -> None:
    config = _config(project, server={"host_platform": "linux"})
    context = create_context(config, bundler=fake_bundler, runner=fake_typechecker)

    results = asyncio.run(build_targets(["edge", "server"], context))

    assert [result.target for result in results] == ["edge", "server"]
    assert all(result.stage is Stage.DONE for result in results)
    assert [command[-1] for command in fake_typechecker.commands] == ["dist/cloudflare", "dist/cloudflare-node"]
    payload = results[0].to_dict()
    assert payload["stage"] == "done"
    assert payload["stages"][0] == "idle"


def test_build_result_enforces_stage_order() -> None:
    result = BuildResult(target="server", sequence=SERVER_STAGES)
    with pytest.raises(BuildError):
        result.advance(Stage.PUBLISHED)
    result.advance(Stage.BUNDLED)
    assert result.stage is Stage.BUNDLED


def test_registry_and_default_bundler(project: Path) -> None:
    assert get_target("edge").runner is build_edge
    with pytest.raises(KeyError):
        get_target("desktop")
    context = create_context(_config(project))
    assert isinstance(context.bundler, EsbuildBundler)
    assert context.bundler.command == ["npx", "esbuild"]


def test_edge_pipeline_leaves_no_temporary_in_output(
    project: Path, fake_bundler: FakeBundler, fake_typechecker: FakeTypeChecker
) -> None:
    context = create_context(_config(project), bundler=fake_bundler, runner=fake_typechecker)

    asyncio.run(build_edge(context))

    web_bindings = project / "dist" / "cloudflare" / "web_bindings"
    assert sorted(path.name for path in web_bindings.iterdir()) == [
        "o1js_web.bc.js",
        "plonk_wasm.js",
        "plonk_wasm_bg.wasm",
    ]


def test_edge_pipeline_rejects_leftover_platform_files(project: Path, fake_typechecker: FakeTypeChecker) -> None:
    class LeftoverBundler(FakeBundler):
        async def build(self, options: BuildOptions) -> Path:
            outfile = await super().build(options)
            if len(self.builds) == 2:
                (outfile.parent / "late.web.js").write_text("export {};\n", encoding="utf-8")
            return outfile

    context = create_context(_config(project), bundler=LeftoverBundler(), runner=fake_typechecker)

    with pytest.raises(BuildError, match="late.web.js"):
        asyncio.run(build_edge(context))

    assert not (project / "src" / "bindings" / "compiled" / "web_bindings" / "plonk_wasm.tmp.js").exists()


def test_verify_output_requires_entry(tmp_path: Path) -> None:
    with pytest.raises(BuildError, match="was not produced"):
        _verify_output(tmp_path, tmp_path / "index.js", ".web")
