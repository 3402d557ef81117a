import json
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

import shdc_nim  # noqa: E402

VS_SOURCE = "#version 430\nlayout(location=0) in vec4 position;\nvoid main() {}\n"
FS_SOURCE = "#version 430\nout vec4 frag_color;\nvoid main() {}\n"


@pytest.fixture
def make_uniform() -> Callable[..., shdc_nim.Uniform]:
    def _make_uniform(
        name: str,
        utype: shdc_nim.UniformType,
        offset: int,
        array_count: int = 1,
    ) -> shdc_nim.Uniform:
        return shdc_nim.Uniform(
            name=name, type=utype, offset=offset, array_count=array_count
        )

    return _make_uniform


@pytest.fixture
def make_uniform_block() -> Callable[..., shdc_nim.UniformBlock]:
    def _make_uniform_block(
        uniforms: tuple[shdc_nim.Uniform, ...],
        *,
        size: int | None = None,
        slot: int = 0,
        struct_name: str = "params",
        inst_name: str = "p",
        flattened: bool = False,
    ) -> shdc_nim.UniformBlock:
        if size is None:
            size = max(
                (u.offset + shdc_nim.uniform_size(u.type, u.array_count) for u in uniforms),
                default=0,
            )
        return shdc_nim.UniformBlock(
            slot=slot,
            size=size,
            struct_name=struct_name,
            inst_name=inst_name,
            uniforms=uniforms,
            flattened=flattened,
        )

    return _make_uniform_block


@pytest.fixture
def make_input() -> Callable[..., shdc_nim.Input]:
    def _make_input(
        *,
        module: str = "shd",
        programs: tuple[shdc_nim.Program, ...] | None = None,
        snippets: tuple[shdc_nim.Snippet, ...] | None = None,
        headers: tuple[str, ...] = (),
        ctype_map: dict[str, str] | None = None,
    ) -> shdc_nim.Input:
        return shdc_nim.Input(
            base_path="shd.glsl",
            module=module,
            snippets=(
                snippets
                if snippets is not None
                else (
                    shdc_nim.Snippet("vs", shdc_nim.SnippetType.VS),
                    shdc_nim.Snippet("fs", shdc_nim.SnippetType.FS),
                )
            ),
            programs=(
                programs
                if programs is not None
                else (shdc_nim.Program("basic", "vs", "fs"),)
            ),
            headers=headers,
            ctype_map={} if ctype_map is None else ctype_map,
        )

    return _make_input


@pytest.fixture
def basic_vs_refl() -> shdc_nim.StageReflection:
    return shdc_nim.StageReflection(
        stage="vs",
        entry_point="main",
        inputs=(
            shdc_nim.VertexAttr("position", 0, "TEXCOORD", 0),
            shdc_nim.VertexAttr("color0", 1, "TEXCOORD", 1),
        ),
        uniform_blocks=(
            shdc_nim.UniformBlock(
                slot=0,
                size=16,
                struct_name="params",
                inst_name="p",
                uniforms=(
                    shdc_nim.Uniform("color", shdc_nim.UniformType.FLOAT4, 0),
                ),
            ),
        ),
    )


@pytest.fixture
def basic_fs_refl() -> shdc_nim.StageReflection:
    return shdc_nim.StageReflection(
        stage="fs",
        entry_point="main",
        images=(
            shdc_nim.Image(
                "tex",
                0,
                shdc_nim.ImageType.IMAGE_2D,
                shdc_nim.ImageSampleType.FLOAT,
            ),
        ),
        samplers=(
            shdc_nim.Sampler("smp", 0, shdc_nim.SamplerType.FILTERING),
        ),
        image_samplers=(shdc_nim.ImageSampler("tex_smp", 0, "tex", "smp"),),
    )


@pytest.fixture
def basic_reflection(
    basic_vs_refl: shdc_nim.StageReflection, basic_fs_refl: shdc_nim.StageReflection
) -> shdc_nim.BackendReflection:
    return shdc_nim.build_backend_reflection(
        (
            shdc_nim.StageSource(0, VS_SOURCE, basic_vs_refl),
            shdc_nim.StageSource(1, FS_SOURCE, basic_fs_refl),
        )
    )


@pytest.fixture
def basic_document() -> dict:
    reflection_vs = {
        "stage": "vs",
        "entry_point": "main",
        "inputs": [
            {"name": "position", "slot": 0, "sem_name": "TEXCOORD", "sem_index": 0}
        ],
        "uniform_blocks": [
            {
                "slot": 0,
                "size": 16,
                "struct_name": "params",
                "inst_name": "p",
                "uniforms": [{"name": "color", "type": "float4", "offset": 0}],
            }
        ],
    }
    reflection_fs = {"stage": "fs", "entry_point": "main"}
    backend = {
        "sources": [
            {"snippet": "vs", "source": VS_SOURCE, "reflection": reflection_vs},
            {"snippet": "fs", "source": FS_SOURCE, "reflection": reflection_fs},
        ]
    }
    return {
        "base_path": "shd.glsl",
        "module": "shd",
        "headers": ["import math"],
        "snippets": [{"name": "vs", "type": "vs"}, {"name": "fs", "type": "fs"}],
        "programs": [{"name": "basic", "vs": "vs", "fs": "fs"}],
        "slangs": {"glsl430": backend, "hlsl5": backend},
    }


@pytest.fixture
def write_document(tmp_path: Path) -> Callable[[dict], Path]:
    def _write_document(doc: dict, name: str = "shd.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(doc), encoding="utf-8")
        return path

    return _write_document
