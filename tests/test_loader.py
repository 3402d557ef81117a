import json
from collections.abc import Callable
from pathlib import Path

import pytest

import shdc_nim
from shdc_nim import Slang

from conftest import VS_SOURCE


def test_load_document_builds_input_and_backends(
    basic_document: dict, write_document: Callable[..., Path]
) -> None:
    doc = shdc_nim.load_reflection_document(write_document(basic_document))

    assert doc.input.module == "shd"
    assert doc.input.base_path == "shd.glsl"
    assert doc.input.headers == ("import math",)
    assert doc.input.programs == (shdc_nim.Program("basic", "vs", "fs"),)
    assert [s.type for s in doc.input.snippets] == [
        shdc_nim.SnippetType.VS,
        shdc_nim.SnippetType.FS,
    ]
    assert set(doc.reflections) == {Slang.GLSL430, Slang.HLSL5}
    assert doc.bytecodes[Slang.HLSL5].blobs == ()


def test_load_document_parses_stage_reflection(
    basic_document: dict, write_document: Callable[..., Path]
) -> None:
    doc = shdc_nim.load_reflection_document(write_document(basic_document))
    refl = doc.reflections[Slang.GLSL430]

    vs = refl.find_source_by_snippet_index(0)
    assert vs.source_code == VS_SOURCE
    assert vs.refl.inputs == (shdc_nim.VertexAttr("position", 0, "TEXCOORD", 0),)
    assert refl.unique_uniform_blocks == (
        shdc_nim.UniformBlock(
            slot=0,
            size=16,
            struct_name="params",
            inst_name="p",
            uniforms=(shdc_nim.Uniform("color", shdc_nim.UniformType.FLOAT4, 0),),
        ),
    )


def test_load_document_applies_defaults(write_document: Callable[..., Path]) -> None:
    doc = {
        "snippets": [{"name": "vs", "type": "vs"}],
        "slangs": {
            "wgsl": {
                "sources": [
                    {
                        "snippet": "vs",
                        "source": "",
                        "reflection": {
                            "stage": "vs",
                            "inputs": [{"name": "unused", "slot": None}],
                            "uniform_blocks": [
                                {"slot": 0, "size": 16, "struct_name": "vs_params"}
                            ],
                            "images": [{"name": "tex", "slot": 0}],
                        },
                    }
                ]
            }
        },
    }
    path = write_document(doc)

    loaded = shdc_nim.load_reflection_document(path)
    src = loaded.reflections[Slang.WGSL].sources[0]

    assert loaded.input.module == ""
    assert loaded.input.base_path == str(path)
    assert loaded.input.ctype_map == {}
    assert src.refl.entry_point == "main"
    assert src.refl.inputs[0].slot == -1
    assert src.refl.uniform_blocks[0].inst_name == "_vs_params"
    assert src.refl.images[0].type == shdc_nim.ImageType.IMAGE_2D
    assert src.refl.images[0].sample_type == shdc_nim.ImageSampleType.FLOAT


def test_unknown_type_names_map_to_invalid(
    basic_document: dict, write_document: Callable[..., Path]
) -> None:
    reflection = basic_document["slangs"]["glsl430"]["sources"][0]["reflection"]
    reflection["uniform_blocks"][0]["uniforms"][0]["type"] = "double3"
    basic_document["slangs"]["glsl430"]["sources"][1]["reflection"]["images"] = [
        {"name": "tex", "slot": 0, "type": "1d", "sample_type": "half"}
    ]

    doc = shdc_nim.load_reflection_document(write_document(basic_document))
    refl = doc.reflections[Slang.GLSL430]

    assert refl.unique_uniform_blocks[0].uniforms[0].type == shdc_nim.UniformType.INVALID
    assert refl.unique_images[0].type == shdc_nim.ImageType.INVALID
    assert refl.unique_images[0].sample_type == shdc_nim.ImageSampleType.INVALID


def test_ctypes_become_type_overrides(
    basic_document: dict, write_document: Callable[..., Path]
) -> None:
    basic_document["ctypes"] = {"float4": "Vec4", "mat4": "Mat4"}

    doc = shdc_nim.load_reflection_document(write_document(basic_document))

    assert doc.input.ctype_map == {"float4": "Vec4", "mat4": "Mat4"}


def test_bytecode_is_read_relative_to_document(
    tmp_path: Path, basic_document: dict, write_document: Callable[..., Path]
) -> None:
    (tmp_path / "blobs").mkdir()
    (tmp_path / "blobs" / "vs.fxc").write_bytes(b"DXBC\x00\x01")
    basic_document["slangs"]["hlsl5"] = dict(
        basic_document["slangs"]["hlsl5"],
        bytecode=[{"snippet": "vs", "path": "blobs/vs.fxc"}],
    )

    doc = shdc_nim.load_reflection_document(write_document(basic_document))

    assert doc.bytecodes[Slang.HLSL5].blobs == (
        shdc_nim.BytecodeBlob(0, b"DXBC\x00\x01"),
    )
    assert doc.bytecodes[Slang.GLSL430].blobs == ()


@pytest.mark.parametrize(
    ("mutate", "message"),
    [
        (
            lambda d: d["programs"][0].pop("fs"),
            "missing 'fs' in program",
        ),
        (
            lambda d: d["slangs"].update(spirv={"sources": []}),
            "unknown shader language 'spirv'",
        ),
        (
            lambda d: d["snippets"].append({"name": "x", "type": "cs"}),
            "invalid snippet type 'cs'",
        ),
        (
            lambda d: d.update(ctypes=["float4"]),
            "'ctypes' must be an object",
        ),
        (
            lambda d: d["slangs"]["glsl430"]["sources"][0]["reflection"][
                "uniform_blocks"
            ][0]["uniforms"][0].update(offset="abc"),
            "'offset' in uniform must be an integer",
        ),
        (
            lambda d: d["slangs"]["glsl430"]["sources"][0]["reflection"][
                "uniform_blocks"
            ][0].update(slot=True),
            "'slot' in uniform block must be an integer",
        ),
        (
            lambda d: d["slangs"]["glsl430"]["sources"][0]["reflection"].update(
                inputs=["position"]
            ),
            "'inputs' in reflection must be a list of objects",
        ),
        (
            lambda d: d["slangs"]["glsl430"]["sources"][0]["reflection"]["inputs"][
                0
            ].update(slot="zero"),
            "'slot' in vertex input must be an integer",
        ),
        (
            lambda d: d.update(slangs=[]),
            "'slangs' must be an object",
        ),
        (
            lambda d: d["slangs"].update(glsl430="vs.glsl"),
            "entry for 'glsl430' must be an object",
        ),
        (
            lambda d: d.update(programs={"name": "basic"}),
            "'programs' in document must be a list of objects",
        ),
        (
            lambda d: d.update(headers=[42]),
            "'headers' must be a list of strings",
        ),
    ],
)
def test_malformed_documents_raise_generate_error(
    basic_document: dict,
    write_document: Callable[..., Path],
    mutate: Callable[[dict], object],
    message: str,
) -> None:
    mutate(basic_document)
    path = write_document(basic_document)

    with pytest.raises(shdc_nim.GenerateError) as exc_info:
        shdc_nim.load_reflection_document(path)

    assert message in exc_info.value.message
    assert exc_info.value.path == str(path)


def test_source_for_unknown_snippet_is_rejected(
    write_document: Callable[..., Path],
) -> None:
    doc = {
        "snippets": [],
        "slangs": {
            "glsl430": {
                "sources": [
                    {"snippet": "ghost", "source": "", "reflection": {"stage": "vs"}}
                ]
            }
        },
    }

    with pytest.raises(shdc_nim.GenerateError) as exc_info:
        shdc_nim.load_reflection_document(write_document(doc))

    assert exc_info.value.message == "unknown snippet 'ghost'"


def test_invalid_stage_is_rejected(
    basic_document: dict, write_document: Callable[..., Path]
) -> None:
    basic_document["slangs"]["glsl430"]["sources"][0]["reflection"] = {"stage": "cs"}

    with pytest.raises(shdc_nim.GenerateError) as exc_info:
        shdc_nim.load_reflection_document(write_document(basic_document))

    assert exc_info.value.message == "invalid shader stage 'cs'"


def test_non_object_document_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "list.json"
    path.write_text(json.dumps([1, 2]), encoding="utf-8")

    with pytest.raises(shdc_nim.GenerateError):
        shdc_nim.load_reflection_document(path)


def test_invalid_json_propagates_decode_error(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(json.JSONDecodeError):
        shdc_nim.load_reflection_document(path)


def test_loaded_document_generates_end_to_end(
    tmp_path: Path, basic_document: dict, write_document: Callable[..., Path]
) -> None:
    doc = shdc_nim.load_reflection_document(write_document(basic_document))
    output = tmp_path / "shd.nim"
    mask = shdc_nim.slang_bit(Slang.GLSL430) | shdc_nim.slang_bit(Slang.HLSL5)

    shdc_nim.generate(doc.input, doc.reflections, doc.bytecodes, mask, output)

    text = output.read_text(encoding="utf-8")
    assert "import math\n" in text
    assert "    of backendGlcore:\n" in text
    assert "    of backendD3d11:\n" in text
    assert text.count("type ShdParams* {.packed.} = object") == 1
