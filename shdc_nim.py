"""Nim shader bindings generator for sokol-gfx.

Turns per-backend shader reflection (produced by an upstream cross-compile
step) into a single Nim module: bind-slot constants, std140-compatible
uniform block structs, embedded shader sources/bytecode and one
`sg.ShaderDesc` accessor per shader program.

Usage:
    python shdc_nim.py --input shd.json --output shd.nim --slang glsl430:hlsl5
"""

import argparse
import json
import sys
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path

DEFAULT_GEN_VERSION = 1


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class GenerateConfig:
    input: Path
    output: Path
    slang: int
    gen_version: int
    errfmt: str
    cmdline: str


VALID_ERROR_CODES = {
    "INVALID_SLANG",
    "MISSING_SLANG",
    "MISSING_OUTPUT",
    "PATH_NOT_FOUND",
    "INVALID_GENVER",
    "INVALID_ERRFMT",
}
VALID_ERRFMTS = ("gcc", "msvc")


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def parse_slangs(raw: str | None) -> int:
    """Convert a colon-separated backend list into the enabled-backend bitmask."""
    if not raw:
        raise ConfigError(
            "MISSING_SLANG",
            "Generate mode requires --slang.",
            f"Pass one or more of: {':'.join(SLANG_NAMES.values())}.",
        )
    mask = 0
    for name in raw.split(":"):
        slang = slang_from_str(name)
        if slang is None:
            raise ConfigError(
                "INVALID_SLANG",
                f"Unsupported shader language: {name!r}",
                f"Use one of: {', '.join(SLANG_NAMES.values())}.",
            )
        mask |= slang_bit(slang)
    return mask


def parse_gen_version(raw: str) -> int:
    if raw.isdigit():
        return int(raw)
    raise ConfigError(
        "INVALID_GENVER",
        f"Invalid generator version: {raw!r}",
        "Pass a non-negative integer, for example --genver 1.",
    )


def validate_path_exists(
    path: Path | None, flag: str, suggestion: str | None = None
) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/resource",
        )
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing path for this flag.",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate sokol-gfx Nim shader bindings from reflection data"
    )
    parser.add_argument("--input", type=Path, default=None)
    parser.add_argument("--output", type=Path, default=None)
    parser.add_argument("--slang", type=str, default=None)
    parser.add_argument("--genver", type=str, default=str(DEFAULT_GEN_VERSION))
    parser.add_argument("--errfmt", type=str, default="gcc")
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace, cmdline: str = "") -> GenerateConfig:
    input_path = validate_path_exists(
        args.input,
        "--input",
        "Pass the reflection document written by the cross-compile step: "
        "--input /path/to/shd.json",
    )
    if args.output is None:
        raise ConfigError(
            "MISSING_OUTPUT",
            "--output is required: no path provided.",
            "Pass the Nim file to generate: --output /path/to/shd.nim",
        )
    slang = parse_slangs(args.slang)
    gen_version = parse_gen_version(args.genver)
    if args.errfmt not in VALID_ERRFMTS:
        raise ConfigError(
            "INVALID_ERRFMT",
            f"Unsupported error format: {args.errfmt!r}",
            "Use one of: gcc, msvc.",
        )

    return GenerateConfig(
        input=input_path,
        output=args.output,
        slang=slang,
        gen_version=gen_version,
        errfmt=args.errfmt,
        cmdline=cmdline,
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig:
    raw_argv = sys.argv[1:] if argv is None else argv
    return validate_config(parse_args(raw_argv), cmdline=" ".join(raw_argv))


# ===--- Backends ---=== #


class Slang(IntEnum):
    """Target shading languages, in emission order."""

    GLSL410 = 0
    GLSL430 = 1
    GLSL300ES = 2
    HLSL4 = 3
    HLSL5 = 4
    METAL_MACOS = 5
    METAL_IOS = 6
    METAL_SIM = 7
    WGSL = 8


SLANG_NAMES: dict[Slang, str] = {
    Slang.GLSL410: "glsl410",
    Slang.GLSL430: "glsl430",
    Slang.GLSL300ES: "glsl300es",
    Slang.HLSL4: "hlsl4",
    Slang.HLSL5: "hlsl5",
    Slang.METAL_MACOS: "metal_macos",
    Slang.METAL_IOS: "metal_ios",
    Slang.METAL_SIM: "metal_sim",
    Slang.WGSL: "wgsl",
}

SLANG_BACKEND_TAGS: dict[Slang, str] = {
    Slang.GLSL410: "backendGlcore",
    Slang.GLSL430: "backendGlcore",
    Slang.GLSL300ES: "backendGles3",
    Slang.HLSL4: "backendD3d11",
    Slang.HLSL5: "backendD3d11",
    Slang.METAL_MACOS: "backendMetalMacos",
    Slang.METAL_IOS: "backendMetalIos",
    Slang.METAL_SIM: "backendMetalSimulator",
    Slang.WGSL: "backendWgsl",
}

# shader model targets for runtime-compiled HLSL, by (slang, stage)
D3D11_TARGETS: dict[tuple[Slang, str], str] = {
    (Slang.HLSL4, "vs"): "vs_4_0",
    (Slang.HLSL4, "fs"): "ps_4_0",
    (Slang.HLSL5, "vs"): "vs_5_0",
    (Slang.HLSL5, "fs"): "ps_5_0",
}

_GLSL_SLANGS = frozenset({Slang.GLSL410, Slang.GLSL430, Slang.GLSL300ES})
_HLSL_SLANGS = frozenset({Slang.HLSL4, Slang.HLSL5})


def slang_bit(slang: Slang) -> int:
    return 1 << int(slang)


def slang_str(slang: Slang) -> str:
    return SLANG_NAMES[slang]


def slang_from_str(name: str) -> Slang | None:
    for slang, slang_name in SLANG_NAMES.items():
        if slang_name == name:
            return slang
    return None


def enabled_slangs(mask: int) -> tuple[Slang, ...]:
    return tuple(slang for slang in Slang if mask & slang_bit(slang))


def is_glsl(slang: Slang) -> bool:
    return slang in _GLSL_SLANGS


def is_hlsl(slang: Slang) -> bool:
    return slang in _HLSL_SLANGS


# ===--- Resource type tables ---=== #


class UniformType(Enum):
    FLOAT = "float"
    FLOAT2 = "float2"
    FLOAT3 = "float3"
    FLOAT4 = "float4"
    INT = "int"
    INT2 = "int2"
    INT3 = "int3"
    INT4 = "int4"
    MAT4 = "mat4"
    INVALID = "invalid"


class ImageType(Enum):
    IMAGE_2D = "2d"
    CUBE = "cube"
    IMAGE_3D = "3d"
    ARRAY = "array"
    INVALID = "invalid"


class ImageSampleType(Enum):
    FLOAT = "float"
    DEPTH = "depth"
    SINT = "sint"
    UINT = "uint"
    UNFILTERABLE_FLOAT = "unfilterable_float"
    INVALID = "invalid"


class SamplerType(Enum):
    FILTERING = "filtering"
    COMPARISON = "comparison"
    NONFILTERING = "nonfiltering"
    INVALID = "invalid"


# Sentinels emitted in place of unrecognized types.
INVALID_UNIFORM_TYPE = "INVALID_UNIFORM_TYPE"
UNKNOWN_UNIFORM_TAG = "FIXME"
INVALID_TAG = "INVALID"

UNIFORM_NIM_TYPES: dict[UniformType, str] = {
    UniformType.FLOAT: "float32",
    UniformType.FLOAT2: "array[2, float32]",
    UniformType.FLOAT3: "array[3, float32]",
    UniformType.FLOAT4: "array[4, float32]",
    UniformType.INT: "int32",
    UniformType.INT2: "array[2, int32]",
    UniformType.INT3: "array[3, int32]",
    UniformType.INT4: "array[4, int32]",
    UniformType.MAT4: "array[16, float32]",
}

UNIFORM_ITEM_SIZES: dict[UniformType, int] = {
    UniformType.FLOAT: 4,
    UniformType.FLOAT2: 8,
    UniformType.FLOAT3: 12,
    UniformType.FLOAT4: 16,
    UniformType.INT: 4,
    UniformType.INT2: 8,
    UniformType.INT3: 12,
    UniformType.INT4: 16,
    UniformType.MAT4: 64,
}

UNIFORM_SOKOL_TYPES: dict[UniformType, str] = {
    UniformType.FLOAT: "uniformTypeFloat",
    UniformType.FLOAT2: "uniformTypeFloat2",
    UniformType.FLOAT3: "uniformTypeFloat3",
    UniformType.FLOAT4: "uniformTypeFloat4",
    UniformType.INT: "uniformTypeInt",
    UniformType.INT2: "uniformTypeInt2",
    UniformType.INT3: "uniformTypeInt3",
    UniformType.INT4: "uniformTypeInt4",
    UniformType.MAT4: "uniformTypeMat4",
}

# Flattened blocks are exposed as an array of the widest matching vec4 type.
FLATTENED_UNIFORM_TYPES: dict[UniformType, UniformType] = {
    UniformType.FLOAT: UniformType.FLOAT4,
    UniformType.FLOAT2: UniformType.FLOAT4,
    UniformType.FLOAT3: UniformType.FLOAT4,
    UniformType.FLOAT4: UniformType.FLOAT4,
    UniformType.MAT4: UniformType.FLOAT4,
    UniformType.INT: UniformType.INT4,
    UniformType.INT2: UniformType.INT4,
    UniformType.INT3: UniformType.INT4,
    UniformType.INT4: UniformType.INT4,
}

IMAGE_TYPE_TAGS: dict[ImageType, str] = {
    ImageType.IMAGE_2D: "imageType2d",
    ImageType.CUBE: "imageTypeCube",
    ImageType.IMAGE_3D: "imageType3d",
    ImageType.ARRAY: "imageTypeArray",
}

IMAGE_SAMPLE_TYPE_TAGS: dict[ImageSampleType, str] = {
    ImageSampleType.FLOAT: "imageSampleTypeFloat",
    ImageSampleType.DEPTH: "imageSampleTypeDepth",
    ImageSampleType.SINT: "imageSampleTypeSint",
    ImageSampleType.UINT: "imageSampleTypeUint",
    ImageSampleType.UNFILTERABLE_FLOAT: "imageSampleTypeUnfilterableFloat",
}

SAMPLER_TYPE_TAGS: dict[SamplerType, str] = {
    SamplerType.FILTERING: "samplerTypeFiltering",
    SamplerType.COMPARISON: "samplerTypeComparison",
    SamplerType.NONFILTERING: "samplerTypeNonfiltering",
}

UNIFORM_LAYOUT_TAG = "uniformLayoutStd140"

# per-stage bind slot limits of sokol-gfx
MAX_VERTEX_ATTRS = 16
MAX_UNIFORM_BLOCKS = 4
MAX_IMAGES = 12
MAX_SAMPLERS = 8
MAX_IMAGE_SAMPLERS = 12


def uniform_type_str(utype: UniformType) -> str:
    return utype.value


def uniform_size(utype: UniformType, array_count: int) -> int:
    return UNIFORM_ITEM_SIZES.get(utype, 0) * array_count


def roundup(val: int, round_to: int) -> int:
    return (val + (round_to - 1)) & ~(round_to - 1)


# ===--- Reflection model ---=== #


class SnippetType(Enum):
    BLOCK = "block"
    VS = "vs"
    FS = "fs"


@dataclass(frozen=True)
class Snippet:
    name: str
    type: SnippetType


@dataclass(frozen=True)
class Program:
    name: str
    vs_name: str
    fs_name: str


@dataclass(frozen=True)
class Input:
    """Upstream program/snippet declarations for one shader module.

    Attributes:
        base_path: Path of the annotated shader file, used as the error
            location for validation failures.
        module: Optional module name; prefixes every generated identifier.
        snippets: Snippets in declaration order.
        programs: Programs in declaration order.
        headers: Raw lines injected verbatim after the sokol import.
        ctype_map: Uniform type name (e.g. "float4") -> Nim type override.
    """

    base_path: str
    module: str
    snippets: tuple[Snippet, ...]
    programs: tuple[Program, ...]
    headers: tuple[str, ...] = ()
    ctype_map: dict[str, str] = field(default_factory=dict)

    @property
    def mod_prefix(self) -> str:
        return f"{self.module}_" if self.module else ""

    def snippet_index(self, name: str) -> int:
        for index, snippet in enumerate(self.snippets):
            if snippet.name == name:
                return index
        return -1


@dataclass(frozen=True)
class VertexAttr:
    name: str
    slot: int = -1
    sem_name: str = "TEXCOORD"
    sem_index: int = 0


@dataclass(frozen=True)
class Uniform:
    name: str
    type: UniformType
    offset: int
    array_count: int = 1


@dataclass(frozen=True)
class UniformBlock:
    slot: int
    size: int
    struct_name: str
    inst_name: str
    uniforms: tuple[Uniform, ...]
    flattened: bool = False


@dataclass(frozen=True)
class Image:
    name: str
    slot: int
    type: ImageType
    sample_type: ImageSampleType
    multisampled: bool = False


@dataclass(frozen=True)
class Sampler:
    name: str
    slot: int
    type: SamplerType


@dataclass(frozen=True)
class ImageSampler:
    name: str
    slot: int
    image_name: str
    sampler_name: str


@dataclass(frozen=True)
class StageReflection:
    stage: str
    entry_point: str
    inputs: tuple[VertexAttr, ...] = ()
    uniform_blocks: tuple[UniformBlock, ...] = ()
    images: tuple[Image, ...] = ()
    samplers: tuple[Sampler, ...] = ()
    image_samplers: tuple[ImageSampler, ...] = ()

    def find_uniform_block_by_slot(self, slot: int) -> UniformBlock | None:
        return next((ub for ub in self.uniform_blocks if ub.slot == slot), None)

    def find_image_by_slot(self, slot: int) -> Image | None:
        return next((img for img in self.images if img.slot == slot), None)

    def find_sampler_by_slot(self, slot: int) -> Sampler | None:
        return next((smp for smp in self.samplers if smp.slot == slot), None)

    def find_image_sampler_by_slot(self, slot: int) -> ImageSampler | None:
        return next((pair for pair in self.image_samplers if pair.slot == slot), None)

    def find_image_by_name(self, name: str) -> Image | None:
        return next((img for img in self.images if img.name == name), None)

    def find_sampler_by_name(self, name: str) -> Sampler | None:
        return next((smp for smp in self.samplers if smp.name == name), None)


@dataclass(frozen=True)
class StageSource:
    """Cross-compiled source and reflection for one snippet on one backend."""

    snippet_index: int
    source_code: str
    refl: StageReflection


class ResourceRegistry:
    """First-wins registry of resources keyed by name.

    A resource declared by several snippets (or seen again on a later
    backend) is kept once, at the position of its first declaration.
    """

    def __init__(self):
        self._items: dict[str, object] = {}

    def add(self, name: str, item: object) -> bool:
        if name in self._items:
            return False
        self._items[name] = item
        return True

    def __len__(self) -> int:
        return len(self._items)

    def items(self) -> tuple:
        return tuple(self._items.values())


@dataclass(frozen=True)
class BackendReflection:
    """All stage sources for one backend plus its deduplicated resources.

    Build with `build_backend_reflection` so the unique_* tuples are
    consistent with `sources`.
    """

    sources: tuple[StageSource, ...]
    unique_uniform_blocks: tuple[UniformBlock, ...] = ()
    unique_images: tuple[Image, ...] = ()
    unique_samplers: tuple[Sampler, ...] = ()

    def find_source_by_snippet_index(self, snippet_index: int) -> StageSource | None:
        return next(
            (src for src in self.sources if src.snippet_index == snippet_index), None
        )


@dataclass(frozen=True)
class BytecodeBlob:
    snippet_index: int
    data: bytes


@dataclass(frozen=True)
class BackendBytecode:
    blobs: tuple[BytecodeBlob, ...] = ()

    def find_blob_by_snippet_index(self, snippet_index: int) -> BytecodeBlob | None:
        return next(
            (blob for blob in self.blobs if blob.snippet_index == snippet_index), None
        )


def build_backend_reflection(sources: tuple[StageSource, ...]) -> BackendReflection:
    blocks = ResourceRegistry()
    images = ResourceRegistry()
    samplers = ResourceRegistry()
    for src in sources:
        for ub in src.refl.uniform_blocks:
            blocks.add(ub.struct_name, ub)
        for img in src.refl.images:
            images.add(img.name, img)
        for smp in src.refl.samplers:
            samplers.add(smp.name, smp)
    return BackendReflection(
        sources=tuple(sources),
        unique_uniform_blocks=blocks.items(),
        unique_images=images.items(),
        unique_samplers=samplers.items(),
    )


def find_source_by_shader_name(
    name: str, inp: Input, refl: BackendReflection
) -> StageSource | None:
    snippet_index = inp.snippet_index(name)
    if snippet_index < 0:
        return None
    return refl.find_source_by_snippet_index(snippet_index)


def find_blob_by_shader_name(
    name: str, inp: Input, bytecode: BackendBytecode
) -> BytecodeBlob | None:
    snippet_index = inp.snippet_index(name)
    if snippet_index < 0:
        return None
    return bytecode.find_blob_by_snippet_index(snippet_index)


# ===--- Errors ---=== #


class GenerateError(Exception):
    """Fatal generation error with a source location.

    Raised for malformed reflection documents, per-backend validation
    failures and output write failures. Nothing is written to the output
    path once this has been raised.
    """

    def __init__(self, path: str, line: int, message: str):
        super().__init__(message)
        self.path = path
        self.line = line
        self.message = message

    def as_string(self, errfmt: str = "gcc") -> str:
        if errfmt == "msvc":
            return f"{self.path}({self.line}): error: {self.message}"
        return f"{self.path}:{self.line}:0: error: {self.message}"


# ===--- Identifier naming ---=== #


def to_camel_case(name: str) -> str:
    parts = name.split("_")
    return parts[0].lower() + "".join(part.capitalize() for part in parts[1:])


def to_pascal_case(name: str) -> str:
    return "".join(part.capitalize() for part in name.split("_"))


def attr_const_name(inp: Input, snippet_name: str, attr_name: str) -> str:
    return to_camel_case(f"ATTR_{inp.mod_prefix}_{snippet_name}_{attr_name}")


def slot_const_name(inp: Input, name: str) -> str:
    return to_camel_case(f"SLOT_{inp.mod_prefix}_{name}")


def struct_type_name(inp: Input, struct_name: str) -> str:
    return to_pascal_case(f"{inp.mod_prefix}_{struct_name}")


def bytecode_array_name(inp: Input, snippet_name: str, slang: Slang) -> str:
    return to_camel_case(f"{inp.mod_prefix}_{snippet_name}_bytecode_{slang_str(slang)}")


def source_array_name(inp: Input, snippet_name: str, slang: Slang) -> str:
    return to_camel_case(f"{inp.mod_prefix}_{snippet_name}_source_{slang_str(slang)}")


def shader_desc_func_name(inp: Input, program_name: str) -> str:
    return to_camel_case(f"{inp.mod_prefix}_{program_name}_shader_desc")


def shader_label(inp: Input, program_name: str) -> str:
    return to_camel_case(f"{inp.mod_prefix}_{program_name}_shader")


# ===--- Reflection document loading ---=== #


@dataclass(frozen=True)
class LoadedDocument:
    """Everything one reflection document describes.

    Attributes:
        input: Program/snippet declarations, headers and type overrides.
        reflections: Per-backend stage sources, only for backends the
            document contains.
        bytecodes: Per-backend compiled blobs (possibly empty).
    """

    input: Input
    reflections: dict[Slang, BackendReflection]
    bytecodes: dict[Slang, BackendBytecode]


def _parse_enum(enum_type, raw: object):
    try:
        return enum_type(raw)
    except ValueError:
        return enum_type.INVALID


def _require(obj: dict, key: str, where: str, doc_path: str) -> object:
    if not isinstance(obj, dict) or key not in obj:
        raise GenerateError(doc_path, 0, f"missing '{key}' in {where}")
    return obj[key]


def _require_str(obj: dict, key: str, where: str, doc_path: str) -> str:
    value = _require(obj, key, where, doc_path)
    if not isinstance(value, str):
        raise GenerateError(doc_path, 0, f"'{key}' in {where} must be a string")
    return value


def _to_int(value: object, key: str, where: str, doc_path: str) -> int:
    # JSON true/false parse as int
    if isinstance(value, bool):
        raise GenerateError(doc_path, 0, f"'{key}' in {where} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as err:
        raise GenerateError(
            doc_path, 0, f"'{key}' in {where} must be an integer"
        ) from err


def _require_int(obj: dict, key: str, where: str, doc_path: str) -> int:
    return _to_int(_require(obj, key, where, doc_path), key, where, doc_path)


def _optional_int(obj: dict, key: str, default: int, where: str, doc_path: str) -> int:
    return _to_int(obj.get(key, default), key, where, doc_path)


def _objects(obj: dict, key: str, where: str, doc_path: str) -> list[dict]:
    """Return obj[key] as a list of JSON objects (empty when absent)."""
    items = obj.get(key, [])
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        raise GenerateError(doc_path, 0, f"'{key}' in {where} must be a list of objects")
    return items


def parse_uniform_block(raw: dict, doc_path: str) -> UniformBlock:
    where = "uniform block"
    uniforms = tuple(
        Uniform(
            name=_require_str(u, "name", "uniform", doc_path),
            type=_parse_enum(UniformType, _require(u, "type", "uniform", doc_path)),
            offset=_require_int(u, "offset", "uniform", doc_path),
            array_count=_optional_int(u, "array_count", 1, "uniform", doc_path),
        )
        for u in _objects(raw, "uniforms", where, doc_path)
    )
    struct_name = _require_str(raw, "struct_name", where, doc_path)
    inst_name = raw.get("inst_name", "_" + struct_name)
    if not isinstance(inst_name, str):
        raise GenerateError(doc_path, 0, f"'inst_name' in {where} must be a string")
    return UniformBlock(
        slot=_require_int(raw, "slot", where, doc_path),
        size=_require_int(raw, "size", where, doc_path),
        struct_name=struct_name,
        inst_name=inst_name,
        uniforms=uniforms,
        flattened=bool(raw.get("flattened", False)),
    )


def parse_stage_reflection(raw: dict, doc_path: str) -> StageReflection:
    stage = _require(raw, "stage", "reflection", doc_path)
    if stage not in ("vs", "fs"):
        raise GenerateError(doc_path, 0, f"invalid shader stage '{stage}'")

    inputs = []
    for attr in _objects(raw, "inputs", "reflection", doc_path):
        slot = attr.get("slot")
        inputs.append(
            VertexAttr(
                name=_require_str(attr, "name", "vertex input", doc_path),
                slot=-1 if slot is None else _to_int(slot, "slot", "vertex input", doc_path),
                sem_name=attr.get("sem_name", "TEXCOORD"),
                sem_index=_optional_int(attr, "sem_index", 0, "vertex input", doc_path),
            )
        )
    images = tuple(
        Image(
            name=_require_str(img, "name", "image", doc_path),
            slot=_require_int(img, "slot", "image", doc_path),
            type=_parse_enum(ImageType, img.get("type", "2d")),
            sample_type=_parse_enum(ImageSampleType, img.get("sample_type", "float")),
            multisampled=bool(img.get("multisampled", False)),
        )
        for img in _objects(raw, "images", "reflection", doc_path)
    )
    samplers = tuple(
        Sampler(
            name=_require_str(smp, "name", "sampler", doc_path),
            slot=_require_int(smp, "slot", "sampler", doc_path),
            type=_parse_enum(SamplerType, smp.get("type", "filtering")),
        )
        for smp in _objects(raw, "samplers", "reflection", doc_path)
    )
    image_samplers = tuple(
        ImageSampler(
            name=_require_str(pair, "name", "image sampler", doc_path),
            slot=_require_int(pair, "slot", "image sampler", doc_path),
            image_name=_require_str(pair, "image_name", "image sampler", doc_path),
            sampler_name=_require_str(pair, "sampler_name", "image sampler", doc_path),
        )
        for pair in _objects(raw, "image_samplers", "reflection", doc_path)
    )
    return StageReflection(
        stage=stage,
        entry_point=raw.get("entry_point", "main"),
        inputs=tuple(inputs),
        uniform_blocks=tuple(
            parse_uniform_block(ub, doc_path)
            for ub in _objects(raw, "uniform_blocks", "reflection", doc_path)
        ),
        images=images,
        samplers=samplers,
        image_samplers=image_samplers,
    )


def parse_input(raw: dict, doc_path: str) -> Input:
    snippets = []
    for snippet in _objects(raw, "snippets", "document", doc_path):
        snippet_type = _require(snippet, "type", "snippet", doc_path)
        try:
            parsed_type = SnippetType(snippet_type)
        except ValueError as err:
            raise GenerateError(
                doc_path, 0, f"invalid snippet type '{snippet_type}'"
            ) from err
        snippets.append(
            Snippet(
                name=_require_str(snippet, "name", "snippet", doc_path), type=parsed_type
            )
        )
    programs = tuple(
        Program(
            name=_require_str(prog, "name", "program", doc_path),
            vs_name=_require_str(prog, "vs", "program", doc_path),
            fs_name=_require_str(prog, "fs", "program", doc_path),
        )
        for prog in _objects(raw, "programs", "document", doc_path)
    )
    ctypes = raw.get("ctypes", {})
    if not isinstance(ctypes, dict):
        raise GenerateError(doc_path, 0, "'ctypes' must be an object")
    headers = raw.get("headers", [])
    if not isinstance(headers, list) or not all(isinstance(h, str) for h in headers):
        raise GenerateError(doc_path, 0, "'headers' must be a list of strings")
    return Input(
        base_path=raw.get("base_path", doc_path),
        module=raw.get("module", ""),
        snippets=tuple(snippets),
        programs=programs,
        headers=tuple(headers),
        ctype_map=dict(ctypes),
    )


def _snippet_index(inp: Input, entry: dict, where: str, doc_path: str) -> int:
    snippet_name = _require_str(entry, "snippet", where, doc_path)
    snippet_index = inp.snippet_index(snippet_name)
    if snippet_index < 0:
        raise GenerateError(doc_path, 0, f"unknown snippet '{snippet_name}'")
    return snippet_index


def load_reflection_document(path: Path) -> LoadedDocument:
    """Read a JSON reflection document and build the generator inputs.

    Bytecode entries reference files relative to the document directory;
    they are read as raw bytes.

    Raises:
        OSError: The document or a referenced bytecode file is unreadable.
        json.JSONDecodeError: The document is not valid JSON.
        GenerateError: A required key is missing or a value is malformed.
    """
    path = Path(path)
    doc_path = str(path)
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise GenerateError(doc_path, 0, "reflection document must be a JSON object")

    inp = parse_input(raw, doc_path)
    slang_entries = raw.get("slangs", {})
    if not isinstance(slang_entries, dict):
        raise GenerateError(doc_path, 0, "'slangs' must be an object")

    reflections: dict[Slang, BackendReflection] = {}
    bytecodes: dict[Slang, BackendBytecode] = {}
    for name, entry in slang_entries.items():
        slang = slang_from_str(name)
        if slang is None:
            raise GenerateError(doc_path, 0, f"unknown shader language '{name}'")
        if not isinstance(entry, dict):
            raise GenerateError(doc_path, 0, f"entry for '{name}' must be an object")

        sources = []
        for src in _objects(entry, "sources", f"'{name}'", doc_path):
            sources.append(
                StageSource(
                    snippet_index=_snippet_index(inp, src, "source", doc_path),
                    source_code=_require_str(src, "source", "source", doc_path),
                    refl=parse_stage_reflection(
                        _require(src, "reflection", "source", doc_path), doc_path
                    ),
                )
            )
        reflections[slang] = build_backend_reflection(tuple(sources))

        blobs = []
        for blob in _objects(entry, "bytecode", f"'{name}'", doc_path):
            snippet_index = _snippet_index(inp, blob, "bytecode", doc_path)
            blob_path = path.parent / _require_str(blob, "path", "bytecode", doc_path)
            blobs.append(BytecodeBlob(snippet_index, blob_path.read_bytes()))
        bytecodes[slang] = BackendBytecode(tuple(blobs))

    return LoadedDocument(input=inp, reflections=reflections, bytecodes=bytecodes)


# ===--- Validation ---=== #


def _check_slots(
    inp: Input, slang: Slang, stage_name: str, kind: str, items, limit: int
) -> None:
    for item in items:
        if not 0 <= item.slot < limit:
            raise GenerateError(
                inp.base_path,
                0,
                f"{kind} '{item.name}' in '{stage_name}' uses bind slot {item.slot} "
                f"(must be 0..{limit - 1}) for '{slang_str(slang)}'",
            )


def check_errors(inp: Input, refl: BackendReflection, slang: Slang) -> None:
    """Validate one backend's reflection before anything is rendered.

    Every message names the backend being validated.

    Raises:
        GenerateError: located at inp.base_path, line 0.
    """
    backend = slang_str(slang)
    for prog in inp.programs:
        for stage_name, snippet_name, expected in (
            ("vertex", prog.vs_name, SnippetType.VS),
            ("fragment", prog.fs_name, SnippetType.FS),
        ):
            snippet_index = inp.snippet_index(snippet_name)
            if snippet_index < 0:
                raise GenerateError(
                    inp.base_path,
                    0,
                    f"unknown {stage_name} shader '{snippet_name}' in program "
                    f"'{prog.name}' for '{backend}'",
                )
            if inp.snippets[snippet_index].type != expected:
                raise GenerateError(
                    inp.base_path,
                    0,
                    f"'{snippet_name}' in program '{prog.name}' is not a {stage_name} "
                    f"shader for '{backend}'",
                )

    for snippet_index, snippet in enumerate(inp.snippets):
        if snippet.type == SnippetType.BLOCK:
            continue
        src = refl.find_source_by_snippet_index(snippet_index)
        if src is None:
            raise GenerateError(
                inp.base_path,
                0,
                f"no generated '{backend}' source for shader '{snippet.name}'",
            )
        used_attrs = [attr for attr in src.refl.inputs if attr.slot >= 0]
        for kind, items, limit in (
            ("vertex attribute", used_attrs, MAX_VERTEX_ATTRS),
            ("uniform block", src.refl.uniform_blocks, MAX_UNIFORM_BLOCKS),
            ("image", src.refl.images, MAX_IMAGES),
            ("sampler", src.refl.samplers, MAX_SAMPLERS),
            ("image sampler", src.refl.image_samplers, MAX_IMAGE_SAMPLERS),
        ):
            _check_slots(inp, slang, snippet.name, kind, items, limit)
        for pair in src.refl.image_samplers:
            if src.refl.find_image_by_name(pair.image_name) is None:
                raise GenerateError(
                    inp.base_path,
                    0,
                    f"image sampler '{pair.name}' references unknown image "
                    f"'{pair.image_name}' for '{backend}'",
                )
            if src.refl.find_sampler_by_name(pair.sampler_name) is None:
                raise GenerateError(
                    inp.base_path,
                    0,
                    f"image sampler '{pair.name}' references unknown sampler "
                    f"'{pair.sampler_name}' for '{backend}'",
                )


def find_invalid_uniforms(blocks: tuple[UniformBlock, ...]) -> list[str]:
    """Return one warning per uniform whose type has no Nim mapping."""
    warnings = []
    for ub in blocks:
        for u in ub.uniforms:
            if u.type == UniformType.INVALID:
                warnings.append(
                    f"uniform '{ub.struct_name}.{u.name}' has an unsupported type, "
                    f"emitting {INVALID_UNIFORM_TYPE}"
                )
    return warnings


# ===--- Uniform block layout ---=== #


@dataclass(frozen=True)
class StructField:
    """One field of a packed uniform block struct.

    Attributes:
        name: Field name; pad fields are named pad_<offset>.
        nim_type: Rendered Nim type, or INVALID_UNIFORM_TYPE.
        offset: Byte offset of the field inside the struct.
        size: Byte size the field occupies.
        is_pad: True for inserted padding (not exported).
        align16: True for the first field, which carries {.align(16).}.
    """

    name: str
    nim_type: str
    offset: int
    size: int
    is_pad: bool = False
    align16: bool = False


def uniform_nim_type(
    utype: UniformType, array_count: int, ctype_map: dict[str, str]
) -> str:
    base = ctype_map.get(uniform_type_str(utype)) if utype != UniformType.INVALID else None
    if base is None:
        base = UNIFORM_NIM_TYPES.get(utype)
    if base is None:
        return INVALID_UNIFORM_TYPE
    if array_count == 1:
        return base
    return f"array[{array_count}, {base}]"


def layout_uniform_block(
    ub: UniformBlock, ctype_map: dict[str, str]
) -> tuple[StructField, ...]:
    """Lay out a uniform block as explicit, packed struct fields.

    Reproduces the upstream std140 offsets exactly by inserting uint8 pad
    arrays wherever a uniform starts past the running cursor, and rounds
    the struct up to a multiple of 16 bytes with a trailing pad. A
    flattened block becomes a single vec4-array field covering the whole
    block.
    """
    fields: list[StructField] = []

    if ub.flattened:
        first_type = ub.uniforms[0].type if ub.uniforms else UniformType.FLOAT4
        flat_type = FLATTENED_UNIFORM_TYPES.get(first_type, UniformType.INVALID)
        count = roundup(ub.size, 16) // 16
        fields.append(
            StructField(
                name=ub.struct_name,
                nim_type=uniform_nim_type(flat_type, count, ctype_map),
                offset=0,
                size=count * 16,
                align16=True,
            )
        )
        return tuple(fields)

    cur_offset = 0
    for uniform in ub.uniforms:
        if uniform.offset > cur_offset:
            fields.append(
                StructField(
                    name=f"pad_{cur_offset}",
                    nim_type=f"array[{uniform.offset - cur_offset}, uint8]",
                    offset=cur_offset,
                    size=uniform.offset - cur_offset,
                    is_pad=True,
                    align16=not fields,
                )
            )
            cur_offset = uniform.offset
        size = uniform_size(uniform.type, uniform.array_count)
        fields.append(
            StructField(
                name=uniform.name,
                nim_type=uniform_nim_type(uniform.type, uniform.array_count, ctype_map),
                offset=cur_offset,
                size=size,
                align16=not fields,
            )
        )
        cur_offset += size

    round16 = roundup(cur_offset, 16)
    if cur_offset != round16:
        fields.append(
            StructField(
                name=f"pad_{cur_offset}",
                nim_type=f"array[{round16 - cur_offset}, uint8]",
                offset=cur_offset,
                size=round16 - cur_offset,
                is_pad=True,
                align16=not fields,
            )
        )
    return tuple(fields)


def render_struct_field(f: StructField) -> str:
    if f.nim_type == INVALID_UNIFORM_TYPE:
        return f"    {INVALID_UNIFORM_TYPE}"
    align = " {.align(16).}" if f.align16 else ""
    export = "" if f.is_pad else "*"
    return f"    {f.name}{export}{align}: {f.nim_type}"


def generate_uniform_block(inp: Input, ub: UniformBlock) -> list[str]:
    lines = [
        f"const {slot_const_name(inp, ub.struct_name)}* = {ub.slot}",
        f"type {struct_type_name(inp, ub.struct_name)}* {{.packed.}} = object",
    ]
    for f in layout_uniform_block(ub, inp.ctype_map):
        lines.append(render_struct_field(f))
    lines.append("")
    return lines


def generate_uniform_blocks(inp: Input, refl: BackendReflection) -> list[str]:
    lines = []
    for ub in refl.unique_uniform_blocks:
        lines.extend(generate_uniform_block(inp, ub))
    return lines


# ===--- Bind slot constants ---=== #


def generate_vertex_attrs(inp: Input, refl: BackendReflection) -> list[str]:
    lines = []
    for src in refl.sources:
        if src.refl.stage != "vs":
            continue
        snippet = inp.snippets[src.snippet_index]
        for attr in src.refl.inputs:
            if attr.slot >= 0:
                lines.append(
                    f"const {attr_const_name(inp, snippet.name, attr.name)}* = {attr.slot}"
                )
    lines.append("")
    return lines


def generate_image_bind_slots(inp: Input, refl: BackendReflection) -> list[str]:
    lines = [
        f"const {slot_const_name(inp, img.name)}* = {img.slot}"
        for img in refl.unique_images
    ]
    lines.append("")
    return lines


def generate_sampler_bind_slots(inp: Input, refl: BackendReflection) -> list[str]:
    lines = [
        f"const {slot_const_name(inp, smp.name)}* = {smp.slot}"
        for smp in refl.unique_samplers
    ]
    lines.append("")
    return lines


# ===--- Embedded sources and bytecode ---=== #

BYTES_PER_LINE = 16


def escape_comment_tokens(line: str) -> str:
    return line.replace("/*", "/_").replace("*/", "_/")


def format_byte_array(name: str, data: bytes) -> list[str]:
    """Render bytes as a Nim `array[N, uint8]` constant.

    Sixteen values per line in 0xNN form; the first value carries an
    explicit 'u8 suffix so Nim infers uint8 for the whole literal.
    """
    lines = [f"const {name}: array[{len(data)}, uint8] = ["]
    for start in range(0, len(data), BYTES_PER_LINE):
        row = data[start : start + BYTES_PER_LINE]
        items = []
        for offset, value in enumerate(row):
            suffix = "'u8" if start + offset == 0 else ""
            items.append(f"{value:#04x}{suffix},")
        lines.append("    " + "".join(items))
    lines.append("]")
    return lines


def format_source_comment(source_code: str) -> list[str]:
    lines = ["#"]
    for line in source_code.splitlines():
        lines.append(f"#   {escape_comment_tokens(line)}")
    lines.append("#")
    return lines


def generate_shader_sources_and_blobs(
    inp: Input, refl: BackendReflection, bytecode: BackendBytecode, slang: Slang
) -> list[str]:
    lines = []
    for snippet_index, snippet in enumerate(inp.snippets):
        if snippet.type not in (SnippetType.VS, SnippetType.FS):
            continue
        src = refl.find_source_by_snippet_index(snippet_index)
        if src is None:
            raise GenerateError(
                inp.base_path,
                0,
                f"no generated '{slang_str(slang)}' source for shader '{snippet.name}'",
            )
        lines.extend(format_source_comment(src.source_code))
        blob = bytecode.find_blob_by_snippet_index(snippet_index)
        if blob is not None:
            name = bytecode_array_name(inp, snippet.name, slang)
            lines.extend(format_byte_array(name, blob.data))
        else:
            name = source_array_name(inp, snippet.name, slang)
            lines.extend(format_byte_array(name, src.source_code.encode("utf-8") + b"\0"))
    return lines


# ===--- Shader desc dispatch ---=== #


def generate_stage(
    indent: str,
    stage_name: str,
    src: StageSource,
    blob: BytecodeBlob | None,
    array_name: str,
    slang: Slang,
) -> list[str]:
    lines = []
    prefix = f"{indent}result.{stage_name}"
    if blob is not None:
        lines.append(f"{prefix}.bytecode = {array_name}")
    else:
        lines.append(f"{prefix}.source = cast[cstring](addr({array_name}))")
        d3d11_target = D3D11_TARGETS.get((slang, stage_name))
        if d3d11_target:
            lines.append(f'{prefix}.d3d11Target = "{d3d11_target}"')
    lines.append(f'{prefix}.entry = "{src.refl.entry_point}"')

    for ub_index in range(MAX_UNIFORM_BLOCKS):
        ub = src.refl.find_uniform_block_by_slot(ub_index)
        if ub is None:
            continue
        ub_prefix = f"{prefix}.uniformBlocks[{ub_index}]"
        lines.append(f"{ub_prefix}.size = {roundup(ub.size, 16)}")
        lines.append(f"{ub_prefix}.layout = {UNIFORM_LAYOUT_TAG}")
        if not is_glsl(slang) or not ub.uniforms:
            continue
        if ub.flattened:
            flat_type = FLATTENED_UNIFORM_TYPES.get(ub.uniforms[0].type)
            type_tag = UNIFORM_SOKOL_TYPES.get(flat_type, UNKNOWN_UNIFORM_TAG)
            lines.append(f'{ub_prefix}.uniforms[0].name = "{ub.struct_name}"')
            lines.append(f"{ub_prefix}.uniforms[0].type = {type_tag}")
            lines.append(f"{ub_prefix}.uniforms[0].arrayCount = {roundup(ub.size, 16) // 16}")
        else:
            for u_index, u in enumerate(ub.uniforms):
                type_tag = UNIFORM_SOKOL_TYPES.get(u.type, UNKNOWN_UNIFORM_TAG)
                u_prefix = f"{ub_prefix}.uniforms[{u_index}]"
                lines.append(f'{u_prefix}.name = "{ub.inst_name}.{u.name}"')
                lines.append(f"{u_prefix}.type = {type_tag}")
                lines.append(f"{u_prefix}.arrayCount = {u.array_count}")

    for img_index in range(MAX_IMAGES):
        img = src.refl.find_image_by_slot(img_index)
        if img is None:
            continue
        img_prefix = f"{prefix}.images[{img_index}]"
        lines.append(f"{img_prefix}.used = true")
        lines.append(f"{img_prefix}.multisampled = {'true' if img.multisampled else 'false'}")
        lines.append(f"{img_prefix}.imageType = {IMAGE_TYPE_TAGS.get(img.type, INVALID_TAG)}")
        lines.append(
            f"{img_prefix}.sampleType = "
            f"{IMAGE_SAMPLE_TYPE_TAGS.get(img.sample_type, INVALID_TAG)}"
        )

    for smp_index in range(MAX_SAMPLERS):
        smp = src.refl.find_sampler_by_slot(smp_index)
        if smp is None:
            continue
        smp_prefix = f"{prefix}.samplers[{smp_index}]"
        lines.append(f"{smp_prefix}.used = true")
        lines.append(
            f"{smp_prefix}.samplerType = {SAMPLER_TYPE_TAGS.get(smp.type, INVALID_TAG)}"
        )

    for pair_index in range(MAX_IMAGE_SAMPLERS):
        pair = src.refl.find_image_sampler_by_slot(pair_index)
        if pair is None:
            continue
        pair_prefix = f"{prefix}.imageSamplerPairs[{pair_index}]"
        lines.append(f"{pair_prefix}.used = true")
        lines.append(
            f"{pair_prefix}.imageSlot = {src.refl.find_image_by_name(pair.image_name).slot}"
        )
        lines.append(
            f"{pair_prefix}.samplerSlot = "
            f"{src.refl.find_sampler_by_name(pair.sampler_name).slot}"
        )
        if is_glsl(slang):
            lines.append(f'{pair_prefix}.glslName = "{pair.name}"')
    return lines


def generate_shader_desc_init(
    indent: str,
    prog: Program,
    inp: Input,
    refl: BackendReflection,
    bytecode: BackendBytecode,
    slang: Slang,
) -> list[str]:
    vs_src = find_source_by_shader_name(prog.vs_name, inp, refl)
    fs_src = find_source_by_shader_name(prog.fs_name, inp, refl)
    if vs_src is None or fs_src is None:
        raise GenerateError(
            inp.base_path,
            0,
            f"no generated '{slang_str(slang)}' source for program '{prog.name}'",
        )
    vs_blob = find_blob_by_shader_name(prog.vs_name, inp, bytecode)
    fs_blob = find_blob_by_shader_name(prog.fs_name, inp, bytecode)
    vs_array = (
        bytecode_array_name(inp, prog.vs_name, slang)
        if vs_blob
        else source_array_name(inp, prog.vs_name, slang)
    )
    fs_array = (
        bytecode_array_name(inp, prog.fs_name, slang)
        if fs_blob
        else source_array_name(inp, prog.fs_name, slang)
    )

    lines = []
    for attr in vs_src.refl.inputs:
        if attr.slot < 0:
            continue
        if is_glsl(slang):
            lines.append(f'{indent}result.attrs[{attr.slot}].name = "{attr.name}"')
        elif is_hlsl(slang):
            lines.append(f'{indent}result.attrs[{attr.slot}].semName = "{attr.sem_name}"')
            lines.append(f"{indent}result.attrs[{attr.slot}].semIndex = {attr.sem_index}")
    lines.extend(generate_stage(indent, "vs", vs_src, vs_blob, vs_array, slang))
    lines.extend(generate_stage(indent, "fs", fs_src, fs_blob, fs_array, slang))
    lines.append(f'{indent}result.label = "{shader_label(inp, prog.name)}"')
    return lines


def generate_shader_desc_func(
    prog: Program,
    inp: Input,
    reflections: dict[Slang, BackendReflection],
    bytecodes: dict[Slang, BackendBytecode],
    slangs: tuple[Slang, ...],
) -> list[str]:
    """Emit the `proc ...ShaderDesc*(backend: sg.Backend)` accessor for a program.

    One `of` branch per enabled backend, in Slang order. When two enabled
    slangs map to the same sokol backend (e.g. glsl410 and glsl430) only
    the first gets a branch. Any other backend falls through to
    `else: discard`, leaving the result zero-initialized.
    """
    lines = [
        f"proc {shader_desc_func_name(inp, prog.name)}*(backend: sg.Backend): sg.ShaderDesc =",
        "  case backend:",
    ]
    seen_backends: set[str] = set()
    for slang in slangs:
        backend_tag = SLANG_BACKEND_TAGS[slang]
        if backend_tag in seen_backends:
            continue
        seen_backends.add(backend_tag)
        lines.append(f"    of {backend_tag}:")
        lines.extend(
            generate_shader_desc_init(
                "      ",
                prog,
                inp,
                reflections[slang],
                bytecodes.get(slang, BackendBytecode()),
                slang,
            )
        )
    lines.append("    else: discard")
    lines.append("")
    return lines


# ===--- Header ---=== #


def _overview_stage_resources(inp: Input, src: StageSource) -> list[str]:
    lines = []
    prefix = inp.mod_prefix
    for ub in src.refl.uniform_blocks:
        lines.append(f"#               Uniform block '{ub.struct_name}':")
        lines.append(f"#                   Nim struct: {struct_type_name(inp, ub.struct_name)}")
        lines.append(f"#                   Bind slot: SLOT_{prefix}{ub.struct_name} = {ub.slot}")
    for img in src.refl.images:
        lines.append(f"#               Image '{img.name}':")
        lines.append(f"#                   Image Type: {IMAGE_TYPE_TAGS.get(img.type, INVALID_TAG)}")
        lines.append(
            "#                   Sample Type: "
            f"{IMAGE_SAMPLE_TYPE_TAGS.get(img.sample_type, INVALID_TAG)}"
        )
        lines.append(f"#                   Multisampled: {'true' if img.multisampled else 'false'}")
        lines.append(f"#                   Bind slot: SLOT_{prefix}{img.name} = {img.slot}")
    for smp in src.refl.samplers:
        lines.append(f"#               Sampler '{smp.name}':")
        lines.append(f"#                   Type: {SAMPLER_TYPE_TAGS.get(smp.type, INVALID_TAG)}")
        lines.append(f"#                   Bind slot: SLOT_{prefix}{smp.name} = {smp.slot}")
    for pair in src.refl.image_samplers:
        lines.append(f"#               Image Sampler Pair '{pair.name}':")
        lines.append(f"#                   Image: {pair.image_name}")
        lines.append(f"#                   Sampler: {pair.sampler_name}")
    return lines


def generate_header(
    inp: Input,
    refl: BackendReflection | None,
    gen_version: int = DEFAULT_GEN_VERSION,
    cmdline: str = "",
) -> list[str]:
    """Return the provenance header and per-program resource overview.

    `refl` is the reflection of the first enabled backend; with no backend
    enabled the overview lists only program and shader names.
    """
    lines = [
        "#",
        f"#   #version:{gen_version}# (machine generated, don't edit!)",
        "#",
        "#   Generated by sokol-shdc (https://github.com/floooh/sokol-tools)",
        "#",
        f"#   Cmdline: {cmdline}",
        "#",
        "#   Overview:",
        "#",
    ]
    for prog in inp.programs:
        lines.append(f"#       Shader program '{prog.name}':")
        lines.append(
            "#           Get shader desc: "
            f"shd.{shader_desc_func_name(inp, prog.name)}(sg.queryBackend())"
        )
        vs_src = fs_src = None
        if refl is not None:
            vs_src = find_source_by_shader_name(prog.vs_name, inp, refl)
            fs_src = find_source_by_shader_name(prog.fs_name, inp, refl)
        lines.append(f"#           Vertex shader: {prog.vs_name}")
        if vs_src is not None:
            lines.append("#               Attribute slots:")
            for attr in vs_src.refl.inputs:
                if attr.slot >= 0:
                    lines.append(
                        f"#                   ATTR_{inp.mod_prefix}{prog.vs_name}_{attr.name}"
                        f" = {attr.slot}"
                    )
            lines.extend(_overview_stage_resources(inp, vs_src))
        lines.append(f"#           Fragment shader: {prog.fs_name}")
        if fs_src is not None:
            lines.extend(_overview_stage_resources(inp, fs_src))
        lines.append("#")
    lines.append("#")
    lines.append("import sokol/gfx as sg")
    lines.extend(inp.headers)
    lines.append("")
    return lines


# ===--- Buffered writer ---=== #


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing the generated module.

    Attributes:
        path: Absolute path of the written file.
        line_count: Number of newline characters in the written content.
        byte_count: Number of bytes written (UTF-8 encoded).
    """

    path: Path
    line_count: int
    byte_count: int


class OutputBuffer:
    """Accumulates generated lines; nothing touches disk until `write_to`."""

    def __init__(self):
        self._lines: list[str] = []

    def extend(self, lines: list[str]) -> None:
        self._lines.extend(lines)

    def getvalue(self) -> str:
        return "\n".join(self._lines) + "\n" if self._lines else ""

    def write_to(self, path: Path, error_path: str) -> FileWriteResult:
        """Write the whole buffer to `path` in a single open/write/close.

        Raises:
            GenerateError: The file cannot be opened or written; located at
                `error_path`, with `path` in the message.
        """
        content = self.getvalue()
        data = content.encode("utf-8")
        try:
            with open(path, "wb") as f:
                f.write(data)
        except OSError as err:
            raise GenerateError(
                error_path, 0, f"failed to open output file '{path}'"
            ) from err
        return FileWriteResult(
            path=Path(path).resolve(),
            line_count=content.count("\n"),
            byte_count=len(data),
        )


# ===--- Generation pipeline ---=== #


def assemble_module(
    inp: Input,
    reflections: dict[Slang, BackendReflection],
    bytecodes: dict[Slang, BackendBytecode],
    slang_mask: int,
    gen_version: int = DEFAULT_GEN_VERSION,
    cmdline: str = "",
) -> OutputBuffer:
    """Render the complete Nim module into an in-memory buffer.

    For each enabled backend in Slang order: validate, then (for the first
    backend only) emit header, attribute/image/sampler slot constants and
    uniform block structs, then that backend's embedded sources/blobs.
    Afterwards one shader-desc accessor per program.

    Raises:
        GenerateError: Validation failed for an enabled backend, or an
            enabled backend has no reflection data.
    """
    slangs = enabled_slangs(slang_mask)
    for slang in slangs:
        if slang not in reflections:
            raise GenerateError(
                inp.base_path, 0, f"no reflection data for '{slang_str(slang)}'"
            )

    buffer = OutputBuffer()
    common_decls_written = False
    for slang in slangs:
        refl = reflections[slang]
        check_errors(inp, refl, slang)
        if not common_decls_written:
            common_decls_written = True
            buffer.extend(generate_header(inp, refl, gen_version, cmdline))
            buffer.extend(generate_vertex_attrs(inp, refl))
            buffer.extend(generate_image_bind_slots(inp, refl))
            buffer.extend(generate_sampler_bind_slots(inp, refl))
            buffer.extend(generate_uniform_blocks(inp, refl))
        buffer.extend(
            generate_shader_sources_and_blobs(
                inp, refl, bytecodes.get(slang, BackendBytecode()), slang
            )
        )
    if not common_decls_written:
        buffer.extend(generate_header(inp, None, gen_version, cmdline))

    for prog in inp.programs:
        buffer.extend(generate_shader_desc_func(prog, inp, reflections, bytecodes, slangs))
    return buffer


def generate(
    inp: Input,
    reflections: dict[Slang, BackendReflection],
    bytecodes: dict[Slang, BackendBytecode],
    slang_mask: int,
    output: Path,
    gen_version: int = DEFAULT_GEN_VERSION,
    cmdline: str = "",
) -> FileWriteResult:
    """Assemble the module and write it to `output` exactly once.

    The output path is not opened unless every enabled backend validated
    and rendered without error.
    """
    buffer = assemble_module(inp, reflections, bytecodes, slang_mask, gen_version, cmdline)
    return buffer.write_to(output, inp.base_path)


def run_generate(config: GenerateConfig) -> FileWriteResult:
    """Execute load -> validate/render -> write -> summary for a GenerateConfig.

    Raises:
        OSError: Reflection document or bytecode file not readable.
        json.JSONDecodeError: Malformed reflection document.
        GenerateError: Malformed document, failed validation or failed write.
    """
    print(f"Parsing: {config.input}")
    doc = load_reflection_document(config.input)
    inp = doc.input
    print(
        f"  Input: {len(inp.programs)} programs, {len(inp.snippets)} snippets, "
        f"{len(doc.reflections)} backends"
    )

    slangs = enabled_slangs(config.slang)
    print(f"  Backends: {', '.join(slang_str(s) for s in slangs) or 'none'}")
    if slangs and slangs[0] in doc.reflections:
        first_refl = doc.reflections[slangs[0]]
        for warning in find_invalid_uniforms(first_refl.unique_uniform_blocks):
            print(f"Warning: {warning}")

    result = generate(
        inp,
        doc.reflections,
        doc.bytecodes,
        config.slang,
        config.output,
        config.gen_version,
        config.cmdline,
    )
    print(f"  Written: {result.line_count} lines to {result.path}")

    summary = build_generation_summary(inp, doc.reflections, config.slang, result)
    print_generation_summary(summary)
    return result


# ===--- Summary report ---=== #


@dataclass(frozen=True)
class GenerationCounts:
    """Counts of emitted declarations, derived from the pipeline inputs.

    Attributes:
        attr_slots: Vertex attribute constants (slot >= 0).
        image_slots: Unique image slot constants.
        sampler_slots: Unique sampler slot constants.
        uniform_blocks: Uniform block structs (each with its slot constant).
        literals: Embedded source/bytecode arrays across all backends.
        programs: Shader desc accessor procs.
    """

    attr_slots: int
    image_slots: int
    sampler_slots: int
    uniform_blocks: int
    literals: int
    programs: int

    @property
    def slot_constants(self) -> int:
        return self.attr_slots + self.image_slots + self.sampler_slots + self.uniform_blocks


@dataclass(frozen=True)
class GenerationSummary:
    backends: tuple[str, ...]
    counts: GenerationCounts
    file: FileWriteResult


def build_generation_counts(
    inp: Input, reflections: dict[Slang, BackendReflection], slang_mask: int
) -> GenerationCounts:
    slangs = enabled_slangs(slang_mask)
    stage_snippets = sum(
        1 for s in inp.snippets if s.type in (SnippetType.VS, SnippetType.FS)
    )
    if not slangs:
        return GenerationCounts(0, 0, 0, 0, 0, len(inp.programs))

    refl = reflections[slangs[0]]
    attr_slots = sum(
        1
        for src in refl.sources
        if src.refl.stage == "vs"
        for attr in src.refl.inputs
        if attr.slot >= 0
    )
    return GenerationCounts(
        attr_slots=attr_slots,
        image_slots=len(refl.unique_images),
        sampler_slots=len(refl.unique_samplers),
        uniform_blocks=len(refl.unique_uniform_blocks),
        literals=stage_snippets * len(slangs),
        programs=len(inp.programs),
    )


def build_generation_summary(
    inp: Input,
    reflections: dict[Slang, BackendReflection],
    slang_mask: int,
    file_result: FileWriteResult,
) -> GenerationSummary:
    return GenerationSummary(
        backends=tuple(slang_str(s) for s in enabled_slangs(slang_mask)),
        counts=build_generation_counts(inp, reflections, slang_mask),
        file=file_result,
    )


def format_generation_summary(summary: GenerationSummary) -> str:
    """Render a GenerationSummary as the console report.

    Returns a string with exactly one trailing newline.
    """
    counts = summary.counts
    lines = [
        "Nim shader bindings generated:",
        "",
        f"  Backends:   {', '.join(summary.backends) or 'none'}",
        f"  Output:     {summary.file.path}",
        "",
        "  Declarations:",
        f"    {'Slot consts:':<15}{counts.slot_constants:>6}",
        f"    {'Structs:':<15}{counts.uniform_blocks:>6}",
        f"    {'Literals:':<15}{counts.literals:>6}",
        f"    {'Shader descs:':<15}{counts.programs:>6}",
        "",
        f"  Total: {summary.file.line_count:,} lines, {summary.file.byte_count:,} bytes",
        "",
    ]
    return "\n".join(lines)


def print_generation_summary(summary: GenerationSummary) -> None:
    print(format_generation_summary(summary), end="")


# ===--- Main ---=== #


def main(argv: list[str] | None = None):
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    try:
        run_generate(config)
    except GenerateError as err:
        print(err.as_string(config.errfmt))
        raise SystemExit(1) from err
    except (OSError, json.JSONDecodeError) as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err
    except (RuntimeError, ValueError) as err:
        print(f"Internal error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
