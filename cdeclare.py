#!/usr/bin/env python3
"""
cdeclare - Declaration model extraction for C

High-level goals:
- Parse a C translation unit (via Clang) and walk its top-level cursors
- Keep only what is declared in the main file (no included headers)
- Reconcile tags, anonymous aggregates and typedef aliases into one record each
- Snapshot types and locations so the model holds no libclang handles
- Emit the resulting model as JSON for downstream generators

The walk is fail-fast: constructs the model does not describe abort the file
instead of being silently dropped.
"""

from __future__ import annotations
from ctypes import POINTER, byref, c_uint
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Literal, Optional, Sequence, Tuple, Union
import argparse
import json
import os
import shlex
import sys

from clang import cindex as clang_cindex
import yaml


# ============================================================
# ========================= ERRORS ===========================
# ============================================================

class CDeclareError(Exception):
    """Base class for everything cdeclare raises on purpose."""


class ConfigError(CDeclareError):
    pass


class ParseError(CDeclareError):
    """
    libclang could not produce a usable translation unit. The diagnostics are
    kept exactly as libclang formatted them.
    """

    def __init__(self, path: str, diagnostics: List[str]) -> None:
        self.path = path
        self.diagnostics = list(diagnostics)
        super().__init__(f"{path}: " + "; ".join(self.diagnostics))


class ModelError(CDeclareError):
    """
    The cursor tree contains something the declaration model cannot express.
    Raised out of the walk, so no partially populated SourceFile escapes.
    """


class UnexpectedEntityError(ModelError):
    pass


class EntityKindMismatchError(ModelError):
    pass


class UnnamedEntityError(ModelError):
    pass


class UnsupportedTypedefError(ModelError):
    pass


def _describe_cursor(cursor: "clang_cindex.Cursor") -> str:
    loc = cursor.location
    where = "<unknown location>"
    if loc is not None and loc.file is not None:
        where = f"{loc.file.name}:{loc.line}:{loc.column}"
    return f"{cursor.kind.name} '{cursor.spelling or ''}' at {where}"


def _expect_kind(cursor: "clang_cindex.Cursor", expected: "clang_cindex.CursorKind") -> None:
    if cursor.kind != expected:
        raise EntityKindMismatchError(
            f"expected {expected.name}, got {_describe_cursor(cursor)}"
        )


# ============================================================
# ================ SOURCE LOCATION & TYPES ===================
# ============================================================

# clang.cindex keeps its CXString wrapper private; every libclang bindings
# release on PyPI (10.x through 18.x) defines it under this name.
_CXString = clang_cindex._CXString

_PRESUMED_LOCATION_FN = None


def _presumed_location(location: "clang_cindex.SourceLocation") -> Tuple[str, int, int]:
    """
    Resolve a location the way a reader of the original text sees it, i.e.
    after #line directives. The Python bindings only expose expansion
    locations, so the C entry point is bound here on first use.
    """
    global _PRESUMED_LOCATION_FN
    if _PRESUMED_LOCATION_FN is None:
        fn = clang_cindex.conf.lib.clang_getPresumedLocation
        fn.argtypes = [
            clang_cindex.SourceLocation,
            POINTER(_CXString),
            POINTER(c_uint),
            POINTER(c_uint),
        ]
        fn.restype = None
        _PRESUMED_LOCATION_FN = fn

    filename = _CXString()
    line = c_uint()
    column = c_uint()
    _PRESUMED_LOCATION_FN(location, byref(filename), byref(line), byref(column))
    return _CXString.from_result(filename), line.value, column.value


@dataclass(frozen=True)
class SourceLocation:
    path: str
    line: int
    column: int

    @classmethod
    def from_clang(
        cls,
        location: Optional["clang_cindex.SourceLocation"],
    ) -> Optional["SourceLocation"]:
        # Builtin and command-line entities have no file; that is not an error.
        if location is None or location.file is None:
            return None
        path, line, column = _presumed_location(location)
        return cls(path=path, line=line, column=column)


@dataclass(frozen=True)
class TypeRef:
    """
    Snapshot of a libclang type. `kind` is the TypeKind name ("INT",
    "POINTER", "RECORD", ...); elaborated sugar such as `enum Color` is
    reported with the kind of the named type while `display_name` keeps the
    spelling as written. `pointee` is set only for pointer-like kinds.
    """
    kind: str
    display_name: str
    pointee: Optional["TypeRef"] = None

    @classmethod
    def from_clang(cls, clang_type: "clang_cindex.Type") -> "TypeRef":
        kind = clang_type.kind
        if kind == clang_cindex.TypeKind.ELABORATED:
            kind = clang_type.get_named_type().kind
        pointee_type = clang_type.get_pointee()
        pointee = None
        if pointee_type is not None and pointee_type.kind != clang_cindex.TypeKind.INVALID:
            pointee = cls.from_clang(pointee_type)
        return cls(kind=kind.name, display_name=clang_type.spelling, pointee=pointee)

    @property
    def is_pointer(self) -> bool:
        return self.pointee is not None

    @property
    def pointer_depth(self) -> int:
        depth = 0
        current = self.pointee
        while current is not None:
            depth += 1
            current = current.pointee
        return depth


def _type_ref_or_none(clang_type: Optional["clang_cindex.Type"]) -> Optional[TypeRef]:
    if clang_type is None or clang_type.kind == clang_cindex.TypeKind.INVALID:
        return None
    return TypeRef.from_clang(clang_type)


def _type_bit_width(clang_type: Optional["clang_cindex.Type"]) -> int:
    if clang_type is None or clang_type.kind == clang_cindex.TypeKind.INVALID:
        return 64
    size = clang_type.get_size()
    # Negative sizes are libclang layout error codes.
    return size * 8 if size > 0 else 64


_TAG_KEYWORDS = {
    clang_cindex.CursorKind.ENUM_DECL: "enum",
    clang_cindex.CursorKind.STRUCT_DECL: "struct",
    clang_cindex.CursorKind.UNION_DECL: "union",
}


def _tag_name(cursor: "clang_cindex.Cursor", typedef_named: bool = False) -> Optional[str]:
    """
    Tag name of an enum/struct/union cursor, or None when it is anonymous.

    Newer libclang spells anonymous tags as "struct (unnamed at f.c:1:9)".
    An anonymous tag that a typedef names for linkage is spelled with the
    typedef's name instead; `typedef_named` marks a cursor that a typedef of
    the same spelling refers to. For those, the tag's own type decides: C
    type spellings carry the tag keyword ("struct Point") except for a
    typedef-named anonymous tag, which prints as the bare typedef name.
    Unlike the extent's tokens, this holds for tags built by macros.
    """
    spelling = cursor.spelling
    if not spelling or not spelling.isidentifier():
        return None
    if not typedef_named:
        return spelling
    keyword = _TAG_KEYWORDS.get(cursor.kind)
    if keyword is None or cursor.type is None:
        return spelling
    return spelling if cursor.type.spelling.startswith(keyword + " ") else None


# ============================================================
# =================== LEAF DECLARATIONS ======================
# ============================================================

@dataclass(frozen=True)
class EnumConstantValue:
    signed: int
    unsigned: int

    @classmethod
    def from_value(cls, value: int, bit_width: int) -> "EnumConstantValue":
        """
        Both two's-complement readings of `value` at `bit_width` bits, since
        the signedness of an enum constant depends on the underlying type.
        """
        unsigned = value & ((1 << bit_width) - 1)
        signed = unsigned - (1 << bit_width) if unsigned >> (bit_width - 1) else unsigned
        return cls(signed=signed, unsigned=unsigned)


@dataclass
class EnumConstantDeclare:
    name: str
    value: Optional[EnumConstantValue] = None
    location: Optional[SourceLocation] = None

    ENTITY_KIND: ClassVar["clang_cindex.CursorKind"] = clang_cindex.CursorKind.ENUM_CONSTANT_DECL

    def populate(
        self,
        cursor: "clang_cindex.Cursor",
        parent: Optional["clang_cindex.Cursor"] = None,
    ) -> None:
        _expect_kind(cursor, self.ENTITY_KIND)
        bit_width = _type_bit_width(parent.enum_type if parent is not None else None)
        self.value = EnumConstantValue.from_value(cursor.enum_value, bit_width)
        self.location = SourceLocation.from_clang(cursor.location)


@dataclass
class FieldDeclare:
    name: Optional[str] = None
    field_type: Optional[TypeRef] = None
    location: Optional[SourceLocation] = None

    ENTITY_KIND: ClassVar["clang_cindex.CursorKind"] = clang_cindex.CursorKind.FIELD_DECL

    def populate(
        self,
        cursor: "clang_cindex.Cursor",
        parent: Optional["clang_cindex.Cursor"] = None,
    ) -> None:
        _expect_kind(cursor, self.ENTITY_KIND)
        self.field_type = _type_ref_or_none(cursor.type)
        self.location = SourceLocation.from_clang(cursor.location)


@dataclass
class ParameterDeclare:
    name: str
    parameter_type: Optional[TypeRef] = None
    location: Optional[SourceLocation] = None

    ENTITY_KIND: ClassVar["clang_cindex.CursorKind"] = clang_cindex.CursorKind.PARM_DECL

    def populate(
        self,
        cursor: "clang_cindex.Cursor",
        parent: Optional["clang_cindex.Cursor"] = None,
    ) -> None:
        _expect_kind(cursor, self.ENTITY_KIND)
        self.parameter_type = _type_ref_or_none(cursor.type)
        self.location = SourceLocation.from_clang(cursor.location)


# ============================================================
# ================= AGGREGATE DECLARATIONS ===================
# ============================================================

@dataclass
class EnumDeclare:
    tag_name: Optional[str] = None
    typedef_name: Optional[str] = None
    enum_type: Optional[TypeRef] = None
    constants: List[EnumConstantDeclare] = field(default_factory=list)
    location: Optional[SourceLocation] = None

    ENTITY_KIND: ClassVar["clang_cindex.CursorKind"] = clang_cindex.CursorKind.ENUM_DECL

    def populate(
        self,
        cursor: "clang_cindex.Cursor",
        parent: Optional["clang_cindex.Cursor"] = None,
    ) -> None:
        _expect_kind(cursor, self.ENTITY_KIND)
        self.enum_type = _type_ref_or_none(cursor.enum_type)
        self.location = SourceLocation.from_clang(cursor.location)
        for child in cursor.get_children():
            if child.kind != clang_cindex.CursorKind.ENUM_CONSTANT_DECL:
                raise UnexpectedEntityError(
                    f"unexpected entity inside enum: {_describe_cursor(child)}"
                )
            if not child.spelling:
                raise UnnamedEntityError(f"unnamed enum constant: {_describe_cursor(child)}")
            constant = EnumConstantDeclare(name=child.spelling)
            constant.populate(child, cursor)
            self.constants.append(constant)


@dataclass
class UnionDeclare:
    tag_name: Optional[str] = None
    typedef_name: Optional[str] = None
    members: List["Member"] = field(default_factory=list)
    location: Optional[SourceLocation] = None

    ENTITY_KIND: ClassVar["clang_cindex.CursorKind"] = clang_cindex.CursorKind.UNION_DECL

    def populate(
        self,
        cursor: "clang_cindex.Cursor",
        parent: Optional["clang_cindex.Cursor"] = None,
    ) -> None:
        _expect_kind(cursor, self.ENTITY_KIND)
        self.location = SourceLocation.from_clang(cursor.location)
        _populate_members(self.members, cursor)


@dataclass
class StructDeclare:
    tag_name: Optional[str] = None
    typedef_name: Optional[str] = None
    members: List["Member"] = field(default_factory=list)
    location: Optional[SourceLocation] = None

    ENTITY_KIND: ClassVar["clang_cindex.CursorKind"] = clang_cindex.CursorKind.STRUCT_DECL

    def populate(
        self,
        cursor: "clang_cindex.Cursor",
        parent: Optional["clang_cindex.Cursor"] = None,
    ) -> None:
        _expect_kind(cursor, self.ENTITY_KIND)
        self.location = SourceLocation.from_clang(cursor.location)
        _populate_members(self.members, cursor)

    @property
    def fields(self) -> List[FieldDeclare]:
        return [member for member in self.members if isinstance(member, FieldDeclare)]


Member = Union[FieldDeclare, UnionDeclare]
TypeDeclaration = Union[EnumDeclare, StructDeclare, UnionDeclare]


def _populate_members(members: List[Member], cursor: "clang_cindex.Cursor") -> None:
    """Fields and nested unions of a struct/union, one level deep, in layout order."""
    for child in cursor.get_children():
        member: Member
        if child.kind == clang_cindex.CursorKind.FIELD_DECL:
            member = FieldDeclare(name=child.spelling or None)
        elif child.kind == clang_cindex.CursorKind.UNION_DECL:
            member = UnionDeclare(tag_name=_tag_name(child))
        else:
            raise UnexpectedEntityError(
                f"unexpected entity inside {cursor.kind.name}: {_describe_cursor(child)}"
            )
        member.populate(child, cursor)
        members.append(member)


# ============================================================
# ======================== FUNCTION ==========================
# ============================================================

@dataclass
class FunctionDeclare:
    name: str
    return_type: Optional[TypeRef] = None
    parameters: List[ParameterDeclare] = field(default_factory=list)
    location: Optional[SourceLocation] = None

    ENTITY_KIND: ClassVar["clang_cindex.CursorKind"] = clang_cindex.CursorKind.FUNCTION_DECL

    def populate(
        self,
        cursor: "clang_cindex.Cursor",
        parent: Optional["clang_cindex.Cursor"] = None,
    ) -> None:
        _expect_kind(cursor, self.ENTITY_KIND)
        self.location = SourceLocation.from_clang(cursor.location)
        self.return_type = _type_ref_or_none(cursor.result_type)
        for argument in cursor.get_arguments():
            if not argument.spelling:
                raise UnnamedEntityError(
                    f"unnamed parameter of function '{self.name}': {_describe_cursor(argument)}"
                )
            parameter = ParameterDeclare(name=argument.spelling)
            parameter.populate(argument, cursor)
            self.parameters.append(parameter)


# ============================================================
# ====================== SOURCE FILE =========================
# ============================================================

@dataclass
class SourceFile:
    """
    Root of the declaration model for one translation unit.
    `type_declares` and `function_declares` keep source order.
    """
    path: str
    type_declares: List[TypeDeclaration] = field(default_factory=list)
    function_declares: List[FunctionDeclare] = field(default_factory=list)

    def find_type_declare(self, name: str) -> Optional[TypeDeclaration]:
        """Look up a type declaration by tag name or typedef alias."""
        for declare in self.type_declares:
            if name in (declare.tag_name, declare.typedef_name):
                return declare
        return None

    def find_function(self, name: str) -> Optional[FunctionDeclare]:
        for function in self.function_declares:
            if function.name == name:
                return function
        return None


# ============================================================
# =================== RECONCILING WALKER =====================
# ============================================================

TYPEDEF_MERGE_POLICIES = ("declaration", "name")

_TYPE_DECLARE_CLASSES: Dict["clang_cindex.CursorKind", Any] = {
    clang_cindex.CursorKind.ENUM_DECL: EnumDeclare,
    clang_cindex.CursorKind.STRUCT_DECL: StructDeclare,
    clang_cindex.CursorKind.UNION_DECL: UnionDeclare,
}


def walk_translation_unit(
    cursor: "clang_cindex.Cursor",
    *,
    main_path: Optional[str] = None,
    typedef_merge: Literal["declaration", "name"] = "declaration",
) -> SourceFile:
    """
    Build the SourceFile for a translation unit cursor.

    Only top-level cursors located in the main file are considered, and the
    main-file filter runs before any kind dispatch. Any ModelError aborts the
    whole walk; the caller never sees a half-built model.
    """
    _expect_kind(cursor, clang_cindex.CursorKind.TRANSLATION_UNIT)
    if typedef_merge not in TYPEDEF_MERGE_POLICIES:
        raise ValueError(f"unknown typedef merge policy: {typedef_merge!r}")

    canonical_main = os.path.abspath(main_path or cursor.spelling)
    source_file = SourceFile(path=cursor.spelling)
    children = [c for c in cursor.get_children() if _cursor_in_main_file(c, canonical_main)]
    typedef_named = _typedef_named_declarations(children)

    for child in children:
        if child.kind in _TYPE_DECLARE_CLASSES or child.kind == clang_cindex.CursorKind.TYPEDEF_DECL:
            _parse_type_declare(child, cursor, source_file.type_declares, typedef_merge, typedef_named)
        elif child.kind == clang_cindex.CursorKind.FUNCTION_DECL:
            if not child.spelling:
                raise UnnamedEntityError(f"unnamed function: {_describe_cursor(child)}")
            function = FunctionDeclare(name=child.spelling)
            function.populate(child, cursor)
            source_file.function_declares.append(function)
        else:
            raise UnexpectedEntityError(f"unexpected top-level entity: {_describe_cursor(child)}")

    return source_file


def _typedef_named_declarations(children: List["clang_cindex.Cursor"]) -> List["clang_cindex.Cursor"]:
    # Tags a same-spelled typedef refers to; a list because older bindings
    # leave Cursor unhashable, while == maps to clang_equalCursors.
    named = []
    for child in children:
        if child.kind != clang_cindex.CursorKind.TYPEDEF_DECL:
            continue
        declaration = child.underlying_typedef_type.get_declaration()
        if declaration is None or declaration.kind == clang_cindex.CursorKind.NO_DECL_FOUND:
            continue
        if declaration.spelling == child.spelling:
            named.append(declaration)
    return named


def _parse_type_declare(
    cursor: "clang_cindex.Cursor",
    parent: "clang_cindex.Cursor",
    declares: List[TypeDeclaration],
    typedef_merge: str,
    typedef_named: Sequence["clang_cindex.Cursor"] = (),
) -> None:
    declare_cls = _TYPE_DECLARE_CLASSES.get(cursor.kind)
    if declare_cls is not None:
        tag_name = _tag_name(cursor, typedef_named=any(cursor == named for named in typedef_named))
        if tag_name is None:
            # Anonymous aggregates enter the model through their typedef.
            return
        declare = declare_cls(tag_name=tag_name)
        declare.populate(cursor, parent)
        declares.append(declare)
        return

    declaration = cursor.underlying_typedef_type.get_declaration()
    if declaration is None or declaration.kind == clang_cindex.CursorKind.NO_DECL_FOUND:
        # typedef of a builtin, pointer or function type: no tag to record.
        return

    typedef_name = cursor.spelling
    index = _find_declare_index(declares, lambda d: d.tag_name == typedef_name)
    if index is None and typedef_merge == "declaration":
        underlying_tag = _tag_name(declaration, typedef_named=declaration.spelling == typedef_name)
        if underlying_tag is not None:
            index = _find_declare_index(
                declares,
                lambda d: (
                    d.tag_name == underlying_tag
                    and d.typedef_name is None
                    and d.ENTITY_KIND == declaration.kind
                ),
            )
    if index is not None:
        declares[index].typedef_name = typedef_name
        return

    declare_cls = _TYPE_DECLARE_CLASSES.get(declaration.kind)
    if declare_cls is None:
        raise UnsupportedTypedefError(
            f"typedef '{typedef_name}' names unsupported declaration {_describe_cursor(declaration)}"
        )
    declare = declare_cls(typedef_name=typedef_name)
    declare.populate(declaration, parent)
    declares.append(declare)


def _find_declare_index(
    declares: List[TypeDeclaration],
    predicate: Callable[[TypeDeclaration], bool],
) -> Optional[int]:
    for index, declare in enumerate(declares):
        if predicate(declare):
            return index
    return None


def _cursor_in_main_file(cursor: "clang_cindex.Cursor", canonical_main: str) -> bool:
    loc = cursor.location
    if loc is None or loc.file is None:
        return False
    return os.path.abspath(loc.file.name) == canonical_main


def dump_entity_tree(
    cursor: "clang_cindex.Cursor",
    canonical_main: str,
    *,
    level: int = 0,
    stream: Any = None,
) -> None:
    """Debug printer: main-file cursor tree, four spaces per level."""
    stream = stream if stream is not None else sys.stderr
    if cursor.kind != clang_cindex.CursorKind.TRANSLATION_UNIT:
        if not _cursor_in_main_file(cursor, canonical_main):
            return
    stream.write(f"{'    ' * level}{cursor.kind.name} '{cursor.spelling or ''}'\n")
    for child in cursor.get_children():
        dump_entity_tree(child, canonical_main, level=level + 1, stream=stream)


# ============================================================
# ===================== CONFIGURATION ========================
# ============================================================

_CONFIG_KEYS = ("clang_args", "include_paths", "defines", "typedef_merge", "allow_error_diagnostics")


@dataclass
class ExtractConfig:
    clang_args: List[str] = field(default_factory=list)
    include_paths: List[str] = field(default_factory=list)
    defines: List[str] = field(default_factory=list)
    typedef_merge: Literal["declaration", "name"] = "declaration"
    allow_error_diagnostics: bool = False

    def compile_args(self) -> List[str]:
        args = _default_clang_args()
        args.extend(f"-I{path}" for path in self.include_paths)
        args.extend(f"-D{define}" for define in self.defines)
        args.extend(self.clang_args)
        return args


def _default_clang_args() -> List[str]:
    """
    Determine the clang arguments to use. Users can append additional flags
    via the CDECLARE_CLANG_ARGS environment variable.
    """
    base = ["-x", "c", "-std=c11"]
    extra = os.environ.get("CDECLARE_CLANG_ARGS")
    if extra:
        base.extend(shlex.split(extra))
    return base


def load_config_from_yaml(path: str) -> ExtractConfig:
    """
    Load an ExtractConfig from a YAML file. A missing or unreadable file is
    reported and yields the defaults; a file that is not a mapping is an error.
    """
    try:
        with open(path, "r", encoding="utf-8") as handle:
            doc = yaml.safe_load(handle)
    except FileNotFoundError:
        sys.stderr.write(f"[cdeclare] Config file not found: {path}\n")
        return ExtractConfig()
    except OSError as exc:
        sys.stderr.write(f"[cdeclare] Could not read config file {path}: {exc}\n")
        return ExtractConfig()
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML: {exc}") from exc

    if doc is None:
        return ExtractConfig()
    if not isinstance(doc, dict):
        raise ConfigError(f"{path}: expected a mapping at top level, got {type(doc).__name__}")

    def _to_str_list(key: str) -> List[str]:
        value = doc.get(key)
        if value is None:
            return []
        if isinstance(value, list):
            return [str(v) for v in value if v is not None]
        return [str(value)]

    unknown = sorted(str(key) for key in doc if key not in _CONFIG_KEYS)
    if unknown:
        sys.stderr.write(f"[cdeclare] Ignoring unknown config key(s) in {path}: {unknown}\n")

    typedef_merge = str(doc.get("typedef_merge", "declaration"))
    if typedef_merge not in TYPEDEF_MERGE_POLICIES:
        raise ConfigError(
            f"{path}: typedef_merge must be one of {list(TYPEDEF_MERGE_POLICIES)}, got {typedef_merge!r}"
        )

    allow_error_diagnostics = doc.get("allow_error_diagnostics", False)
    if not isinstance(allow_error_diagnostics, bool):
        raise ConfigError(
            f"{path}: allow_error_diagnostics must be true or false, got {allow_error_diagnostics!r}"
        )

    return ExtractConfig(
        clang_args=_to_str_list("clang_args"),
        include_paths=_to_str_list("include_paths"),
        defines=_to_str_list("defines"),
        typedef_merge=typedef_merge,  # type: ignore[arg-type]
        allow_error_diagnostics=allow_error_diagnostics,
    )


# ============================================================
# ================== EXTRACTION PIPELINE =====================
# ============================================================

def _clang_parse_options() -> int:
    # Bodies are never walked; only declarations matter.
    return clang_cindex.TranslationUnit.PARSE_SKIP_FUNCTION_BODIES


def parse_translation_unit(
    path: str,
    config: ExtractConfig,
    index: Optional["clang_cindex.Index"] = None,
) -> "clang_cindex.TranslationUnit":
    """
    Parse one C file with libclang. Raises ParseError when the file cannot be
    loaded or, unless allowed by the config, when libclang reports errors.
    """
    if index is None:
        index = clang_cindex.Index.create(excludeDecls=True)
    try:
        clang_tu = index.parse(path, args=config.compile_args(), options=_clang_parse_options())
    except clang_cindex.TranslationUnitLoadError as exc:
        raise ParseError(path, [str(exc)]) from exc

    if not config.allow_error_diagnostics:
        errors = [
            diag.format()
            for diag in clang_tu.diagnostics
            if diag.severity >= clang_cindex.Diagnostic.Error
        ]
        if errors:
            raise ParseError(path, errors)
    return clang_tu


def extract_source_file(
    path: str,
    config: Optional[ExtractConfig] = None,
    *,
    dump_entities: bool = False,
) -> SourceFile:
    """
    Parse `path` and walk it into a SourceFile. Each call uses its own
    libclang index, so separate files share no state.
    """
    config = config or ExtractConfig()
    canonical_path = os.path.abspath(path)
    if not os.path.exists(canonical_path):
        raise ParseError(path, ["input file not found"])

    clang_tu = parse_translation_unit(canonical_path, config)
    if dump_entities:
        dump_entity_tree(clang_tu.cursor, canonical_path)
    return walk_translation_unit(
        clang_tu.cursor,
        main_path=canonical_path,
        typedef_merge=config.typedef_merge,
    )


# ============================================================
# ===================== MODEL OUTPUT =========================
# ============================================================

def _location_to_json_obj(location: Optional[SourceLocation]) -> Optional[Dict[str, Any]]:
    if location is None:
        return None
    return {"path": location.path, "line": location.line, "column": location.column}


def _type_ref_to_json_obj(type_ref: Optional[TypeRef]) -> Optional[Dict[str, Any]]:
    if type_ref is None:
        return None
    return {
        "kind": type_ref.kind,
        "display_name": type_ref.display_name,
        "pointee": _type_ref_to_json_obj(type_ref.pointee),
    }


def _member_to_json_obj(member: Member) -> Dict[str, Any]:
    if isinstance(member, UnionDeclare):
        return _type_declare_to_json_obj(member)
    return {
        "declaration": "field",
        "name": member.name,
        "type": _type_ref_to_json_obj(member.field_type),
        "location": _location_to_json_obj(member.location),
    }


def _type_declare_to_json_obj(declare: TypeDeclaration) -> Dict[str, Any]:
    obj: Dict[str, Any] = {
        "declaration": declare.ENTITY_KIND.name[: -len("_DECL")].lower(),
        "tag_name": declare.tag_name,
        "typedef_name": declare.typedef_name,
        "location": _location_to_json_obj(declare.location),
    }
    if isinstance(declare, EnumDeclare):
        obj["enum_type"] = _type_ref_to_json_obj(declare.enum_type)
        obj["constants"] = [
            {
                "name": constant.name,
                "signed": constant.value.signed if constant.value else None,
                "unsigned": constant.value.unsigned if constant.value else None,
                "location": _location_to_json_obj(constant.location),
            }
            for constant in declare.constants
        ]
    else:
        obj["members"] = [_member_to_json_obj(member) for member in declare.members]
    return obj


def source_file_to_json_obj(source_file: SourceFile) -> Dict[str, Any]:
    """
    Convert a SourceFile into JSON-friendly dicts. Kept explicit so the field
    order of the output stays stable.
    """
    return {
        "path": source_file.path,
        "type_declares": [_type_declare_to_json_obj(d) for d in source_file.type_declares],
        "function_declares": [
            {
                "name": function.name,
                "return_type": _type_ref_to_json_obj(function.return_type),
                "parameters": [
                    {
                        "name": parameter.name,
                        "type": _type_ref_to_json_obj(parameter.parameter_type),
                        "location": _location_to_json_obj(parameter.location),
                    }
                    for parameter in function.parameters
                ],
                "location": _location_to_json_obj(function.location),
            }
            for function in source_file.function_declares
        ],
        "tool": "cdeclare",
        "version": "0.1.0",
    }


def emit_source_files_json(source_files: List[SourceFile], out: Optional[str] = None) -> None:
    """
    Serialize all models to JSON (list of source file objects).
    """
    as_json = [source_file_to_json_obj(sf) for sf in source_files]
    text = json.dumps(as_json, indent=2, sort_keys=False)
    if out:
        with open(out, "w", encoding="utf-8") as f:
            f.write(text + "\n")
    else:
        print(text)


# ============================================================
# ============================ CLI ===========================
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI entry point for cdeclare.
    Intended usage:
      cdeclare extract --config cdeclare.yaml src/file1.c src/file2.c ...

    Exit status: 0 on success, 1 if some file failed to parse, 2 if the
    configuration is invalid or a file contained an unsupported declaration.
    """
    parser = argparse.ArgumentParser(
        prog="cdeclare",
        description="cdeclare: extract a declaration model from C sources"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    extract_p = subparsers.add_parser(
        "extract",
        help="Walk one or more C translation units and emit their declaration models as JSON."
    )
    extract_p.add_argument(
        "--config",
        metavar="CONFIG_FILE",
        help="YAML configuration file.",
        required=False,
    )
    extract_p.add_argument(
        "--clang-arg",
        action="append",
        metavar="ARG",
        help="Extra argument passed to clang (repeatable).",
        required=False,
    )
    extract_p.add_argument(
        "--typedef-merge",
        choices=TYPEDEF_MERGE_POLICIES,
        help="How typedefs are merged onto already recorded tags.",
        required=False,
    )
    extract_p.add_argument(
        "--out",
        metavar="OUT_JSON",
        help="Write the models to this JSON file instead of stdout.",
        required=False,
    )
    extract_p.add_argument(
        "--dump-entities",
        action="store_true",
        help="Print the main-file cursor tree to stderr before walking it.",
    )
    extract_p.add_argument(
        "--verbose",
        action="store_true",
        help="Report per-file declaration counts on stderr.",
    )
    extract_p.add_argument(
        "files",
        nargs="+",
        help="C source files to process."
    )

    args = parser.parse_args(argv)

    if args.command == "extract":
        # 1. Resolve configuration
        try:
            config = load_config_from_yaml(args.config) if args.config else ExtractConfig()
        except ConfigError as exc:
            sys.stderr.write(f"[cdeclare] Invalid configuration: {exc}\n")
            return 2
        if args.clang_arg:
            config.clang_args.extend(args.clang_arg)
        if args.typedef_merge:
            config.typedef_merge = args.typedef_merge

        # 2. Walk every file independently
        exit_code = 0
        source_files: List[SourceFile] = []
        for path in args.files:
            try:
                source_file = extract_source_file(path, config, dump_entities=args.dump_entities)
            except ParseError as exc:
                sys.stderr.write(f"[cdeclare] libclang could not parse '{path}': {exc}\n")
                exit_code = 1
                continue
            except ModelError as exc:
                sys.stderr.write(f"[cdeclare] Aborting: unsupported declaration in '{path}': {exc}\n")
                return 2
            if args.verbose:
                sys.stderr.write(
                    f"[cdeclare] {path}: {len(source_file.type_declares)} type declaration(s), "
                    f"{len(source_file.function_declares)} function declaration(s)\n"
                )
            source_files.append(source_file)

        # 3. Emit results as JSON
        emit_source_files_json(source_files, out=args.out)
        return exit_code

    # unreachable if parser is correct
    return 1


if __name__ == "__main__":
    sys.exit(main())
