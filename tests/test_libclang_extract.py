import io
import os
import tempfile
import textwrap
import unittest

from clang import cindex as clang_cindex

import cdeclare


class LibclangExtractTests(unittest.TestCase):
    """Runs real C snippets through libclang; skipped without the shared library."""

    @classmethod
    def setUpClass(cls) -> None:
        try:
            clang_cindex.Index.create()
        except clang_cindex.LibclangError as exc:
            raise unittest.SkipTest(f"libclang is not available: {exc}")

    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def write(self, name: str, text: str) -> str:
        path = os.path.join(self.tmp.name, name)
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(textwrap.dedent(text))
        return path

    def extract(self, text: str, **config) -> cdeclare.SourceFile:
        path = self.write("main.c", text)
        return cdeclare.extract_source_file(path, cdeclare.ExtractConfig(**config))

    def test_enum_and_function_scenario(self) -> None:
        source_file = self.extract(
            """
            enum Color { RED, GREEN=5 };
            void f(enum Color c);
            """
        )
        self.assertEqual(len(source_file.type_declares), 1)
        color = source_file.type_declares[0]
        self.assertIsInstance(color, cdeclare.EnumDeclare)
        self.assertEqual((color.tag_name, color.typedef_name), ("Color", None))
        self.assertEqual(
            [(c.name, c.value.signed, c.value.unsigned) for c in color.constants],
            [("RED", 0, 0), ("GREEN", 5, 5)],
        )
        fn = source_file.function_declares[0]
        self.assertEqual(fn.name, "f")
        self.assertEqual(fn.return_type.kind, "VOID")
        self.assertEqual([p.name for p in fn.parameters], ["c"])
        self.assertEqual(fn.parameters[0].parameter_type, cdeclare.TypeRef(kind="ENUM", display_name="enum Color"))
        self.assertEqual(fn.location.line, 3)

    def test_typedef_struct_idiom_yields_one_record(self) -> None:
        source_file = self.extract("typedef struct Point { int x; int y; } Point;\n")
        self.assertEqual(len(source_file.type_declares), 1)
        point = source_file.type_declares[0]
        self.assertEqual((point.tag_name, point.typedef_name), ("Point", "Point"))
        self.assertEqual([f.name for f in point.fields], ["x", "y"])

    def test_anonymous_typedef(self) -> None:
        source_file = self.extract("typedef struct { int x; } Vec2;\n")
        self.assertEqual(len(source_file.type_declares), 1)
        vec = source_file.type_declares[0]
        self.assertEqual((vec.tag_name, vec.typedef_name), (None, "Vec2"))
        self.assertEqual([f.name for f in vec.fields], ["x"])

    def test_merge_preserves_order(self) -> None:
        source_file = self.extract("struct A; struct B; typedef struct A TA;\n")
        self.assertEqual(
            [(d.tag_name, d.typedef_name) for d in source_file.type_declares],
            [("A", "TA"), ("B", None)],
        )

    def test_pointer_chain_depth(self) -> None:
        source_file = self.extract("void g(int **p);\n")
        chain = source_file.function_declares[0].parameters[0].parameter_type
        kinds = []
        while chain is not None:
            kinds.append(chain.kind)
            chain = chain.pointee
        self.assertEqual(kinds, ["POINTER", "POINTER", "INT"])

    def test_negative_enum_constant(self) -> None:
        source_file = self.extract("enum Sign { NEG = -1 };\n")
        value = source_file.type_declares[0].constants[0].value
        self.assertEqual((value.signed, value.unsigned), (-1, 0xFFFFFFFF))

    def test_included_declarations_are_excluded(self) -> None:
        self.write("shapes.h", "struct Shape { int sides; };\nint area(struct Shape s);\n")
        source_file = self.extract(
            """
            #include "shapes.h"
            struct Local { struct Shape *shape; };
            """
        )
        self.assertEqual([d.tag_name for d in source_file.type_declares], ["Local"])
        self.assertEqual(source_file.function_declares, [])
        shape_field = source_file.type_declares[0].fields[0]
        self.assertEqual(shape_field.field_type.pointee.kind, "RECORD")

    def test_line_directive_is_honored(self) -> None:
        source_file = self.extract(
            """
            #line 100 "generated.c"
            struct Late { int v; };
            """
        )
        location = source_file.type_declares[0].location
        self.assertEqual(location.line, 100)
        self.assertEqual(location.path, "generated.c")

    def test_macro_generated_tag_keeps_name_and_expansion_line(self) -> None:
        source_file = self.extract(
            """
            #define MK(n) struct n { int x; }
            MK(Foo);
            """
        )
        self.assertEqual([d.tag_name for d in source_file.type_declares], ["Foo"])
        foo = source_file.type_declares[0]
        self.assertEqual([f.name for f in foo.fields], ["x"])
        self.assertEqual(foo.location.line, 3)
        self.assertEqual(os.path.basename(foo.location.path), "main.c")

    def test_macro_generated_anonymous_typedef(self) -> None:
        source_file = self.extract(
            """
            #define VEC(name) typedef struct { int x; int y; } name
            VEC(Vec3);
            """
        )
        self.assertEqual(
            [(d.tag_name, d.typedef_name) for d in source_file.type_declares],
            [(None, "Vec3")],
        )
        self.assertEqual([f.name for f in source_file.type_declares[0].fields], ["x", "y"])

    def test_macro_generated_typedef_struct_idiom(self) -> None:
        source_file = self.extract(
            """
            #define TDN(n) typedef struct n { int x; } n
            TDN(Foo);
            """
        )
        self.assertEqual(
            [(d.tag_name, d.typedef_name) for d in source_file.type_declares],
            [("Foo", "Foo")],
        )

    def test_presumed_location_binding_uses_bindings_string_type(self) -> None:
        self.assertIs(cdeclare._CXString, clang_cindex._CXString)

    def test_unnamed_parameter_is_fatal(self) -> None:
        with self.assertRaises(cdeclare.UnnamedEntityError):
            self.extract("void h(int);\n")

    def test_syntax_error_is_reported_verbatim(self) -> None:
        with self.assertRaises(cdeclare.ParseError) as ctx:
            self.extract("void broken(int a;\n")
        self.assertTrue(ctx.exception.diagnostics)
        self.assertTrue(all("error" in d for d in ctx.exception.diagnostics))

    def test_dump_entities_prints_main_file_tree(self) -> None:
        path = self.write("main.c", "struct Node { int v; };\n")
        clang_tu = cdeclare.parse_translation_unit(path, cdeclare.ExtractConfig())
        stream = io.StringIO()
        cdeclare.dump_entity_tree(clang_tu.cursor, path, stream=stream)
        lines = stream.getvalue().splitlines()
        self.assertTrue(lines[0].startswith("TRANSLATION_UNIT"))
        self.assertIn("    STRUCT_DECL 'Node'", lines)
        self.assertIn("        FIELD_DECL 'v'", lines)


if __name__ == "__main__":
    unittest.main()
