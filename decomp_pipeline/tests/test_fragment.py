"""Tests for fragment identifier inference and candidate structure checks."""
import pytest
from pydantic import ValidationError

from decomp_pipeline.core.fragment import (
    PLACEHOLDER_IDENTIFIER,
    extract_identifier,
    is_blank,
    match_identifier,
)
from decomp_pipeline.core.structure import (
    delimiter_counts,
    has_function_body,
    has_include,
    has_main,
    is_balanced,
)
from decomp_pipeline.io.schema import Fragment

from .conftest import ANONYMOUS_ASM, DIRECTIVE_ASM, MEMCPY_ASM


class TestIdentifier:
    """Tests for identifier extraction from assembly text."""

    def test_label_line(self):
        assert extract_identifier(MEMCPY_ASM) == "memcpy"

    def test_fn_directive(self):
        """A ``.fn name`` directive anywhere on the line is honoured."""
        assert extract_identifier(DIRECTIVE_ASM) == "checksum"

    def test_no_identifier_uses_placeholder(self):
        assert extract_identifier(ANONYMOUS_ASM) == PLACEHOLDER_IDENTIFIER

    def test_custom_default(self):
        assert extract_identifier("    ret\n", default="fn_0040") == "fn_0040"

    def test_first_match_wins(self):
        text = "first:\n    nop\nsecond:\n    ret\n"
        assert extract_identifier(text) == "first"

    def test_directive_before_label(self):
        text = ".fn outer\ninner:\n    ret\n"
        assert extract_identifier(text) == "outer"

    def test_label_in_first_column(self):
        assert match_identifier("_start:   ; entry") == "_start"

    def test_indented_label_is_not_the_function(self):
        """Only a label in the first column names the function."""
        assert match_identifier("   loop:") is None
        text = "    xor eax, eax\n  loop:\n    ret\n"
        assert extract_identifier(text) == PLACEHOLDER_IDENTIFIER

    def test_local_label_with_dot_ignored(self):
        """``.loop:`` is not an identifier; labels must start with a letter or _."""
        assert match_identifier(".loop:") is None

    def test_instruction_line_has_no_identifier(self):
        assert match_identifier("    mov rax, rdi") is None


class TestFragment:
    """Tests for Fragment construction."""

    def test_from_text_infers_identifier(self):
        fragment = Fragment.from_text(MEMCPY_ASM)
        assert fragment.identifier == "memcpy"
        assert fragment.text == MEMCPY_ASM

    def test_hint_overrides_inference(self):
        fragment = Fragment.from_text(MEMCPY_ASM, "my_copy")
        assert fragment.identifier == "my_copy"

    @pytest.mark.parametrize("hint", ["my func)", "1abc", "a-b", "f(void) { }"])
    def test_invalid_hint_rejected(self, hint):
        with pytest.raises(ValidationError):
            Fragment.from_text(MEMCPY_ASM, hint)

    def test_invalid_identifier_rejected(self):
        with pytest.raises(ValidationError):
            Fragment(text=MEMCPY_ASM, identifier="int x;")

    def test_fragment_is_immutable(self):
        fragment = Fragment.from_text(MEMCPY_ASM)
        with pytest.raises(ValidationError):
            fragment.identifier = "other"

    def test_blank_detection(self):
        assert is_blank("")
        assert is_blank("   \n\t  ")
        assert not is_blank("ret")


class TestStructure:
    """Tests for the bracket-balance gate helpers."""

    def test_balanced_function(self):
        assert is_balanced("int f(int a[2]) { return a[0]; }")

    def test_missing_close_brace(self):
        assert not is_balanced("int f(void) { return 0;")

    def test_crossed_delimiters(self):
        """Counts match but nesting does not."""
        assert not is_balanced("int f(void) { return (0 }; )")

    def test_stray_closer(self):
        assert not is_balanced("}")

    def test_empty_source_is_balanced(self):
        assert is_balanced("")

    def test_delimiter_counts(self):
        counts = delimiter_counts("int f(void) { {")
        assert counts == {"{": 2, "(": 0, "[": 0}

    def test_shape_helpers(self):
        src = "#include <stdio.h>\nint main(void) { return 0; }\n"
        assert has_include(src)
        assert has_function_body(src)
        assert has_main(src)
        assert not has_main("int helper(void) { return 0; }")
        assert not has_function_body("int x;")
