"""
LabelDesk Backend — Naming Engine Tests
=========================================

Pure functions, no fixtures needed.
"""

from labeldesk.services.naming import generate_copy_name, generate_unique_name


class TestGenerateUniqueName:
    def test_empty_project_gets_first_number(self):
        assert generate_unique_name(set()) == "New Label 1"

    def test_numbered_form_even_when_bare_name_is_free(self):
        assert generate_unique_name(set(), "Shipping") == "Shipping 1"

    def test_skips_taken_numbers(self):
        existing = {"New Label 1", "New Label 2", "New Label 4"}
        assert generate_unique_name(existing) == "New Label 3"

    def test_bare_base_name_does_not_block_numbering(self):
        assert generate_unique_name({"Shipping"}, "Shipping") == "Shipping 1"

    def test_blank_base_falls_back_to_default(self):
        assert generate_unique_name({"New Label 1"}, "   ") == "New Label 2"
        assert generate_unique_name(set(), None) == "New Label 1"

    def test_base_is_stripped(self):
        assert generate_unique_name(set(), "  Invoice  ") == "Invoice 1"

    def test_base_ending_in_digits_is_opaque(self):
        assert generate_unique_name({"Label 2"}, "Label 2") == "Label 2 1"

    def test_accepts_any_iterable(self):
        names = (name for name in ["A 1", "A 2"])
        assert generate_unique_name(names, "A") == "A 3"

    def test_result_never_in_existing(self):
        existing = set()
        for _ in range(25):
            name = generate_unique_name(existing, "Bulk")
            assert name not in existing
            existing.add(name)
        assert "Bulk 25" in existing

    def test_deterministic(self):
        existing = {"X 1", "X 3"}
        assert generate_unique_name(existing, "X") == generate_unique_name(existing, "X") == "X 2"


class TestGenerateCopyName:
    def test_first_copy(self):
        assert generate_copy_name("Invoice", set()) == "Invoice Copy"

    def test_second_copy_when_copy_exists(self):
        assert generate_copy_name("Invoice", {"Invoice Copy"}) == "Invoice Copy 2"

    def test_fills_smallest_gap(self):
        existing = {"Invoice Copy", "Invoice Copy 2", "Invoice Copy 4"}
        assert generate_copy_name("Invoice", existing) == "Invoice Copy 3"

    def test_copy_of_copy_increments_instead_of_stacking(self):
        assert generate_copy_name("Invoice Copy", {"Invoice", "Invoice Copy"}) == "Invoice Copy 2"

    def test_copy_of_numbered_copy_starts_above_its_number(self):
        existing = {"Invoice Copy 2"}
        assert generate_copy_name("Invoice Copy 2", existing) == "Invoice Copy 3"

    def test_copy_of_numbered_copy_skips_taken(self):
        existing = {"Invoice Copy 2", "Invoice Copy 3", "Invoice Copy 4"}
        assert generate_copy_name("Invoice Copy 2", existing) == "Invoice Copy 5"

    def test_repeated_duplication_keeps_incrementing(self):
        existing = {"Badge"}
        name = "Badge"
        produced = []
        for _ in range(4):
            name = generate_copy_name(name, existing)
            existing.add(name)
            produced.append(name)
        assert produced == ["Badge Copy", "Badge Copy 2", "Badge Copy 3", "Badge Copy 4"]
        assert not any("Copy Copy" in n for n in produced)

    def test_name_containing_copy_mid_string(self):
        assert generate_copy_name("Copy Shop", set()) == "Copy Shop Copy"

    def test_surrounding_whitespace_ignored(self):
        assert generate_copy_name("  Invoice ", set()) == "Invoice Copy"


class TestNameLengthLimit:
    def test_numbered_name_shortens_base(self):
        assert generate_unique_name(set(), "B" * 100, max_length=100) == "B" * 98 + " 1"

    def test_wider_number_shortens_base_further(self):
        existing = {"B" * 98 + f" {k}" for k in range(1, 10)}
        assert generate_unique_name(existing, "B" * 100, max_length=100) == "B" * 97 + " 10"

    def test_cut_never_leaves_trailing_space(self):
        assert generate_unique_name(set(), "Hello   World", max_length=10) == "Hello 1"

    def test_short_base_is_untouched(self):
        assert generate_unique_name(set(), "Invoice", max_length=100) == "Invoice 1"

    def test_copy_suffix_survives(self):
        assert generate_copy_name("A" * 100, set(), max_length=100) == "A" * 95 + " Copy"

    def test_numbered_copy_fits(self):
        existing = {"A" * 95 + " Copy"}
        assert generate_copy_name("A" * 100, existing, max_length=100) == "A" * 93 + " Copy 2"

    def test_copy_of_shortened_copy(self):
        existing = {"A" * 100, "A" * 95 + " Copy"}
        assert generate_copy_name("A" * 95 + " Copy", existing, max_length=100) == "A" * 93 + " Copy 2"
