"""
Plain-text normalisation of model drafts and citizen-typed text.
"""

from utils.ai_markdown_formatter import clean_user_text, markdown_to_plaintext


class TestCleanUserText:
    def test_tags_are_stripped_and_ampersand_restored(self):
        assert clean_user_text("<b>Tom & Jerry</b> park") == "Tom & Jerry park"

    def test_typed_entities_are_kept_as_typed(self):
        assert clean_user_text("Use &lt;b&gt; tags") == "Use &lt;b&gt; tags"
        assert clean_user_text("R&amp;D building") == "R&amp;D building"

    def test_bare_angle_bracket_survives(self):
        assert clean_user_text("depth < 5 cm") == "depth < 5 cm"

    def test_max_length_truncates(self):
        assert clean_user_text("abcdef  ", max_length=3) == "abc"

    def test_none_is_empty(self):
        assert clean_user_text(None) == ""


class TestMarkdownToPlaintext:
    def test_emphasis_is_dropped(self):
        assert markdown_to_plaintext("A **deep** pothole") == "A deep pothole"

    def test_comparison_and_ampersand_come_back_as_characters(self):
        assert markdown_to_plaintext("Width a < b & c") == "Width a < b & c"

    def test_paragraphs_become_lines(self):
        assert markdown_to_plaintext("First line.\n\nSecond line.") == "First line.\nSecond line."
