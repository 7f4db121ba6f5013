"""
Tests for text segmentation.

Tests cover:
- Sentence terminators stay attached to their sentence
- Line breaks end a chunk
- Whitespace-only candidates are dropped
- Indices are contiguous from 0
- Empty input yields no chunks
"""

from readaloud.reader.segmenter import TextChunk, segment


class TestSegment:
    """Tests for segment()."""

    def test_sentences_and_line_breaks(self):
        chunks = segment("Hi there. How are you?\nFine!")
        assert [c.text for c in chunks] == ["Hi there.", " How are you?\n", "Fine!"]

    def test_indices_are_contiguous(self):
        chunks = segment("One. Two!\n\n\nThree? Four.")
        assert [c.index for c in chunks] == list(range(len(chunks)))

    def test_terminator_runs_stay_together(self):
        chunks = segment("Wait... What?! Yes.")
        assert [c.text for c in chunks] == ["Wait...", " What?!", " Yes."]

    def test_whitespace_runs_dropped(self):
        """Blank lines between paragraphs never become chunks."""
        chunks = segment("First.\n   \n\nSecond.")
        assert all(c.text.strip() for c in chunks)
        assert [c.text.strip() for c in chunks] == ["First.", "Second."]

    def test_text_without_terminator(self):
        assert segment("no punctuation here") == [TextChunk(0, "no punctuation here")]

    def test_empty_and_whitespace_input(self):
        assert segment("") == []
        assert segment("   \n\n\t ") == []

    def test_deterministic(self):
        text = "A. B! C?\nD"
        assert segment(text) == segment(text)
