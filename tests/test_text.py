import pytest

from guestdesk.utils.text import Chunker, chunk_text, tokenize_query


class TestChunkText:
    def test_short_text_is_single_chunk(self):
        assert chunk_text("  婚礼将在下午2点开始  ") == ["婚礼将在下午2点开始"]

    def test_blank_short_text_is_one_empty_segment(self):
        assert chunk_text("   \n ") == [""]

    def test_overlap_must_be_smaller_than_size(self):
        with pytest.raises(ValueError):
            chunk_text("abc", target_size=50, overlap=50)

    def test_no_terminators_splits_at_fixed_windows(self):
        text = "".join(chr(ord("a") + i % 26) for i in range(1200))
        chunks = chunk_text(text, 500, 50)

        assert len(chunks) == 3
        assert chunks[0] == text[0:500]
        assert chunks[1] == text[450:950]
        assert chunks[2] == text[900:1200]
        assert all(len(c) <= 500 for c in chunks)

    def test_consecutive_chunks_overlap(self):
        text = "x" * 1200
        chunks = chunk_text(text, 500, 50)
        for prev, nxt in zip(chunks, chunks[1:]):
            assert prev[-50:] == nxt[:50]

    def test_every_character_is_covered(self):
        sentence = "今天天气很好。 We meet at noon! 请准时到达？ "
        text = sentence * 60
        chunks = chunk_text(text, 200, 20)

        assert chunks
        assert all(0 < len(c) <= 200 for c in chunks)
        joined = "".join(chunks)
        for word in ("今天天气很好", "We meet at noon", "请准时到达"):
            assert word in joined
        # the tail of the document always survives
        assert text.strip().endswith(chunks[-1][-10:])

    def test_prefers_sentence_boundary(self):
        first = "a" * 300 + ". "
        text = first + "b" * 400
        chunks = chunk_text(text, 500, 50)
        assert chunks[0] == first.strip()

    def test_terminator_early_in_window_is_ignored(self):
        text = "ok. " + "c" * 900
        chunks = chunk_text(text, 500, 50)
        assert len(chunks[0]) == 500

    def test_always_terminates_with_large_overlap(self):
        text = "字。 " * 400
        chunks = chunk_text(text, 100, 90)
        assert chunks
        assert all(len(c) <= 100 for c in chunks)


class TestChunker:
    def test_uses_configured_sizes(self):
        chunker = Chunker(target_size=100, overlap=10)
        chunks = chunker.chunk("y" * 250)
        assert [len(c) for c in chunks] == [100, 100, 70]


class TestTokenizeQuery:
    def test_cjk_characters_are_single_tokens(self):
        assert tokenize_query("几点") == ["几", "点"]

    def test_latin_words_are_lowercased_and_short_ones_dropped(self):
        assert tokenize_query("When is the Party, A?") == ["when", "is", "the", "party"]

    def test_mixed_query_keeps_order_without_duplicates(self):
        assert tokenize_query("婚礼 venue 婚礼 2pm") == ["婚", "礼", "venue", "2pm"]

    def test_punctuation_only_yields_nothing(self):
        assert tokenize_query("？！...") == []
