"""Unit tests for segment compaction and text metrics."""

from transcritor.audio.compaction import compact_segments
from transcritor.audio.utils import count_pages, count_words, format_segments, format_timestamp
from transcritor.models import Segment


class TestCompactSegments:
    def test_same_speaker_within_a_minute(self):
        segments = [
            Segment(5.0, 10.0, "a", speaker="A"),
            Segment(50.0, 55.0, "b", speaker="A"),
            Segment(70.0, 75.0, "c", speaker="B"),
        ]

        assert compact_segments(segments) == [
            Segment(5.0, 55.0, "a b", speaker="A"),
            Segment(70.0, 75.0, "c", speaker="B"),
        ]

    def test_disagreeing_speakers_are_cleared(self):
        segments = [
            Segment(0.0, 10.0, "pergunta", speaker="Entrevistador"),
            Segment(10.0, 20.0, "resposta", speaker="Entrevistado 1"),
        ]

        compacted = compact_segments(segments)

        assert len(compacted) == 1
        assert compacted[0].speaker is None
        assert compacted[0].text == "pergunta resposta"

    def test_end_is_the_largest_end(self):
        segments = [Segment(0.0, 40.0, "longo"), Segment(20.0, 30.0, "curto")]
        assert compact_segments(segments)[0].end == 40.0

    def test_empty_text_is_not_joined(self):
        segments = [Segment(0.0, 1.0, " a "), Segment(2.0, 3.0, "  "), Segment(4.0, 5.0, "b")]
        assert compact_segments(segments)[0].text == "a b"

    def test_empty_input(self):
        assert compact_segments([]) == []

    def test_never_longer_than_input(self):
        segments = [Segment(float(i * 61), float(i * 61 + 5), f"s{i}") for i in range(10)]
        assert len(compact_segments(segments)) == len(segments)

    def test_input_is_not_modified(self):
        segments = [Segment(0.0, 1.0, "a", speaker="X"), Segment(2.0, 3.0, "b", speaker="Y")]
        compact_segments(segments)
        assert segments[0].text == "a"
        assert segments[0].speaker == "X"


class TestTextMetrics:
    def test_count_words(self):
        assert count_words("  olá  mundo\nnovo\tdia ") == 4
        assert count_words("") == 0

    def test_count_pages_rounds_up(self):
        assert count_pages(0) == 0
        assert count_pages(1) == 1
        assert count_pages(250) == 1
        assert count_pages(251) == 2
        assert count_pages(1250) == 5

    def test_format_timestamp(self):
        assert format_timestamp(65.4) == "01:05"
        assert format_timestamp(3725) == "01:02:05"

    def test_format_segments(self):
        segments = [Segment(0.0, 5.0, "Oi", speaker="Entrevistador"), Segment(61.0, 70.0, "Tudo bem")]
        assert format_segments(segments) == "[00:00] [Entrevistador]: Oi\n\n[01:01] Tudo bem"
