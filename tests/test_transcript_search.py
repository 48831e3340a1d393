"""Tests for transcript search: patterns, snippets, ranking and denominators."""

import pytest

from call_insights.services.transcript_search import (
    MAX_SNIPPETS_PER_RECORD,
    build_variant_pattern,
    search_transcripts,
)

FILLER = " lorem ipsum dolor sit amet " * 6


class TestVariantPatterns:
    @pytest.mark.parametrize(
        ("variant", "text", "expected"),
        [
            ("fee", "there was a fee.", True),
            ("fee", "the feed was late", False),
            ("fee", "a coffee please", False),
            ("refund", "I want a REFUND now", True),
            ("refund", "I want a refuund now", True),
            ("refund", "I want refunds", False),
            ("refund", "prerefund", False),
            ("money back", "I want my money back", True),
            ("money back", "my money straight back please", True),
            ("money back", "money was never given back", False),
            ("205/55R16", "do you have 205/55r16 in stock", True),
            ("205/55R16", "do you have 205/55R166", False),
        ],
    )
    def test_matching(self, variant, text, expected):
        assert bool(build_variant_pattern(variant).search(text)) is expected


class TestSearchTranscripts:
    def test_denominators(self, make_record):
        records = []
        for i in range(500):
            if i < 120:
                text = "I would like a refund please" if i < 30 else "thanks for calling, have a good day"
            else:
                text = ""
            records.append(make_record(transcript_text=text))

        result = search_transcripts(records, {"refund": ["refund", "refunds", "reimbursement"]})

        assert result.stats.total_records_searched == 500
        assert result.stats.records_with_transcripts == 120
        assert len(result.matching_records) == 30
        assert result.stats.match_percentage == pytest.approx(25.0)
        assert result.percentage_of_total_calls == pytest.approx(6.0)
        assert result.total_matches == 30

    def test_refund_scenario_with_expander(self, make_record, expander):
        records = [
            make_record(transcript_text="I was refunded last week"),
            make_record(transcript_text="Can I get my money back?"),
            make_record(transcript_text="Just checking my order status"),
            make_record(transcript_text=""),
        ]
        expanded = expander.expand_terms(["refund"])

        result = search_transcripts(records, expanded)

        assert result.stats.records_with_transcripts == 3
        assert len(result.matching_records) == 2
        assert len(result.matching_records) <= result.stats.records_with_transcripts
        assert {"refunded", "reimbursement"} <= set(result.expanded_terms)

    def test_empty_terms_report_zero_matches(self, make_record):
        records = [make_record(transcript_text="anything at all"), make_record()]

        result = search_transcripts(records, {}, [])

        assert result.total_matches == 0
        assert result.matching_records == []
        assert result.stats.total_records_searched == 2
        assert result.stats.records_with_transcripts == 1

    def test_no_transcripts_gives_zero_percentage(self, make_record):
        result = search_transcripts([make_record(), make_record()], {"refund": ["refund"]})

        assert result.stats.records_with_transcripts == 0
        assert result.stats.match_percentage == 0.0

    def test_snippet_is_marked(self, make_record):
        record = make_record(transcript_text="I want a refund please")

        result = search_transcripts([record], {"refund": ["refund"]})

        assert result.matching_records[0].snippets == ["...I want a **refund** please..."]

    def test_snippets_capped_per_record(self, make_record):
        text = FILLER.join(["refund"] * 5)
        record = make_record(transcript_text=text)

        match = search_transcripts([record], {"refund": ["refund"]}).matching_records[0]

        assert match.match_count == 5
        assert len(match.snippets) == MAX_SNIPPETS_PER_RECORD
        assert all("**refund**" in snippet for snippet in match.snippets)

    def test_overlapping_hits_share_one_snippet(self, make_record):
        record = make_record(transcript_text="refund refund refund")

        match = search_transcripts([record], {"refund": ["refund"]}).matching_records[0]

        assert match.match_count == 3
        assert len(match.snippets) == 1

    def test_snippet_window_is_bounded(self, make_record):
        record = make_record(transcript_text=FILLER + "refund" + FILLER)

        snippet = search_transcripts([record], {"refund": ["refund"]}).matching_records[0].snippets[0]

        assert len(snippet) <= 60 + len("**refund**") + 60 + 6

    def test_ranking(self, make_record):
        expanded = {"refund": ["refund", "reimbursement"]}
        one = make_record(transcript_text="refund")
        same_variant = make_record(transcript_text="refund " + FILLER + " refund")
        two_variants = make_record(transcript_text="refund " + FILLER + " reimbursement")
        three = make_record(transcript_text="refund, refund and refund again")

        result = search_transcripts([one, same_variant, two_variants, three], expanded)

        assert [m.record_id for m in result.matching_records] == [
            three.id,
            two_variants.id,
            same_variant.id,
            one.id,
        ]
        assert result.matching_records[1].matched_variants == ["refund", "reimbursement"]
        assert result.total_matches == 1 + 2 + 2 + 3

    def test_match_carries_record_fields(self, make_record):
        record = make_record(
            transcript_text="refund",
            agent_username="jo",
            disposition_title="Escalated",
            call_duration={"minutes": 1, "seconds": 30},
        )

        match = search_transcripts([record], {"refund": ["refund"]}).matching_records[0]

        assert match.agent == "jo"
        assert match.disposition == "Escalated"
        assert match.duration == 90
