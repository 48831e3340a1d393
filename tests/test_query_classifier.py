"""Tests for intent classification and search-term extraction."""

import pytest

from call_insights.schemas.query import IntentType
from call_insights.services.query_classifier import (
    DEFAULT_FOLLOW_UPS,
    QueryClassifier,
    estimate_complexity,
    suggest_follow_ups,
)
from call_insights.services.vocabulary import TIRE_SIZE_PROFILE


class TestKeywordSearchClassification:
    def test_mention_question_is_keyword_search(self, classifier):
        intent = classifier.classify("How many calls mentioned refund?")

        assert intent.intent is IntentType.KEYWORD_SEARCH
        assert intent.is_keyword_search
        assert intent.search_terms == ["refund"]
        assert intent.query_type == "keyword_search"

    def test_quoted_phrase_comes_first(self, classifier):
        intent = classifier.classify('Find calls with "money back guarantee"')

        assert intent.is_keyword_search
        assert intent.search_terms == ["money back guarantee", "guarantee", "money", "back"]

    def test_vocabulary_window_promoted_to_phrase(self, classifier):
        intent = classifier.classify("How many calls mention billing problems with my account?")

        assert intent.search_terms[0] == "billing account"
        assert set(intent.search_terms) == {"billing account", "billing", "account"}

    def test_no_extractable_terms_is_still_keyword_search(self, classifier):
        intent = classifier.classify("How many calls contain it?")

        assert intent.is_keyword_search
        assert intent.search_terms == []

    def test_term_list_is_capped(self, profiles):
        classifier = QueryClassifier(profiles=profiles, max_terms=3)
        intent = classifier.classify("calls about alpha bravo charlie delta echoes foxtrot")

        assert len(intent.search_terms) == 3
        assert len(intent.search_terms[0].split()) == 2


class TestDomainClassification:
    def test_mobile_fitting_question(self, classifier):
        intent = classifier.classify("What are the main problems with MTF appointments?")

        assert intent.intent is IntentType.DOMAIN_SEARCH
        assert intent.query_type == "mtf_analysis"
        assert intent.disposition_filter == "mtf"
        assert "mtf" in intent.search_terms

    def test_tire_size_question_seeds_terms(self, classifier):
        intent = classifier.classify("Which tyre sizes were out of stock most often?")

        assert intent.query_type == "tire_size_search"
        assert intent.disposition_filter is None
        assert intent.search_terms[: len(TIRE_SIZE_PROFILE.seed_terms)] == list(TIRE_SIZE_PROFILE.seed_terms)

    def test_code_in_question_is_added_once(self, classifier):
        intent = classifier.classify("How many calls asked about 245/35R19 or 205/55R16?")

        assert intent.query_type == "tire_size_search"
        assert "245/35R19" in intent.search_terms
        assert [t.lower() for t in intent.search_terms].count("205/55r16") == 1

    def test_domain_profiles_can_be_disabled(self):
        classifier = QueryClassifier(profiles=[], max_terms=15)
        intent = classifier.classify("What are the main problems with MTF appointments?")

        assert intent.domain is None
        assert intent.intent is not IntentType.DOMAIN_SEARCH


class TestTopicClassification:
    @pytest.mark.parametrize(
        ("question", "expected"),
        [
            ("Show me the disposition breakdown", IntentType.DISPOSITION),
            ("How is customer satisfaction looking?", IntentType.SENTIMENT),
            ("Which agent has the best performance?", IntentType.AGENT_PERFORMANCE),
            ("What is the average call duration?", IntentType.TIMING),
            ("Which queue is busiest?", IntentType.QUEUE_ANALYSIS),
            ("Give me an overview", IntentType.SUMMARY),
            ("Any trend worth knowing?", IntentType.TRENDS),
            ("Tell me something interesting", IntentType.GENERAL),
        ],
    )
    def test_topic_keywords(self, classifier, question, expected):
        intent = classifier.classify(question)
        assert intent.intent is expected
        assert not intent.is_keyword_search

    def test_hint_used_only_as_fallback(self, classifier):
        assert classifier.classify("Tell me something interesting", "sentiment").intent is IntentType.SENTIMENT
        assert classifier.classify("Show me the disposition breakdown", "sentiment").intent is IntentType.DISPOSITION

    @pytest.mark.parametrize("hint", ["keyword_search", "bogus", "", None])
    def test_non_topic_hints_ignored(self, classifier, hint):
        assert classifier.classify("Tell me something interesting", hint).intent is IntentType.GENERAL


class TestHelpers:
    def test_complexity(self):
        assert estimate_complexity("Compare the trend across teams", 10) == "complex"
        assert estimate_complexity("Analyze sentiment", 10) == "medium"
        assert estimate_complexity("How are we doing?", 10) == "simple"
        assert estimate_complexity("How are we doing?", 500) == "medium"
        assert estimate_complexity("How are we doing?", 5000) == "complex"

    def test_follow_ups(self):
        assert len(suggest_follow_ups("timing")) == 3
        assert suggest_follow_ups("mtf_analysis") == list(DEFAULT_FOLLOW_UPS)
