"""
Keyword Expansion Engine.

Turns one search term into the set of surface forms worth looking for in
call transcripts: plural/singular toggles, verb forms, suffix-stripped
roots, configured synonyms and phrase decompositions. Callers talk
informally, so recall is preferred over precision here.

Inflected words (plurals, ``-ing``/``-ed``/``-er``/``-est`` forms) are only
re-inflected through their roots, never on top of the inflection itself.
Expanding any variant again therefore stays inside the closure of its
roots instead of growing ``refundeding``-style chains.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

from call_insights.logging_config import get_logger
from call_insights.services.vocabulary import (
    CALL_CENTER_SYNONYMS,
    DomainProfile,
    StructuredTermFamily,
    merged_synonyms,
)

logger = get_logger(__name__)

VERB_SUFFIXES = ("ing", "ed", "er", "est")
ROOT_SUFFIXES = ("ing", "ed", "er", "est", "ly", "tion", "sion", "ness", "ment")
SIBILANT_ENDINGS = ("s", "x", "z", "ch", "sh")
VOWELS = frozenset("aeiou")
MIN_VARIANT_LENGTH = 2


def _plurals(stem: str) -> set[str]:
    if stem.endswith(SIBILANT_ENDINGS):
        return {stem + "es"}
    if len(stem) > 2 and stem.endswith("y") and stem[-2] not in VOWELS:
        return {stem[:-1] + "ies"}
    return {stem + "s"}


def _singulars(word: str) -> set[str]:
    """Candidate singular forms; empty when ``word`` does not look plural."""
    if len(word) <= 3 or not word.endswith("s") or word.endswith(("ss", "us", "is")):
        return set()
    if word.endswith("ies") and len(word) > 4:
        return {word[:-3] + "y"}
    forms = {word[:-1]}
    if word.endswith("es") and word[:-2].endswith(SIBILANT_ENDINGS):
        forms.add(word[:-2])
    return forms


def _stripped_roots(word: str) -> set[str]:
    return {
        word[: -len(suffix)]
        for suffix in ROOT_SUFFIXES
        if word.endswith(suffix) and len(word) > len(suffix) + 2
    }


def _is_inflected(word: str) -> bool:
    if _singulars(word):
        return True
    return any(
        word.endswith(suffix) and len(word) > len(suffix) + 2 for suffix in VERB_SUFFIXES
    )


def _inflections(stem: str) -> set[str]:
    """Plural plus the verb forms of ``stem`` that it does not already carry."""
    forms = _plurals(stem)
    verb_base = stem[:-1] if stem.endswith("e") else stem
    for suffix in VERB_SUFFIXES:
        if not stem.endswith(suffix):
            forms.add(verb_base + suffix)
    return forms


class KeywordExpander:
    """
    Expands search terms into transcript surface forms.

    Args:
        synonyms: lowercase term -> synonyms. Defaults to the generic
            call-center table.
        code_families: structured notations (tyre sizes, ...) that are
            expanded only within their own family.
    """

    def __init__(
        self,
        synonyms: Mapping[str, Sequence[str]] | None = None,
        code_families: Iterable[StructuredTermFamily] = (),
    ) -> None:
        source = CALL_CENTER_SYNONYMS if synonyms is None else synonyms
        self._synonyms = {key.lower(): tuple(values) for key, values in source.items()}
        self._code_families = tuple(code_families)

    @classmethod
    def from_profiles(cls, profiles: Iterable[DomainProfile]) -> KeywordExpander:
        profiles = list(profiles)
        families = []
        for profile in profiles:
            if profile.code_family is not None and profile.code_family not in families:
                families.append(profile.code_family)
        return cls(synonyms=merged_synonyms(profiles), code_families=families)

    # ── Public API ───────────────────────────────────────────────

    def expand(self, term: str) -> set[str]:
        """Return every variant of ``term``, the term itself included."""
        text = term.strip()
        if not text:
            return set()

        for family in self._code_families:
            if family.search(text):
                return {v for v in family.variants(text) if len(v) >= MIN_VARIANT_LENGTH} | {text}

        lowered = text.lower()
        words = lowered.split()
        if len(words) > 1:
            variants = self._expand_phrase(words)
        elif "-" in lowered.strip("-"):
            variants = self._expand_phrase([part for part in lowered.split("-") if part])
        else:
            variants = self._expand_word(lowered)

        variants = {v for v in variants if len(v) >= MIN_VARIANT_LENGTH}
        variants.add(text)
        return variants

    def ordered_variants(self, term: str) -> list[str]:
        """Variants in display order: the term itself, then shortest first."""
        text = term.strip()
        others = self.expand(text) - {text}
        return ([text] if text else []) + sorted(others, key=lambda v: (len(v), v))

    def expand_terms(self, terms: Iterable[str]) -> dict[str, list[str]]:
        """Map each original term to its ordered variants."""
        expanded = {term: self.ordered_variants(term) for term in terms if term.strip()}
        logger.debug(
            "terms_expanded",
            terms=len(expanded),
            variants=sum(len(v) for v in expanded.values()),
        )
        return expanded

    # ── Internals ────────────────────────────────────────────────

    def _synonyms_for(self, key: str) -> set[str]:
        forms: set[str] = set()
        for synonym in self._synonyms.get(key, ()):
            synonym = synonym.lower()
            forms.add(synonym)
            if " " not in synonym:
                forms |= _plurals(synonym)
        return forms

    def _expand_word(self, word: str) -> set[str]:
        roots = _stripped_roots(word) | _singulars(word)
        stems = roots if _is_inflected(word) else {word}

        forms = {word} | roots
        for stem in stems:
            forms |= _inflections(stem)
        for key in {word} | roots:
            forms |= self._synonyms_for(key)
        return forms

    def _expand_phrase(self, words: list[str]) -> set[str]:
        phrase = " ".join(words)
        forms = {phrase, "-".join(words), "".join(words)}
        forms |= self._synonyms_for(phrase)

        for word in words:
            if len(word) > 2:
                forms |= self._expand_word(word)

        if len(words) >= 3:
            for i in range(len(words) - 1):
                forms.add(" ".join(words[i : i + 2]))
        return forms
