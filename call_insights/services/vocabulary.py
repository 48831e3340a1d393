"""
Vocabulary for query classification and keyword expansion.

Holds the call-center synonym table, query filler words, and the domain
profiles (tire-size stock questions, mobile tyre fitting) that deployments
enable through ``Settings.domain_profiles``. A domain profile bundles
everything a vertical needs: detection patterns, seed search terms,
a disposition sub-filter, extra synonyms and a prompt hint.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable

# ── Generic call-center vocabulary ───────────────────────────────

CALL_CENTER_SYNONYMS: dict[str, tuple[str, ...]] = {
    "angry": ("mad", "upset", "furious", "irritated", "frustrated", "annoyed", "irate"),
    "happy": ("pleased", "satisfied", "content", "glad", "delighted", "thrilled"),
    "problem": ("issue", "trouble", "difficulty", "concern", "fault", "defect"),
    "refund": ("return", "reimbursement", "money back", "credit", "chargeback"),
    "cancel": ("terminate", "end", "stop", "discontinue", "abort"),
    "billing": ("payment", "invoice", "charge", "fee", "cost", "bill"),
    "account": ("profile", "membership", "subscription", "login"),
    "service": ("support", "help", "assistance", "repair", "maintenance"),
    "product": ("item", "merchandise", "goods", "part", "component"),
    "delivery": ("shipping", "shipment", "sent", "mail", "transport"),
    "urgent": ("emergency", "critical", "important", "rush", "asap"),
    "waiting": ("hold", "queue", "pending", "delay", "wait"),
    "complaint": ("grievance", "objection", "dissatisfied", "unhappy"),
}

# Words that make a 2-3 word window worth searching as a phrase
SERVICE_VOCABULARY: tuple[str, ...] = (
    "customer", "billing", "account", "refund", "cancel", "support",
    "help", "delivery", "payment", "schedule", "complaint", "order",
)

# Short words still worth searching on their own
SHORT_KEEP_WORDS = frozenset({
    "fee", "pay", "buy", "new", "old", "bad", "mad", "oil", "gas", "air", "mtf",
})

# Query scaffolding stripped before term extraction
QUERY_FILLER_PATTERN = re.compile(
    r"\b(how many|show me|count|find|search|what|where|when|which|calls?|records?|"
    r"included?|contain(?:s|ed)?|mention(?:s|ed)?|about|regarding|discussing|with|have|"
    r"were|that|this|they|them|from|and|or|the|a|an|is|are|was|be|been|being|for|"
    r"offers?|offered|reasons|why|not|getting|problems|did|does|do|of|in|on|to|any)\b",
    re.IGNORECASE,
)

# Extra weight for transcript examples, by intent
INTENT_BONUS_TERMS: dict[str, tuple[str, ...]] = {
    "sentiment": ("happy", "angry", "upset", "frustrated", "thank", "great", "terrible", "disappointed", "pleased"),
    "disposition": ("resolved", "fixed", "sorted", "escalate", "callback", "transfer", "booked", "cancelled"),
    "agent_performance": ("sorry", "apologise", "apologize", "understand", "let me", "help you"),
    "timing": ("hold", "wait", "waiting", "minutes", "long time", "queue"),
    "queue_analysis": ("transfer", "department", "queue", "put you through"),
}


# ── Structured code families ─────────────────────────────────────


@dataclass(frozen=True)
class StructuredTermFamily:
    """
    A rigid code notation (for example tyre sizes like ``205/55R16``).

    ``pattern`` must expose three groups: head, marker and tail. Variants
    are produced by swapping the marker for each entry of ``markers``, in
    upper and lower case, and nothing else.
    """

    name: str
    pattern: re.Pattern[str]
    markers: tuple[str, ...]

    def search(self, term: str) -> re.Match[str] | None:
        return self.pattern.search(term)

    def variants(self, term: str) -> set[str]:
        match = self.search(term)
        if match is None:
            return {term}
        head, _marker, tail = match.groups()
        forms = {term, term.lower(), term.upper()}
        for marker in self.markers:
            code = f"{head}{marker}{tail}"
            forms.update({code, code.lower(), code.upper()})
        return forms


TIRE_SIZE_FAMILY = StructuredTermFamily(
    name="tire_size",
    pattern=re.compile(r"(?<!\d)(\d{3}/\d{2})([rR/]?)(\d{2})(?!\d)"),
    markers=("R", "/", ""),
)


# ── Domain profiles ──────────────────────────────────────────────


@dataclass(frozen=True)
class DomainProfile:
    """A pluggable vertical: detection, seed terms and sub-filters."""

    name: str
    query_type: str
    title: str
    query_patterns: tuple[re.Pattern[str], ...]
    seed_terms: tuple[str, ...] = ()
    scoring_terms: tuple[str, ...] = ()
    code_family: StructuredTermFamily | None = None
    disposition_filter: str | None = None
    vocabulary: tuple[str, ...] = ()
    synonyms: dict[str, tuple[str, ...]] = field(default_factory=dict)
    prompt_hint: str = ""
    report_seed_mentions: bool = False

    def matches(self, question: str) -> bool:
        return any(pattern.search(question) for pattern in self.query_patterns)

    def codes_in(self, question: str) -> list[str]:
        """Structured codes written directly in the question."""
        if self.code_family is None:
            return []
        return [m.group(0) for m in self.code_family.pattern.finditer(question)]


def _patterns(*sources: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(source, re.IGNORECASE) for source in sources)


AUTOMOTIVE_VOCABULARY: tuple[str, ...] = (
    "wheel", "tire", "tyre", "brake", "oil", "engine", "alignment", "service",
    "repair", "quote", "warranty", "appointment", "battery", "transmission",
    "filter", "fluid", "stock", "size", "mobile", "fitting",
)

AUTOMOTIVE_SYNONYMS: dict[str, tuple[str, ...]] = {
    "alignment": ("align", "aligned", "balancing", "adjustment", "calibration"),
    "wheel": ("tire", "rim", "hub"),
    "brake": ("braking", "stop", "stopping"),
    "engine": ("motor", "powerplant", "drivetrain"),
    "oil": ("lubricant", "fluid", "lube"),
    "tire": ("tyre", "wheel", "rubber"),
    "tyre": ("tire", "wheel", "rubber"),
    "repair": ("fix", "service", "maintenance", "work"),
    "quote": ("estimate", "price", "cost", "pricing"),
    "warranty": ("guarantee", "coverage", "protection"),
    "appointment": ("booking", "schedule", "reservation", "slot", "visit"),
    "stock": ("inventory", "availability", "available", "supply", "in stock", "out of stock"),
    "size": ("dimension", "specification", "specs"),
    "common": ("popular", "frequent", "usual", "typical", "standard"),
    "unavailable": ("out of stock", "not available", "sold out", "backordered", "no stock"),
}

TIRE_SIZE_PROFILE = DomainProfile(
    name="tire_size",
    query_type="tire_size_search",
    title="Tire Size Stock Analysis",
    query_patterns=_patterns(
        r"tyre?\s*size",
        r"tire?\s*size",
        r"stock.*(tyre|tire)",
        r"out\s*of\s*stock.*(tyre|tire)",
        r"unavailable.*(tyre|tire)",
        r"(common|popular).*(tyre|tire)",
        r"\d{3}/\d{2}R?\d{2}",
    ),
    seed_terms=(
        "195/65R15", "205/55R16", "215/60R16", "215/55R17", "225/45R17",
        "195/60R14", "255/45R19", "245/40R20", "285/35R20",
    ),
    code_family=TIRE_SIZE_FAMILY,
    vocabulary=AUTOMOTIVE_VOCABULARY,
    synonyms=AUTOMOTIVE_SYNONYMS,
    prompt_hint=(
        "This is a tire size analysis: describe stock patterns and customer "
        "demand for the individual tire sizes."
    ),
    report_seed_mentions=True,
)

MOBILE_FITTING_PROFILE = DomainProfile(
    name="mobile_fitting",
    query_type="mtf_analysis",
    title="Mobile Tyre Fitting (MTF) Analysis",
    query_patterns=_patterns(
        r"mobile\s*(tyre|tire)\s*(fitting|service|appointment|booking|installation)",
        r"\bmtf\b",
        r"mobile.*fitting.*appointment",
        r"mobile.*service.*appointment",
        r"on.?site.*(tyre|tire)",
        r"home.*(tyre|tire).*service",
    ),
    scoring_terms=("mobile", "fitting", "appointment", "booking", "service", "mtf"),
    disposition_filter="mtf",
    vocabulary=AUTOMOTIVE_VOCABULARY,
    synonyms={
        **AUTOMOTIVE_SYNONYMS,
        "mobile": ("mobile tyre", "mobile tire", "mobile service", "on-site", "home service", "mobile fitting"),
        "fitting": ("installation", "mounting", "changing", "replacing", "fit"),
    },
    prompt_hint=(
        "This is a Mobile Tyre Fitting (MTF) analysis: focus on appointment "
        "booking issues, service delivery problems and customer satisfaction "
        "specific to mobile fitting."
    ),
)

DOMAIN_PROFILES: dict[str, DomainProfile] = {
    profile.name: profile for profile in (MOBILE_FITTING_PROFILE, TIRE_SIZE_PROFILE)
}


def load_domain_profiles(names: Iterable[str]) -> list[DomainProfile]:
    """Resolve enabled profile names, keeping their configured order."""
    profiles = []
    for name in names:
        if name not in DOMAIN_PROFILES:
            raise ValueError(f"Unknown domain profile: {name!r}")
        profiles.append(DOMAIN_PROFILES[name])
    return profiles


def merged_synonyms(profiles: Iterable[DomainProfile]) -> dict[str, tuple[str, ...]]:
    """Generic synonyms extended with every enabled profile's synonyms."""
    merged = {key: tuple(values) for key, values in CALL_CENTER_SYNONYMS.items()}
    for profile in profiles:
        for key, values in profile.synonyms.items():
            existing = merged.get(key, ())
            merged[key] = existing + tuple(v for v in values if v not in existing)
    return merged


def phrase_vocabulary(profiles: Iterable[DomainProfile]) -> frozenset[str]:
    words = set(SERVICE_VOCABULARY)
    for profile in profiles:
        words.update(profile.vocabulary)
    return frozenset(words)
