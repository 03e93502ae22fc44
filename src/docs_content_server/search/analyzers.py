"""Text analyzers turning titles, bodies and queries into search terms.

An analyzer is a tokenizer followed by a chain of term filters. The same
analyzer must process both indexed text and queries so their terms line up.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
import re
from typing import Protocol


class Analyzer(Protocol):
    def __call__(self, text: str) -> list[str]:  # pragma: no cover - interface definition
        ...


TermFilter = Callable[[Iterable[str]], Iterator[str]]

WORD_PATTERN = re.compile(r"[\w']+", re.UNICODE)
# Keeps dotted and snake_case identifiers (torch.nn.Module, get_queryset) whole
CODE_PATTERN = re.compile(r"\w+(?:[._]\w+)*", re.UNICODE)

DEFAULT_STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "if", "in", "into", "is", "it",
        "no", "not", "of", "on", "or", "such", "that", "the", "their", "then", "there", "these",
        "they", "this", "to", "was", "will", "with",
    }
)  # fmt: skip

_SUFFIX_RULES: tuple[tuple[str, str], ...] = (
    ("ization", "ize"),
    ("ational", "ate"),
    ("fulness", "ful"),
    ("ousness", "ous"),
    ("iveness", "ive"),
    ("tional", "tion"),
    ("ation", "ate"),
    ("ness", ""),
    ("ment", ""),
)

_SIMPLE_SUFFIXES: tuple[str, ...] = ("ingly", "edly", "ing", "ed", "ly", "es", "s")

MIN_STEM_LENGTH = 3


def regex_tokenizer(pattern: re.Pattern[str]) -> Callable[[str], Iterator[str]]:
    def tokenize(text: str) -> Iterator[str]:
        for match in pattern.finditer(text):
            yield match.group(0)

    return tokenize


def lowercase_filter(terms: Iterable[str]) -> Iterator[str]:
    for term in terms:
        yield term.casefold()


def stop_filter(stopwords: Iterable[str] = DEFAULT_STOPWORDS) -> TermFilter:
    vocabulary = frozenset(word.casefold() for word in stopwords)

    def apply(terms: Iterable[str]) -> Iterator[str]:
        for term in terms:
            if term not in vocabulary:
                yield term

    return apply


def light_stem(term: str) -> str:
    """Strip a common English suffix, never shortening below three characters.

    >>> light_stem("configuration"), light_stem("routing"), light_stem("pages")
    ('configurate', 'rout', 'pag')
    """
    for suffix, replacement in _SUFFIX_RULES:
        if term.endswith(suffix):
            candidate = term[: -len(suffix)] + replacement
            if len(candidate) >= MIN_STEM_LENGTH:
                return candidate
    for suffix in _SIMPLE_SUFFIXES:
        if term.endswith(suffix):
            candidate = term[: -len(suffix)]
            if len(candidate) >= MIN_STEM_LENGTH:
                return candidate
    return term


def stem_filter(terms: Iterable[str]) -> Iterator[str]:
    for term in terms:
        yield light_stem(term)


class AnalyzerPipeline:
    """Composable analyzer (tokenizer + filters)."""

    def __init__(self, tokenizer: Callable[[str], Iterable[str]], filters: Sequence[TermFilter] = ()) -> None:
        self.tokenizer = tokenizer
        self.filters = list(filters)

    def __call__(self, text: str) -> list[str]:
        if not text:
            return []
        stream: Iterable[str] = self.tokenizer(text)
        for term_filter in self.filters:
            stream = term_filter(stream)
        return [term for term in stream if term]


def standard_analyzer(*, apply_stemming: bool = True) -> AnalyzerPipeline:
    filters: list[TermFilter] = [lowercase_filter, stop_filter()]
    if apply_stemming:
        filters.append(stem_filter)
    return AnalyzerPipeline(regex_tokenizer(WORD_PATTERN), filters)


def code_friendly_analyzer() -> AnalyzerPipeline:
    """Lowercase and drop stopwords but keep identifiers intact and unstemmed."""
    return AnalyzerPipeline(regex_tokenizer(CODE_PATTERN), [lowercase_filter, stop_filter()])


_ANALYZER_FACTORIES: dict[str, Callable[[], Analyzer]] = {
    "default": standard_analyzer,
    "no-stem": lambda: standard_analyzer(apply_stemming=False),
    "code-friendly": code_friendly_analyzer,
}


def get_analyzer(name: str | None) -> Analyzer:
    """Return analyzer by profile name, defaulting to the standard analyzer."""
    if name is None:
        return _ANALYZER_FACTORIES["default"]()
    normalized = name.lower()
    if normalized not in _ANALYZER_FACTORIES:
        raise ValueError(f"Unknown analyzer '{name}'. Available: {sorted(_ANALYZER_FACTORIES)}")
    return _ANALYZER_FACTORIES[normalized]()
