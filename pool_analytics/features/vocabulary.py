"""
Categorical Vocabulary

Versioned lists of pool kinds, platforms and chains used for one-hot encoding.
A Vocabulary is immutable; VocabularyRegistry swaps the active snapshot
atomically on a version bump so concurrent readers always see one consistent
vocabulary.
"""

import logging
import threading
from dataclasses import dataclass

from pool_analytics.core.errors import ConfigurationError
from pool_analytics.data.models import PoolKind

logger = logging.getLogger(__name__)

CATEGORIES = ("pool_kind", "platform", "chain")


@dataclass(frozen=True)
class Vocabulary:
    """
    One version of the categorical universe.

    Attributes:
        version: Monotonic vocabulary version
        pool_kinds: Ordered pool kind names
        platforms: Ordered platform tags
        chains: Ordered chain tags
    """

    version: int
    pool_kinds: tuple[str, ...]
    platforms: tuple[str, ...]
    chains: tuple[str, ...]

    def values_for(self, category: str) -> tuple[str, ...]:
        if category == "pool_kind":
            return self.pool_kinds
        if category == "platform":
            return self.platforms
        if category == "chain":
            return self.chains
        raise KeyError(f"Unknown vocabulary category: {category}")

    def one_hot(self, category: str, value: str) -> list[float]:
        """
        Encode a value as len(values) + 1 floats.

        The last slot is the "unknown" slot, set when the value is not part of
        the vocabulary.
        """
        known = self.values_for(category)
        encoded = [0.0] * (len(known) + 1)
        normalized = value.strip().lower()
        if normalized in known:
            encoded[known.index(normalized)] = 1.0
        else:
            encoded[-1] = 1.0
        return encoded

    def validate(self, strict: bool = True) -> None:
        """
        Raises:
            ConfigurationError: If strict and any category is empty, or a
                category contains duplicates.
        """
        for category in CATEGORIES:
            known = self.values_for(category)
            if strict and not known:
                raise ConfigurationError(f"Vocabulary v{self.version} has no {category} values")
            if len(set(known)) != len(known):
                raise ConfigurationError(f"Vocabulary v{self.version} has duplicate {category} values")


DEFAULT_VOCABULARY = Vocabulary(
    version=1,
    pool_kinds=tuple(kind.value for kind in PoolKind),
    platforms=(
        "ref-finance",
        "trisolaris",
        "uniswap",
        "sushiswap",
        "curve",
        "balancer",
        "pancakeswap",
        "aave",
        "compound",
    ),
    chains=(
        "near",
        "aurora",
        "ethereum",
        "bsc",
        "polygon",
        "avalanche",
        "solana",
        "arbitrum",
    ),
)

_BUILTIN_VOCABULARIES = {DEFAULT_VOCABULARY.version: DEFAULT_VOCABULARY}


def builtin_vocabulary(version: int) -> Vocabulary:
    """
    Raises:
        ConfigurationError: If no vocabulary with this version ships with the core.
    """
    try:
        return _BUILTIN_VOCABULARIES[version]
    except KeyError:
        raise ConfigurationError(f"Unknown vocabulary version: {version}") from None


class VocabularyRegistry:
    """Holds the active vocabulary; readers get an immutable snapshot."""

    def __init__(self, vocabulary: Vocabulary = DEFAULT_VOCABULARY, strict: bool = True):
        vocabulary.validate(strict)
        self._strict = strict
        self._lock = threading.Lock()
        self._current = vocabulary

    def current(self) -> Vocabulary:
        with self._lock:
            return self._current

    def replace(self, vocabulary: Vocabulary) -> None:
        """
        Install a newer vocabulary.

        Raises:
            ConfigurationError: If the version does not increase or the
                vocabulary is invalid.
        """
        vocabulary.validate(self._strict)
        with self._lock:
            if vocabulary.version <= self._current.version:
                raise ConfigurationError(
                    f"Vocabulary version must increase (current v{self._current.version}, got v{vocabulary.version})"
                )
            previous = self._current.version
            self._current = vocabulary
        logger.info("Vocabulary replaced", extra={"previous_version": previous, "version": vocabulary.version})
