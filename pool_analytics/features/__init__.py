"""
Features Module - ML feature vector synthesis

Modules:
- vocabulary: versioned categorical vocabulary and its registry
- schema: ordered feature layout and schema id
- kernels: Numba-compiled float64 kernels
- synthesizer: FeatureSynthesizer and FeatureVector
"""

from pool_analytics.features.schema import FEATURE_SCHEMA_VERSION, FeatureSchema
from pool_analytics.features.synthesizer import FeatureConfig, FeatureSynthesizer, FeatureVector
from pool_analytics.features.vocabulary import DEFAULT_VOCABULARY, Vocabulary, VocabularyRegistry

__all__ = [
    "DEFAULT_VOCABULARY",
    "FEATURE_SCHEMA_VERSION",
    "FeatureConfig",
    "FeatureSchema",
    "FeatureSynthesizer",
    "FeatureVector",
    "Vocabulary",
    "VocabularyRegistry",
]
