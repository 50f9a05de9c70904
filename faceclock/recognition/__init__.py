# faceclock/recognition/__init__.py
"""
Face Recognition module.

- embedding: normalize / average / stability / cosine similarity
- gallery: EmployeeTemplate, Gallery interface, validate_identity, register_identity
- enrollment: enroll_from_images (detect, crop, embed, register)
- matcher: IdentityMatcher with margin-based rejection
- recognition: FaceEmbedder (TFLite, imported lazily by model_factory)
"""

from .embedding import average, check_dimension, cosine_similarity, normalize, stability
from .enrollment import EnrollmentImageError, embed_images, enroll_from_images
from .gallery import EmployeeTemplate, Gallery, register_identity, validate_identity
from .matcher import IdentityMatcher, Invalid, Match, MatchOutcome, MatchResult, Unknown

__all__ = [
    'average',
    'check_dimension',
    'cosine_similarity',
    'normalize',
    'stability',
    'EmployeeTemplate',
    'Gallery',
    'register_identity',
    'validate_identity',
    'EnrollmentImageError',
    'embed_images',
    'enroll_from_images',
    'IdentityMatcher',
    'Invalid',
    'Match',
    'MatchOutcome',
    'MatchResult',
    'Unknown',
]
