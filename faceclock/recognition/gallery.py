# faceclock/recognition/gallery.py
"""
Gallery of enrolled employees and the registration quality gate.

The Gallery is an injected collaborator: the scanning loop only needs
`all()`, registration only needs `insert()`, the web API lists and removes
employees. faceclock.data.database provides the SQLite implementation.
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..errors import EmbeddingInvalid, InvalidIdentity, RegistrationUnstable
from .embedding import average, check_dimension, normalize, stability

logger = logging.getLogger(__name__)

EMPLOYEE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]{1,64}$")


def validate_identity(employee_id, name) -> Optional[str]:
    """Error message for a blank or malformed identity, None if valid."""
    if not isinstance(employee_id, str) or not EMPLOYEE_ID_PATTERN.match(employee_id):
        return f"Malformed employee id: {employee_id!r}"
    if not isinstance(name, str) or not name.strip():
        return f"Blank name for {employee_id}"
    return None


@dataclass(frozen=True)
class EmployeeTemplate:
    """Reference embeddings for one enrolled employee."""
    employee_id: str
    name: str
    embeddings: Tuple[np.ndarray, ...]

    def __post_init__(self):
        if len(self.embeddings) == 0:
            raise ValueError(f"Template for {self.employee_id} has no embeddings")

    @property
    def dim(self) -> int:
        return int(self.embeddings[0].shape[0])

    def to_dict(self) -> dict:
        return {
            'employee_id': self.employee_id,
            'name': self.name,
            'templates': len(self.embeddings),
            'dim': self.dim,
        }


class Gallery(ABC):
    @abstractmethod
    def all(self) -> List[EmployeeTemplate]:
        raise NotImplementedError("Implement all method")

    @abstractmethod
    def insert(self, employee_id: str, name: str, embeddings) -> EmployeeTemplate:
        """Store a new employee. Raises DuplicateEmployeeId if the id exists."""
        raise NotImplementedError("Implement insert method")

    @abstractmethod
    def remove(self, employee_id: str) -> bool:
        """Delete an employee and their templates. False if the id is unknown."""
        raise NotImplementedError("Implement remove method")

    @abstractmethod
    def list_employees(self) -> List[dict]:
        """Summary rows: employee_id, name, templates."""
        raise NotImplementedError("Implement list_employees method")

    def get(self, employee_id: str) -> Optional[dict]:
        """Summary row for one employee, None if unknown."""
        for row in self.list_employees():
            if row['employee_id'] == employee_id:
                return row
        return None

    def count(self) -> int:
        return len(self.list_employees())


def register_identity(
    samples: Sequence,
    gallery: Gallery,
    employee_id: str,
    name: str,
    stability_threshold: float = 0.75,
    min_samples: int = 2,
    dim: int = None,
) -> EmployeeTemplate:
    """
    Build one averaged template from enrollment samples and store it.

    Raises:
        InvalidIdentity: malformed employee id or blank name
        EmbeddingInvalid: too few samples, or a sample is malformed
        RegistrationUnstable: samples disagree (mean pairwise similarity too low)
        DuplicateEmployeeId: from the gallery
    """
    problem = validate_identity(employee_id, name)
    if problem:
        raise InvalidIdentity(problem)
    name = name.strip()
    if samples is None or len(samples) < min_samples:
        raise EmbeddingInvalid(
            f"Need at least {min_samples} samples, got {0 if samples is None else len(samples)}"
        )

    units = []
    for i, sample in enumerate(samples):
        if dim is not None and not check_dimension(sample, dim):
            raise EmbeddingInvalid(f"Sample {i}: expected dimension {dim}, got {np.shape(sample)}")
        unit = normalize(sample)
        if unit is None:
            raise EmbeddingInvalid(f"Sample {i}: empty, non-finite or near-zero embedding")
        units.append(unit)

    score = stability(units)
    if score is None:
        raise EmbeddingInvalid("Samples have inconsistent dimensions")
    if score < stability_threshold:
        logger.warning(f"[Register] {employee_id}: unstable capture ({score:.3f})")
        raise RegistrationUnstable(score, stability_threshold)

    template = average(units)
    if template is None:
        raise EmbeddingInvalid("Average of samples is degenerate")

    stored = gallery.insert(employee_id, name, [template])
    logger.info(f"[Register] {name} ({employee_id}) enrolled, stability={score:.3f}")
    return stored
