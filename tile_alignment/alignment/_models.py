"""Parametric spatial transform models for tile alignment.

This module provides the closed family of transforms that a tile can carry:

- Translation: D parameters, one correspondence is enough
- Similarity: rotation, isotropic scale and translation
- Affine: full linear part plus translation

Any of these can be blended with a regularizing model through a fixed
interpolation coefficient (lambda). All models keep their current transform as
a homogeneous (D+1)x(D+1) matrix, so blending and damping operate directly on
the matrix entries.
"""
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from ._typing_utils import AffineMatrix, FloatArray, Int, PointArray, check_dimensionality

# Configure logger
logger = logging.getLogger(__name__)


class ModelFitError(RuntimeError):
    """Base class for failures while fitting a model to point matches."""


class InsufficientDataError(ModelFitError):
    """Raised when there are fewer matches than the model needs."""


class IllConditionedDataError(ModelFitError):
    """Raised when the match geometry is degenerate for the model family."""


class ModelType(Enum):
    """Transform families ordered by increasing degrees of freedom."""
    TRANSLATION = "translation"
    SIMILARITY = "similarity"
    AFFINE = "affine"

    @property
    def order(self) -> int:
        return _MODEL_ORDER[self]


_MODEL_ORDER = {
    ModelType.TRANSLATION: 0,
    ModelType.SIMILARITY: 1,
    ModelType.AFFINE: 2,
}

_MIN_NUM_MATCHES: Dict[Tuple[ModelType, int], int] = {
    (ModelType.TRANSLATION, 2): 1,
    (ModelType.TRANSLATION, 3): 1,
    (ModelType.SIMILARITY, 2): 2,
    (ModelType.SIMILARITY, 3): 3,
    (ModelType.AFFINE, 2): 3,
    (ModelType.AFFINE, 3): 4,
}


def min_num_matches(kind: ModelType, ndim: Int) -> int:
    """Minimum number of correspondences needed to fit ``kind`` in ``ndim`` dimensions."""
    return _MIN_NUM_MATCHES[(kind, check_dimensionality(ndim))]


def identity_affine(ndim: Int) -> AffineMatrix:
    return np.eye(check_dimensionality(ndim) + 1, dtype=np.float64)


def _weighted_centroids(
    p: PointArray, q: PointArray, w: FloatArray
) -> Tuple[FloatArray, FloatArray, float]:
    sum_w = float(w.sum())
    pc = (w[:, None] * p).sum(axis=0) / sum_w
    qc = (w[:, None] * q).sum(axis=0) / sum_w
    return pc, qc, sum_w


def _fit_translation(p: PointArray, q: PointArray, w: FloatArray) -> AffineMatrix:
    pc, qc, _ = _weighted_centroids(p, q, w)
    affine = identity_affine(p.shape[1])
    affine[:-1, -1] = qc - pc
    return affine


def _fit_similarity(p: PointArray, q: PointArray, w: FloatArray) -> AffineMatrix:
    """Weighted Umeyama estimate of rotation, isotropic scale and translation."""
    ndim = p.shape[1]
    pc, qc, sum_w = _weighted_centroids(p, q, w)
    p0 = p - pc
    q0 = q - qc

    variance = float((w * (p0 ** 2).sum(axis=1)).sum() / sum_w)
    if variance == 0.0:
        raise IllConditionedDataError(
            f"Similarity fit is undefined: all {len(p)} source points coincide"
        )

    covariance = (w[:, None, None] * q0[:, :, None] * p0[:, None, :]).sum(axis=0) / sum_w
    u, s, vt = np.linalg.svd(covariance)
    # Reflection-free rotation
    signs = np.ones(ndim)
    if np.linalg.det(u) * np.linalg.det(vt) < 0:
        signs[-1] = -1.0
    rotation = u @ np.diag(signs) @ vt
    scale = float((s * signs).sum() / variance)

    affine = identity_affine(ndim)
    affine[:-1, :-1] = scale * rotation
    affine[:-1, -1] = qc - scale * rotation @ pc
    return affine


def _fit_affine(p: PointArray, q: PointArray, w: FloatArray) -> AffineMatrix:
    """Weighted linear least squares on homogeneous source coordinates."""
    ndim = p.shape[1]
    pc, qc, sum_w = _weighted_centroids(p, q, w)
    p0 = p - pc
    q0 = q - qc

    # Normal equations of the centered problem
    ata = (w[:, None, None] * p0[:, :, None] * p0[:, None, :]).sum(axis=0)
    atb = (w[:, None, None] * p0[:, :, None] * q0[:, None, :]).sum(axis=0)

    # Only an exactly singular system is rejected
    try:
        linear = np.linalg.solve(ata, atb).T
    except np.linalg.LinAlgError as e:
        raise IllConditionedDataError(
            f"Affine fit is undefined: {len(p)} source points do not span {ndim} dimensions"
        ) from e

    affine = identity_affine(ndim)
    affine[:-1, :-1] = linear
    affine[:-1, -1] = qc - linear @ pc
    return affine


_FITTERS: Dict[ModelType, Callable[[PointArray, PointArray, FloatArray], AffineMatrix]] = {
    ModelType.TRANSLATION: _fit_translation,
    ModelType.SIMILARITY: _fit_similarity,
    ModelType.AFFINE: _fit_affine,
}


@dataclass(eq=False)
class Model:
    """A transform of one ``ModelType``, optionally blended with a regularizer.

    The blend is ``(1 - lam) * primary + lam * regularizer`` applied to the
    fitted matrices; ``lam == 0`` reduces to the primary model and ``lam == 1``
    to the regularizer.
    """
    kind: ModelType
    ndim: int
    affine: AffineMatrix = field(default=None)  # type: ignore[assignment]
    regularizer: Optional[ModelType] = None
    lam: float = 0.0

    def __post_init__(self) -> None:
        self.ndim = check_dimensionality(self.ndim)
        if self.affine is None:
            self.affine = identity_affine(self.ndim)
        else:
            self.affine = np.array(self.affine, dtype=np.float64)
            if self.affine.shape != (self.ndim + 1, self.ndim + 1):
                raise ValueError(
                    f"Affine for a {self.ndim}D model must be {(self.ndim + 1,) * 2}, got {self.affine.shape}"
                )
        if not 0.0 <= self.lam <= 1.0:
            raise ValueError(f"Interpolation coefficient must be in [0, 1], got {self.lam}")
        if self.regularizer is None and self.lam != 0.0:
            raise ValueError("Interpolation coefficient set on a model without a regularizer")

    @classmethod
    def create(cls, kind: ModelType, ndim: Int) -> "Model":
        return cls(kind=kind, ndim=int(ndim))

    @classmethod
    def translation(cls, ndim: Int) -> "Model":
        return cls.create(ModelType.TRANSLATION, ndim)

    @classmethod
    def similarity(cls, ndim: Int) -> "Model":
        return cls.create(ModelType.SIMILARITY, ndim)

    @classmethod
    def affine_model(cls, ndim: Int) -> "Model":
        return cls.create(ModelType.AFFINE, ndim)

    @classmethod
    def interpolated(
        cls,
        primary: ModelType,
        regularizer: ModelType,
        lam: float,
        ndim: Int,
    ) -> "Model":
        return cls(kind=primary, ndim=int(ndim), regularizer=regularizer, lam=float(lam))

    @property
    def is_interpolated(self) -> bool:
        return self.regularizer is not None

    @property
    def is_translation(self) -> bool:
        """True for a pure translation model (a blend never counts)."""
        return self.kind is ModelType.TRANSLATION and self.regularizer is None

    @property
    def min_num_matches(self) -> int:
        needed = min_num_matches(self.kind, self.ndim)
        if self.regularizer is not None:
            needed = max(needed, min_num_matches(self.regularizer, self.ndim))
        return needed

    @property
    def translation_vector(self) -> FloatArray:
        return self.affine[:-1, -1].copy()

    def describe(self) -> str:
        if self.regularizer is None:
            return f"{self.kind.value}{self.ndim}d"
        return f"interpolated({self.kind.value},{self.regularizer.value},{self.lam:g}){self.ndim}d"

    def with_affine(self, affine: AffineMatrix) -> "Model":
        return replace(self, affine=np.array(affine, dtype=np.float64))

    def with_lambda(self, lam: float) -> "Model":
        """Copy of this model with a new interpolation coefficient.

        Plain models are wrapped as a blend with a translation regularizer.
        """
        regularizer = self.regularizer if self.regularizer is not None else ModelType.TRANSLATION
        return replace(self, affine=self.affine.copy(), regularizer=regularizer, lam=float(lam))

    def apply(self, points: PointArray) -> PointArray:
        """Map local coordinates, shape (D,) or (n, D), into the world frame."""
        points = np.asarray(points, dtype=np.float64)
        return points @ self.affine[:-1, :-1].T + self.affine[:-1, -1]

    def parameters(self) -> FloatArray:
        """Flattened top D rows of the homogeneous matrix."""
        return self.affine[:-1, :].ravel().copy()

    def fit(self, p: PointArray, q: PointArray, w: Optional[FloatArray] = None) -> AffineMatrix:
        """Estimate the transform mapping ``p`` onto ``q``.

        Args:
            p: Local coordinates of this tile's matched points, shape (n, D)
            q: World coordinates of the corresponding points, shape (n, D)
            w: Non-negative match weights, shape (n,); zero weights are ignored

        Returns:
            The fitted homogeneous matrix. The model itself is not modified.

        Raises:
            InsufficientDataError: If fewer usable matches than ``min_num_matches``
            IllConditionedDataError: If the geometry is degenerate for this family
        """
        p = np.asarray(p, dtype=np.float64).reshape(-1, self.ndim)
        q = np.asarray(q, dtype=np.float64).reshape(-1, self.ndim)
        if p.shape != q.shape:
            raise ValueError(f"Point arrays differ in shape: {p.shape} vs {q.shape}")
        w = np.ones(len(p)) if w is None else np.asarray(w, dtype=np.float64)

        usable = w > 0
        if usable.sum() < self.min_num_matches:
            raise InsufficientDataError(
                f"{self.describe()} needs at least {self.min_num_matches} matches, got {int(usable.sum())}"
            )
        p, q, w = p[usable], q[usable], w[usable]

        if self.regularizer is None or self.lam == 0.0:
            return _FITTERS[self.kind](p, q, w)
        if self.lam == 1.0:
            return _FITTERS[self.regularizer](p, q, w)

        primary = _FITTERS[self.kind](p, q, w)
        regularizer = _FITTERS[self.regularizer](p, q, w)
        return (1.0 - self.lam) * primary + self.lam * regularizer
