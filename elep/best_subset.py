"""
best_subset.py
==============
Best-subset model selection with hold-out (or k-fold) validation.

    SubsetEnumerator   -> one RSS-minimising subset per size k = 1..K
    ValidationScorer   -> validation MSE per size (None if the size failed)
    BestModelSelector  -> argmin size, ties to the smallest k

Search strategies:
    exhaustive  every subset of every size (K <= max_exhaustive)
    forward     greedy add-one, best RSS gain per step
    backward    greedy drop-one from the full model
    auto        exhaustive if K <= max_exhaustive, else forward

All three give training RSS that is non-increasing in k. Exhaustive and the
greedy strategies can disagree on which subset wins a size.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics import mean_squared_error
from sklearn.model_selection import KFold

from elep.dataset import CleaningSpec, DEFAULT_SPEC, HouseholdRecord
from elep.errors import InsufficientDataError, SingularMatrixError, UnseenLevelError
from elep.feature_matrix import FeatureMatrix, FeatureMatrixBuilder
from elep.ols import FittedModel, fit_ols, residual_sum_of_squares

logger = logging.getLogger(__name__)

SEARCH_METHODS = ("auto", "exhaustive", "forward", "backward")


@dataclass
class SubsetCandidate:
    """Best subset found for one size; columns/model are None if the size failed"""
    size: int
    columns: Optional[Tuple[str, ...]]
    rss: Optional[float]
    model: Optional[FittedModel] = None
    error: Optional[str] = None

    @property
    def is_missing(self) -> bool:
        return self.model is None


class SubsetEnumerator:
    """Find the best training-RSS subset of each size"""

    def __init__(self, method: str = "auto", max_exhaustive: int = 15):
        if method not in SEARCH_METHODS:
            raise ValueError(f"method must be one of {SEARCH_METHODS}, got {method!r}")
        self.method = method
        self.max_exhaustive = max_exhaustive
        self.method_used: Optional[str] = None

    def resolve_method(self, n_columns: int) -> str:
        if self.method != "auto":
            return self.method
        return "exhaustive" if n_columns <= self.max_exhaustive else "forward"

    def enumerate(self, X: np.ndarray, y: np.ndarray,
                  columns: Sequence[str]) -> List[SubsetCandidate]:
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float)
        columns = list(columns)
        K = len(columns)

        if K == 0:
            raise ValueError("No candidate columns to search")
        if X.shape[0] < K + 1:
            raise InsufficientDataError(X.shape[0], K + 1)

        self.method_used = self.resolve_method(K)
        logger.info(f"Best-subset search: {self.method_used} over K={K} columns, "
                    f"n={X.shape[0]:,} rows")

        search = {
            "exhaustive": self._exhaustive,
            "forward": self._forward,
            "backward": self._backward,
        }[self.method_used]
        subsets = search(X, y)

        candidates = []
        for k in range(1, K + 1):
            idx = subsets.get(k)
            if idx is None:
                candidates.append(SubsetCandidate(size=k, columns=None, rss=None,
                                                  error="no full-rank subset of this size"))
                logger.warning(f"  k={k:2d}: no full-rank subset (marked missing)")
                continue
            names = tuple(columns[i] for i in idx)
            try:
                model = fit_ols(X[:, list(idx)], y, names)
            except (SingularMatrixError, InsufficientDataError) as e:
                candidates.append(SubsetCandidate(size=k, columns=None, rss=None, error=str(e)))
                logger.warning(f"  k={k:2d}: fit failed (marked missing): {e}")
                continue
            candidates.append(SubsetCandidate(size=k, columns=names, rss=model.rss, model=model))
            logger.info(f"  k={k:2d}: RSS={model.rss:,.2f}")

        return candidates

    # ------------------------------------------------------------------
    # Strategies: each returns {size: tuple of column indices}
    # ------------------------------------------------------------------

    @staticmethod
    def _rss(X: np.ndarray, y: np.ndarray, idx: Sequence[int]) -> Optional[float]:
        try:
            return residual_sum_of_squares(X[:, list(idx)], y)
        except SingularMatrixError:
            return None

    def _exhaustive(self, X: np.ndarray, y: np.ndarray) -> Dict[int, Tuple[int, ...]]:
        K = X.shape[1]
        best: Dict[int, Tuple[int, ...]] = {}
        for k in range(1, K + 1):
            best_rss = np.inf
            for idx in itertools.combinations(range(K), k):
                rss = self._rss(X, y, idx)
                if rss is not None and rss < best_rss:
                    best_rss = rss
                    best[k] = idx
        return best

    def _forward(self, X: np.ndarray, y: np.ndarray) -> Dict[int, Tuple[int, ...]]:
        K = X.shape[1]
        selected: List[int] = []
        remaining = list(range(K))
        best: Dict[int, Tuple[int, ...]] = {}

        for k in range(1, K + 1):
            step_best, step_rss = None, np.inf
            for j in remaining:
                rss = self._rss(X, y, selected + [j])
                if rss is not None and rss < step_rss:
                    step_best, step_rss = j, rss
            if step_best is None:
                # Every remaining column is collinear with the current subset
                break
            selected.append(step_best)
            remaining.remove(step_best)
            best[k] = tuple(sorted(selected))
        return best

    def _backward(self, X: np.ndarray, y: np.ndarray) -> Dict[int, Tuple[int, ...]]:
        K = X.shape[1]
        current = list(range(K))
        # Full model must be estimable; dropping columns keeps it so
        residual_sum_of_squares(X, y)
        best: Dict[int, Tuple[int, ...]] = {K: tuple(current)}

        for k in range(K - 1, 0, -1):
            drop_best, drop_rss = None, np.inf
            for j in current:
                rss = self._rss(X, y, [c for c in current if c != j])
                if rss is not None and rss < drop_rss:
                    drop_best, drop_rss = j, rss
            current.remove(drop_best)
            best[k] = tuple(current)
        return best


class ValidationScorer:
    """Mean squared prediction error of fitted subsets on held-out rows"""

    def __init__(self, builder: FeatureMatrixBuilder, unseen: str = "raise"):
        self.builder = builder
        self.unseen = unseen

    def score(self, model: FittedModel, matrix: FeatureMatrix, y: np.ndarray) -> float:
        """
        MSE of `model` on `matrix`.

        Under unseen="raise", rows with a training-unseen level in any field
        the subset uses raise UnseenLevelError. Under "reference" those rows
        are predicted at the reference level (indicators left at zero).
        """
        if self.unseen == "raise":
            for name in self.builder.logical_predictors(model.columns):
                mask = matrix.unseen.get(name)
                if mask is not None and mask.any():
                    raise UnseenLevelError(name, matrix.unseen_levels[name][0], int(mask.sum()))

        predictions = model.predict(matrix.select(model.columns))
        return float(mean_squared_error(y, predictions))

    def score_all(self, candidates: Sequence[SubsetCandidate], matrix: FeatureMatrix,
                  y: np.ndarray) -> List[Optional[float]]:
        scores: List[Optional[float]] = []
        for candidate in candidates:
            if candidate.is_missing:
                scores.append(None)
                continue
            try:
                scores.append(self.score(candidate.model, matrix, y))
            except (UnseenLevelError, SingularMatrixError) as e:
                logger.error(f"  k={candidate.size:2d}: validation failed (marked missing): {e}")
                scores.append(None)
        return scores


def select_best_size(scores: Sequence[Optional[float]]) -> int:
    """1-based size with the lowest non-missing score; first minimum wins ties"""
    best_k, best_score = None, None
    for k, score in enumerate(scores, 1):
        if score is None or np.isnan(score):
            continue
        if best_score is None or score < best_score:
            best_k, best_score = k, score
    if best_k is None:
        raise ValueError("No subset size has a validation score")
    return best_k


@dataclass
class Selection:
    size: int
    columns: Tuple[str, ...]
    score: float
    model: FittedModel
    logical_predictors: List[str] = field(default_factory=list)

    @property
    def n_logical_predictors(self) -> int:
        return len(self.logical_predictors)

    @property
    def rmse(self) -> float:
        return float(np.sqrt(self.score))


class BestModelSelector:
    """Pick the validation-optimal subset size and report it in logical terms"""

    def __init__(self, builder: FeatureMatrixBuilder):
        self.builder = builder

    def select(self, candidates: Sequence[SubsetCandidate],
               scores: Sequence[Optional[float]]) -> Selection:
        if len(candidates) != len(scores):
            raise ValueError(f"{len(candidates)} candidates but {len(scores)} scores")

        k = select_best_size(scores)
        winner = candidates[k - 1]
        logical = self.builder.logical_predictors(winner.columns)

        logger.info(f"Selected k*={k}: {len(winner.columns)} columns from "
                    f"{len(logical)} logical predictors, validation MSE={scores[k - 1]:,.2f}")
        return Selection(size=k, columns=winner.columns, score=float(scores[k - 1]),
                         model=winner.model, logical_predictors=logical)


@dataclass
class CrossValidationResult:
    mean_errors: List[Optional[float]]
    fold_errors: List[List[Optional[float]]]
    best_size: int


def cross_validate_subset_sizes(records: Sequence[HouseholdRecord],
                                spec: CleaningSpec = DEFAULT_SPEC,
                                n_folds: int = 10,
                                seed: int = 42,
                                method: str = "auto",
                                max_exhaustive: int = 15,
                                unseen: str = "reference") -> CrossValidationResult:
    """
    k-fold CV error per subset size.

    Levels are re-learned inside every fold, so K can differ between folds;
    each size is averaged over the folds where it was scored.
    """
    records = list(records)
    kf = KFold(n_splits=n_folds, shuffle=True, random_state=seed)
    fold_errors: List[List[Optional[float]]] = []

    for fold, (train_idx, val_idx) in enumerate(kf.split(np.arange(len(records))), 1):
        train = [records[i] for i in train_idx]
        valid = [records[i] for i in val_idx]

        builder = FeatureMatrixBuilder(spec).fit(train)
        train_matrix = builder.transform(train)
        candidates = SubsetEnumerator(method, max_exhaustive).enumerate(
            train_matrix.X, builder.response(train), builder.columns)

        valid_matrix = builder.transform(valid, unseen="reference")
        scores = ValidationScorer(builder, unseen).score_all(
            candidates, valid_matrix, builder.response(valid))
        fold_errors.append(scores)

        scored = [s for s in scores if s is not None]
        if scored:
            logger.info(f"  Fold {fold}: K={len(candidates)}, best MSE={min(scored):,.2f} "
                        f"at k={select_best_size(scores)}")
        else:
            logger.warning(f"  Fold {fold}: no size could be scored")

    max_k = max(len(errors) for errors in fold_errors)
    mean_errors: List[Optional[float]] = []
    for k in range(max_k):
        values = [errors[k] for errors in fold_errors
                  if k < len(errors) and errors[k] is not None]
        mean_errors.append(float(np.mean(values)) if values else None)

    best_size = select_best_size(mean_errors)
    logger.info(f"{n_folds}-fold CV selects k={best_size} "
                f"(mean MSE={mean_errors[best_size - 1]:,.2f})")
    return CrossValidationResult(mean_errors=mean_errors, fold_errors=fold_errors,
                                 best_size=best_size)
