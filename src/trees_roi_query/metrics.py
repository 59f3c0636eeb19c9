"""
Standard area-based metrics computed on an extracted ROI.

Height metrics use Z, intensity metrics use the intensity dimension and return
metrics use return_number and classification (2 = ground). Metrics whose
dimension is missing from the PointSet are omitted. Quantiles use linear
interpolation and standard deviations are sample standard deviations.
"""

import math
from typing import Dict, Optional

import numpy as np

from .reader import PointSet


QUANTILES = (0.05, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 0.95, 0.99)
LOWER_THRESHOLDS = (1, 2, 3, 5)
GROUND_CLASS = 2


def _sd(values: np.ndarray) -> float:
    return float(np.std(values, ddof=1)) if len(values) > 1 else math.nan


def _skewness(values: np.ndarray) -> float:
    if len(values) == 0:
        return math.nan
    d = values - values.mean()
    m2 = np.mean(d ** 2)
    if m2 == 0:
        return math.nan
    return float(np.mean(d ** 3) / m2 ** 1.5)


def _kurtosis(values: np.ndarray) -> float:
    if len(values) == 0:
        return math.nan
    d = values - values.mean()
    s2 = np.sum(d ** 2)
    if s2 == 0:
        return math.nan
    return float(len(values) * np.sum(d ** 4) / s2 ** 2)


def _distribution(prefix: str, values: np.ndarray) -> Dict[str, float]:
    values = np.asarray(values, dtype=np.float64)
    if len(values) == 0:
        out = {f"{prefix}MAX": math.nan, f"{prefix}MEAN": math.nan, f"{prefix}SD": math.nan, f"{prefix}CV": math.nan}
        out.update({f"{prefix}Q{int(round(q * 100)):02d}": math.nan for q in QUANTILES})
        out[f"{prefix}SKEW"] = math.nan
        out[f"{prefix}KURT"] = math.nan
        return out

    mean = float(values.mean())
    sd = _sd(values)
    out = {
        f"{prefix}MAX": float(values.max()),
        f"{prefix}MEAN": mean,
        f"{prefix}SD": sd,
        f"{prefix}CV": sd / mean if mean != 0 else math.nan,
    }
    for q, v in zip(QUANTILES, np.quantile(values, QUANTILES)):
        out[f"{prefix}Q{int(round(q * 100)):02d}"] = float(v)
    out[f"{prefix}SKEW"] = _skewness(values)
    out[f"{prefix}KURT"] = _kurtosis(values)
    return out


def entropy(z, by: float = 1.0, zmax: Optional[float] = None) -> float:
    """
    Normalised Shannon diversity of the vertical distribution of points.

    Heights are binned in `by` slices from 0 to zmax (default max(z)). Returns
    NaN for negative heights or when fewer than two slices exist.
    """
    z = np.asarray(z, dtype=np.float64)
    if len(z) == 0 or z.min() < 0:
        return math.nan
    if zmax is None:
        zmax = float(z.max())
    n_bins = int(math.ceil(zmax / by))
    if n_bins < 2:
        return math.nan

    z = z[z <= n_bins * by]
    if len(z) == 0:
        return math.nan
    counts = np.bincount(np.minimum((z // by).astype(np.int64), n_bins - 1), minlength=n_bins)
    p = counts[counts > 0] / counts.sum()
    return float(-np.sum(p * np.log(p)) / math.log(n_bins))


def cloud_metrics(points: PointSet, vci_zmax: float = 40.0) -> Dict[str, float]:
    """Compute the standard metric set for one ROI."""
    z = np.asarray(points.z, dtype=np.float64)
    n = len(z)
    metrics = {"NPOINTS": n}
    metrics.update(_distribution("H", z))

    for threshold in LOWER_THRESHOLDS:
        metrics[f"PERC_LOWER_{threshold}m"] = float(np.sum(z < threshold) * 100.0 / n) if n else math.nan

    metrics["ENTROPY"] = entropy(z)
    metrics["VCI"] = entropy(z[z <= vci_zmax], zmax=vci_zmax)

    ground = None
    if "classification" in points:
        ground = np.asarray(points["classification"]) == GROUND_CLASS
        metrics["NGROUND"] = int(ground.sum())
        metrics["NGROUNDPERC"] = float(ground.sum() * 100.0 / n) if n else math.nan

    returns = None
    if "return_number" in points:
        returns = np.asarray(points["return_number"])
        for k in range(1, 6):
            nk = int(np.sum(returns == k))
            metrics[f"N{k}"] = nk
            metrics[f"N{k}PERC"] = float(nk * 100.0 / n) if n else math.nan
        if ground is not None:
            n1ground = int(np.sum(ground & (returns == 1)))
            metrics["N1GROUND"] = n1ground
            metrics["N1GROUNDPERC"] = float(n1ground * 100.0 / n) if n else math.nan

    if "intensity" in points:
        intensity = np.asarray(points["intensity"], dtype=np.float64)
        metrics.update(_distribution("I", intensity))
        itot = float(intensity.sum())
        metrics["ITOT"] = itot
        if ground is not None:
            metrics["IGROUND"] = float(intensity[ground].sum())
        if returns is not None:
            for k in range(1, 6):
                metrics[f"I{k}PERC"] = float(intensity[returns == k].sum() / itot) if itot else math.nan

    return metrics


def roi_metrics(collection, **kwargs) -> Dict[str, Dict[str, float]]:
    """Metrics for every result of an OutputCollection, in collection order."""
    return {result.name: cloud_metrics(result.points, **kwargs) for result in collection}
