from typing import Dict, List

import numpy as np
import pandas as pd

from packages.contracts.blueprints import SurrogateConfig


class PerturbationSampler:
    """
    Builds the local neighbourhood around one instance.

    1. Row 0 is the original instance, untouched.
    2. Every other row adds N(0, |x| * noise_fraction) noise per feature.
    3. Features that start at or above the lower bound are clipped to it
       (count-like attributes); features already below it are left free.
    """

    def __init__(self, config: SurrogateConfig):
        self.config = config

    def sample(self, features: Dict[str, float], seed: int) -> pd.DataFrame:
        names = sorted(features)
        original = np.array([features[n] for n in names], dtype=float)
        rng = np.random.default_rng(seed)

        n_rows = self.config.num_samples
        scale = np.abs(original) * self.config.noise_fraction
        noise = rng.normal(0.0, 1.0, size=(n_rows, len(names))) * scale
        noise[0, :] = 0.0

        samples = original + noise
        if self.config.clip_negative:
            bound = self.config.lower_bound
            clipped = original >= bound
            samples[:, clipped] = np.maximum(samples[:, clipped], bound)

        return pd.DataFrame(samples, columns=names)

    def distances(self, samples: pd.DataFrame, features: Dict[str, float]) -> np.ndarray:
        """
        Euclidean distance to the original row, with each feature measured in
        units of its own noise scale and averaged over features.
        """
        original = np.array([features[c] for c in samples.columns], dtype=float)
        scale = np.abs(original) * self.config.noise_fraction
        scale = np.where(scale > 0, scale, 1.0)

        scaled = (samples.to_numpy() - original) / scale
        n_features = max(samples.shape[1], 1)
        return np.sqrt((scaled**2).sum(axis=1) / n_features)

    def kernel_weights(self, distances: np.ndarray) -> np.ndarray:
        width = self.config.kernel_width
        return np.sqrt(np.exp(-(distances**2) / width**2))

    @staticmethod
    def rows(samples: pd.DataFrame) -> List[Dict[str, float]]:
        return samples.to_dict(orient="records")
