"""Anomaly model training and scoring utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import joblib
import numpy as np
import pandas as pd
from sklearn.ensemble import IsolationForest
from sklearn.pipeline import Pipeline

from .config import DEFAULT_MODEL_CONFIG, DEFAULT_PIPELINE_CONFIG, ModelConfig, PipelineConfig
from .features import add_model_features, build_preprocess_pipeline


class AnomalyModel:
    """Wrapper around IsolationForest with preprocessing."""

    def __init__(
        self,
        model_config: ModelConfig = DEFAULT_MODEL_CONFIG,
        pipeline_config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
    ) -> None:
        self.model_config = model_config
        self.pipeline_config = pipeline_config
        self.pipeline: Optional[Pipeline] = None
        self._raw_min = 0.0
        self._raw_max = 0.0

    def fit(self, df: pd.DataFrame) -> "AnomalyModel":
        df_proc = add_model_features(df, self.pipeline_config)

        clf = IsolationForest(
            n_estimators=self.model_config.n_estimators,
            contamination=self.model_config.contamination,
            max_features=self.model_config.max_features,
            random_state=self.model_config.random_state,
        )

        self.pipeline = Pipeline(steps=[("preprocess", build_preprocess_pipeline(self.pipeline_config)), ("model", clf)])
        self.pipeline.fit(df_proc)
        # Scores are scaled against the training range so a single row can be scored.
        raw = self.pipeline.decision_function(df_proc)
        self._raw_min, self._raw_max = float(raw.min()), float(raw.max())
        return self

    def predict_scores(self, df: pd.DataFrame) -> np.ndarray:
        """Anomaly scores in [0, 1]; higher means more anomalous."""

        if self.pipeline is None:
            raise ValueError("Model has not been fit.")
        df_proc = add_model_features(df, self.pipeline_config)
        # IsolationForest returns lower values for more abnormal rows; invert and scale
        raw = self.pipeline.decision_function(df_proc)
        scores = (self._raw_max - raw) / (self._raw_max - self._raw_min + 1e-9)
        return np.clip(scores, 0.0, 1.0)

    def save(self, path: str | Path) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self, path)

    @classmethod
    def load(cls, path: str | Path) -> "AnomalyModel":
        model = joblib.load(path)
        if not isinstance(model, cls):
            raise TypeError(f"{path} does not contain an {cls.__name__}")
        return model
