"""Data models for decoded bus values."""

from .metric import DecodedMetric, Role, ValueKind, device_prefix, metric_key
