from .client import WorkflowRegistryClient, compute_deadline, validate_duration

__all__ = ["WorkflowRegistryClient", "compute_deadline", "validate_duration"]
