"""trivy-ui: multi-cluster access to Trivy operator security reports."""

__version__ = "0.4.0"
