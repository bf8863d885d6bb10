"""HTTP surface: agent ingress, operator scans and dataset reads."""
