"""Data models for raw instrumentation events and reconstructed test runs."""
