"""I/O utilities for the program catalog and sync run reports."""

from src.io.artifacts import load_latest_report, write_json_atomic, write_parquet_atomic

__all__ = ["load_latest_report", "write_json_atomic", "write_parquet_atomic"]
