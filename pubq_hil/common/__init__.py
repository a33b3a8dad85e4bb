"""Shared building blocks: records, monitors, faults and the cloud proxy."""
