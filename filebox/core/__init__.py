"""FileBox core intake components.

This package contains the file record model, validation rules, the
heuristic screener and its remote scanner strategies, the bounded
concurrency orchestrator, the archiver, and the intake session that ties
them together.
"""
