"""
alerts — Canonical alert pipeline.

Sub-modules:
    models       — Alert record, declared enums, ORM row
    normalizer   — untrusted map → Alert
    store        — persistence gateway (SQLAlchemy)
    broadcaster  — live viewer registry and fan-out
    pipeline     — normalize → store → broadcast, bounded work queue
    runtime      — component ownership and start/stop order
"""
