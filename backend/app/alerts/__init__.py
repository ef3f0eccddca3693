"""
alerts — Rockfall alert notification dispatch engine.

Sub-modules:
    models          — Data structures shared across the system
    risk_evaluator  — Risk score → severity tier, alert content
    risk_monitor    — Periodic assessment loop with duplicate suppression
    targeting       — Explicit / zone / adjacency / site-wide device resolution
    preferences     — Per-device admission gate and channel toggles
    templates       — Per-severity, per-channel message rendering
    channels/       — Push, SMS and email providers (live or simulated)
    tracker         — Delivery record lifecycle
    store/          — Data access (in-memory or SQLAlchemy)
    alert_service   — Dispatch orchestration
"""
