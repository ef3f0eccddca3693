"""
channels — Per-channel delivery providers.

Each provider exposes:
    async send(device, message: RenderedMessage) → SendOutcome

    base       — ChannelProvider contract, ChannelProviders, build_providers
    simulated  — offline stand-in (random latency, fixed success rate)
    push       — Web Push (VAPID) + FCM HTTP v1, routed per device endpoint
    sms        — Twilio REST
    email      — SendGrid v3

Providers never retry. Failed sends come back as SendOutcome(success=False).
"""
