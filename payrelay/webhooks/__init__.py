"""Payment processor webhooks.

Receives signed checkout callbacks, deduplicates them by processor event id
and publishes one payment.paid event per completed checkout.
"""
