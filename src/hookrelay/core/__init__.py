"""
Core business logic components.

This package contains the webhook relay pipeline components:
- Expiring route cache and tenant resolution chain
- Payload extraction and group/broadcast classification
- Legacy identifier normalization
- Outbound forwarder and Slack alerting
- Metrics collection
"""
