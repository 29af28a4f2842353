"""Usage Analytics Engine - Customer Success Dashboard

Memoized, rate-limit aware product-usage queries against the Amplitude
Dashboard REST API.
"""

__version__ = "0.1.0"
