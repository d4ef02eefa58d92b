"""
Campus Lost & Found: matching engine and claim adjudication.

Scores lost/found item pairs into ranked, explainable match suggestions and
drives ownership claims against found items through a transactional
review workflow (submit, verify, schedule, pickup, cancel).
"""

__version__ = "0.1.0"
