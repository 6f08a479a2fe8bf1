"""
Services package for the Blip Soroban Metrics API
Contains the warehouse, saved contract, identity, email and alert services
"""

__all__ = [
    'database',
    'warehouse',
    'warehouse_queries',
    'metrics_service',
    'history_service',
    'saved_contracts_service',
    'identity_service',
    'email_service',
    'alert_email_scheduler',
]
