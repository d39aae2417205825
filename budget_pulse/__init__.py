"""
Budget Pulse - budget progress tracking and daily over-budget alerts
"""

from .aggregator import BudgetAggregator
from .api_client import BudgetApiClient
from .cache_gateway import OfflineCacheGateway
from .channel import BackgroundSyncClient, CommandChannel
from .dashboard import BudgetDashboard
from .scheduler import BackgroundScheduler
from .worker import BackgroundContext

__all__ = [
    'BudgetAggregator',
    'BudgetApiClient',
    'OfflineCacheGateway',
    'BackgroundSyncClient',
    'CommandChannel',
    'BudgetDashboard',
    'BackgroundScheduler',
    'BackgroundContext',
]

__version__ = '0.1.0'
