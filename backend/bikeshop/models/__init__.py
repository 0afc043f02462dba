from .auth import User, SessionToken
from .bikes import Bike, Settlement, BIKE_STATUSES, BIKE_TYPES, SALE_TYPES
from .loaners import LoanerBike, LOANER_STATUSES, LOAN_TYPES, LOAN_TYPE_STATUS
from .events import BikeEvent, CollectionVersion, SecurityEvent

__all__ = [
    'User', 'SessionToken',
    'Bike', 'Settlement', 'BIKE_STATUSES', 'BIKE_TYPES', 'SALE_TYPES',
    'LoanerBike', 'LOANER_STATUSES', 'LOAN_TYPES', 'LOAN_TYPE_STATUS',
    'BikeEvent', 'CollectionVersion', 'SecurityEvent',
]
