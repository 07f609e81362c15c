from .tenancy import Business, BusinessMember, PendingMember
from .customers import Customer, CustomerTransaction
from .approvals import ApprovalRole, ApprovalUser
from .security import SecurityEvent

__all__ = [
    'Business', 'BusinessMember', 'PendingMember',
    'Customer', 'CustomerTransaction',
    'ApprovalRole', 'ApprovalUser',
    'SecurityEvent',
]
