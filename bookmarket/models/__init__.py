from .user import User  # noqa: F401
from .order import Order  # noqa: F401
from .order_event import OrderEvent  # noqa: F401
from .notification import Notification  # noqa: F401
from .refund import Refund  # noqa: F401
from .seller_payout import SellerPayout  # noqa: F401
from .banking_subaccount import BankingSubaccount  # noqa: F401
from .job_run import JobRun  # noqa: F401
