# Import all models here so Base knows about them before create_all is called.
from .panel import Panel  # noqa
from .reseller import Reseller  # noqa
from .reseller_panel_access import ResellerPanelAccess  # noqa
from .reseller_config import ResellerConfig, SuspensionReason  # noqa
from .usage_snapshot import ResellerUsageSnapshot  # noqa
from .panel_usage_snapshot import ResellerPanelUsageSnapshot  # noqa
from .config_event import ResellerConfigEvent  # noqa
from .audit_log import AuditLog  # noqa
from .transaction import Transaction  # noqa
from .charge_lock import WalletChargeLock  # noqa
