from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class RemoteOperationResult(BaseModel):
    success: bool
    attempts: int = 0
    last_error: Optional[str] = None


class ConfigOperationOutcome(BaseModel):
    config_id: int
    panel_id: Optional[int] = None
    success: bool
    attempts: int = 0
    last_error: Optional[str] = None


class DisableBatchResult(BaseModel):
    reseller_id: int
    reason: str
    disabled: int = 0
    remote_failed: int = 0
    failed: int = 0
    skipped: int = 0
    outcomes: List[ConfigOperationOutcome] = Field(default_factory=list)


class PanelUsageResult(BaseModel):
    panel_id: int
    total_usage_bytes: int = 0
    config_count: int = 0
    read_failures: int = 0
    error: Optional[str] = None


class UsageAggregationResult(BaseModel):
    reseller_id: int
    mode: str  # multi_panel or legacy
    total_bytes: int = 0
    effective_used_bytes: int = 0
    panels: List[PanelUsageResult] = Field(default_factory=list)
    read_failures: int = 0


class EnforcementResult(BaseModel):
    reseller_id: int
    status: str  # ok, suspended, already_suspended, skipped
    reason: Optional[str] = None
    effective_used_bytes: int = 0
    effective_limit_bytes: int = 0
    disabled_configs: int = 0
    overrun_disabled_configs: int = 0


class WalletChargeResult(BaseModel):
    reseller_id: int
    status: str  # charged, skipped, dry_run, lock_failed, failed
    reason: Optional[str] = None
    delta_bytes: int = 0
    cost: Decimal = Decimal("0")
    price_per_gb: Optional[Decimal] = None
    current_balance: Optional[Decimal] = None
    new_balance: Optional[Decimal] = None
    snapshot_id: Optional[int] = None
    suspended: bool = False
    disabled_configs: int = 0


class ReactivationResult(BaseModel):
    reseller_id: int
    reason: str
    status: str  # reactivated, partial, nothing_to_do, not_eligible, disabled
    reseller_reactivated: bool = False
    found: int = 0
    enabled: int = 0
    failed: int = 0
    outcomes: List[ConfigOperationOutcome] = Field(default_factory=list)


class WalletChargeCycleSummary(BaseModel):
    cycle_key: str
    charged: int = 0
    previewed: int = 0
    skipped: int = 0
    lock_failed: int = 0
    failed: int = 0
    suspended: int = 0
    total_cost: Decimal = Decimal("0")
    total_would_be_cost: Decimal = Decimal("0")
    results: List[WalletChargeResult] = Field(default_factory=list)


class UsageSyncSummary(BaseModel):
    resellers: int = 0
    suspended: int = 0
    failed: int = 0
    aggregation: List[UsageAggregationResult] = Field(default_factory=list)
    enforcement: List[EnforcementResult] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class ReenableSummary(BaseModel):
    reason: str
    resellers: int = 0
    enabled: int = 0
    failed: int = 0
    results: List[ReactivationResult] = Field(default_factory=list)


class WalletDiagnosis(BaseModel):
    reseller_id: int
    status: str
    wallet_balance: Decimal
    price_per_gb: Decimal
    suspension_threshold: Decimal
    current_total_bytes: int
    baseline_total_bytes: Optional[int] = None
    pending_delta_bytes: int = 0
    pending_cost: Decimal = Decimal("0")
    last_charge_at: Optional[Any] = None
    lock_held: bool = False
    flagged_configs: Dict[str, int] = Field(default_factory=dict)
