import logging
import time
from typing import Callable, Optional, Sequence

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
    wait_none,
)

from reseller_engine.db.models.reseller_config import ResellerConfig
from reseller_engine.schemas.outcomes import RemoteOperationResult
from reseller_engine.services.panel_service import PanelClientPool, PanelClientFactory, build_panel_client
from reseller_engine.utils.panel_clients import PanelConfigurationError

logger = logging.getLogger("reseller_engine.remote")

# Delay before each attempt, in seconds. Three attempts in total.
RETRY_DELAYS_SECONDS: Sequence[float] = (0, 1, 3)
# Remote mutations in a batch are spaced to at most three per second.
RATE_LIMIT_INTERVAL_SECONDS = 1 / 3

NO_PANEL_ERROR = "No panel configured"
FALSE_RESULT_ERROR = "Operation returned false"


class RemoteOperationExecutor:
    """Runs remote panel operations with a fixed retry schedule and batch pacing.

    ``execute`` never raises: every failure ends up in the returned
    RemoteOperationResult so callers can decide what to commit locally.
    """

    def __init__(
        self,
        client_factory: PanelClientFactory = build_panel_client,
        sleep: Callable[[float], None] = time.sleep,
        retry_delays: Sequence[float] = RETRY_DELAYS_SECONDS,
        rate_limit_interval: float = RATE_LIMIT_INTERVAL_SECONDS,
    ):
        self.client_factory = client_factory
        self.sleep = sleep
        self.retry_delays = tuple(retry_delays)
        self.rate_limit_interval = rate_limit_interval

    def new_client_pool(self) -> PanelClientPool:
        return PanelClientPool(self.client_factory)

    def apply_rate_limit(self, operation_index: int) -> None:
        if operation_index > 0 and self.rate_limit_interval > 0:
            self.sleep(self.rate_limit_interval)

    def _retrying(self, description: str) -> Retrying:
        # The first delay runs before any attempt, the rest between attempts
        waits = [wait_fixed(delay) for delay in self.retry_delays[1:]]

        def log_failed_attempt(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            error = str(outcome.exception()) if outcome.failed else FALSE_RESULT_ERROR
            logger.warning(
                "%s attempt %d/%d failed: %s",
                description, retry_state.attempt_number, len(self.retry_delays), error,
            )

        return Retrying(
            stop=stop_after_attempt(len(self.retry_delays)),
            wait=wait_chain(*waits) if waits else wait_none(),
            sleep=self.sleep,
            retry=(
                (retry_if_exception_type(Exception) & retry_if_not_exception_type(PanelConfigurationError))
                | retry_if_result(lambda ok: not ok)
            ),
            before_sleep=log_failed_attempt,
        )

    def execute(self, operation: Callable[[], bool], description: str = "remote operation") -> RemoteOperationResult:
        if not self.retry_delays:
            return RemoteOperationResult(success=False, attempts=0, last_error=None)
        if self.retry_delays[0]:
            self.sleep(self.retry_delays[0])

        retrying = self._retrying(description)
        try:
            retrying(operation)
        except RetryError as e:
            outcome = e.last_attempt
            last_error = str(outcome.exception()) if outcome.failed else FALSE_RESULT_ERROR
            logger.warning("%s gave up after %d attempts: %s", description, outcome.attempt_number, last_error)
            return RemoteOperationResult(success=False, attempts=outcome.attempt_number, last_error=last_error)
        except PanelConfigurationError as e:
            # Credentials or panel type will not fix themselves between attempts
            logger.error("%s cannot run: %s", description, e)
            return RemoteOperationResult(
                success=False, attempts=retrying.statistics["attempt_number"], last_error=str(e)
            )

        attempts = retrying.statistics["attempt_number"]
        if attempts > 1:
            logger.info("%s succeeded on attempt %d", description, attempts)
        return RemoteOperationResult(success=True, attempts=attempts, last_error=None)

    def set_config_enabled(
        self, config: ResellerConfig, enabled: bool, pool: Optional[PanelClientPool] = None
    ) -> RemoteOperationResult:
        panel = config.panel
        if panel is None:
            return RemoteOperationResult(success=False, attempts=0, last_error=NO_PANEL_ERROR)

        pool = pool or self.new_client_pool()
        action = "enable" if enabled else "disable"

        def operation() -> bool:
            client = pool.get(panel)
            return client.set_enabled(config.panel_user_id, enabled)

        return self.execute(operation, f"{action} config {config.id} ({config.panel_user_id}) on panel {panel.id}")

    def disable_config(self, config: ResellerConfig, pool: Optional[PanelClientPool] = None) -> RemoteOperationResult:
        return self.set_config_enabled(config, False, pool)

    def enable_config(self, config: ResellerConfig, pool: Optional[PanelClientPool] = None) -> RemoteOperationResult:
        return self.set_config_enabled(config, True, pool)
