"""
HERA Finance Engine - Fiscal Period Service

The fiscal calendar is an external collaborator. The posting engine only
asks whether a transaction date may be posted under a rule's fiscal_check
policy and which actions the period still allows.

Two implementations:
- HttpFiscalPeriodService: calls the fiscal-period API over httpx
- InMemoryFiscalPeriodService: local calendar for development and tests
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from finance_engine.config import Settings
from finance_engine.utils.error_handling import FinanceInfrastructureError

logger = logging.getLogger(__name__)


ALL_ACTIONS = ["POST", "MODIFY", "REVERSE"]


class FiscalPeriodValidation(BaseModel):
    """Answer from the fiscal-period service."""
    model_config = ConfigDict(populate_by_name=True)

    valid: bool
    period: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    allowed_actions: List[str] = Field(default_factory=list, alias="allowedActions")

    @field_validator('period', mode='before')
    @classmethod
    def period_name(cls, v: Any) -> Optional[str]:
        if isinstance(v, dict):
            return v.get("name") or v.get("period_name") or v.get("id")
        return v


class FiscalPeriodService(ABC):
    """Abstract fiscal-period validator."""

    @abstractmethod
    async def validate_fiscal_period(
        self,
        transaction_date: datetime,
        organization_id: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> FiscalPeriodValidation:
        """Validate a transaction date. `options` carries fiscal_check and action."""
        pass


# =============================================================================
# HTTP CLIENT
# =============================================================================

class HttpFiscalPeriodService(FiscalPeriodService):
    """
    Fiscal-period API client.

    Transport errors, timeouts and non-2xx responses raise
    FinanceInfrastructureError so the caller can retry; they are never
    reported as a closed period.
    """

    ENDPOINT = "/fiscal-periods/validate"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpFiscalPeriodService":
        return cls(
            base_url=settings.fiscal_service_url,
            api_key=settings.fiscal_service_api_key,
            timeout=settings.fiscal_service_timeout_seconds,
        )

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def validate_fiscal_period(
        self,
        transaction_date: datetime,
        organization_id: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> FiscalPeriodValidation:
        payload = {
            "transactionDate": transaction_date.isoformat(),
            "organizationId": organization_id,
            "options": options or {},
        }

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(self.ENDPOINT, headers=self._get_headers(), json=payload)
        except httpx.TimeoutException as e:
            logger.warning(f"Fiscal period service timed out for org {organization_id}")
            raise FinanceInfrastructureError(
                "fiscal_period_service",
                "Fiscal period service did not respond in time",
                original_error=e,
            )
        except httpx.RequestError as e:
            logger.warning(f"Fiscal period service unreachable: {e}")
            raise FinanceInfrastructureError(
                "fiscal_period_service",
                f"Fiscal period service unreachable: {str(e)}",
                original_error=e,
            )

        if response.status_code >= 300:
            raise FinanceInfrastructureError(
                "fiscal_period_service",
                f"Fiscal period service error: HTTP {response.status_code}",
            )

        try:
            return FiscalPeriodValidation.model_validate(response.json())
        except ValueError as e:
            raise FinanceInfrastructureError(
                "fiscal_period_service",
                "Fiscal period service returned an unreadable response",
                original_error=e,
            )


# =============================================================================
# IN-MEMORY CALENDAR
# =============================================================================

@dataclass
class FiscalPeriod:
    """One period of an organization's fiscal calendar."""
    name: str
    start: date
    end: date
    status: str = "open"  # open, soft_closed, closed, locked
    allowed_actions: List[str] = field(default_factory=lambda: list(ALL_ACTIONS))

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


class InMemoryFiscalPeriodService(FiscalPeriodService):
    """
    Fiscal calendar held in memory.

    Policies:
    - open_period: the date must fall in an open (or soft-closed) period
    - allow_future: dates after the last defined period are accepted with a warning
    - block_past: dates before the current period are rejected
    """

    def __init__(
        self,
        periods: Optional[Dict[str, List[FiscalPeriod]]] = None,
        default_open: bool = True,
        today: Optional[Callable[[], date]] = None,
    ):
        self._periods: Dict[str, List[FiscalPeriod]] = {}
        for organization_id, org_periods in (periods or {}).items():
            for period in org_periods:
                self.add_period(organization_id, period)
        self.default_open = default_open
        self._today = today or date.today

    def add_period(self, organization_id: str, period: FiscalPeriod) -> None:
        org_periods = self._periods.setdefault(organization_id, [])
        org_periods.append(period)
        org_periods.sort(key=lambda p: p.start)

    def set_status(self, organization_id: str, name: str, status: str) -> None:
        for period in self._periods.get(organization_id, []):
            if period.name == name:
                period.status = status
                return
        raise KeyError(f"Fiscal period {name} not defined for organization {organization_id}")

    async def validate_fiscal_period(
        self,
        transaction_date: datetime,
        organization_id: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> FiscalPeriodValidation:
        options = options or {}
        fiscal_check = options.get("fiscal_check", "open_period")
        day = transaction_date.date() if isinstance(transaction_date, datetime) else transaction_date
        periods = self._periods.get(organization_id, [])

        if not periods:
            if self.default_open:
                return FiscalPeriodValidation(
                    valid=True,
                    warnings=["No fiscal calendar defined; period treated as open"],
                    allowed_actions=list(ALL_ACTIONS),
                )
            return FiscalPeriodValidation(valid=False, errors=["No fiscal periods defined for organization"])

        if fiscal_check == "block_past":
            current = next((p for p in periods if p.contains(self._today())), None)
            if current is not None and day < current.start:
                return FiscalPeriodValidation(
                    valid=False,
                    period=current.name,
                    errors=[f"Transaction date {day} is before the current fiscal period {current.name}"],
                )

        period = next((p for p in periods if p.contains(day)), None)
        if period is None:
            if fiscal_check == "allow_future" and day > periods[-1].end:
                return FiscalPeriodValidation(
                    valid=True,
                    warnings=[f"Transaction date {day} is after the last defined fiscal period"],
                    allowed_actions=list(ALL_ACTIONS),
                )
            return FiscalPeriodValidation(valid=False, errors=[f"No fiscal period defined for {day}"])

        if period.status in ("closed", "locked"):
            return FiscalPeriodValidation(
                valid=False,
                period=period.name,
                errors=[f"Fiscal period {period.name} is {period.status}"],
            )

        if period.status == "soft_closed":
            return FiscalPeriodValidation(
                valid=True,
                period=period.name,
                warnings=[f"Fiscal period {period.name} is soft-closed; only reversals are allowed"],
                allowed_actions=["REVERSE"],
            )

        return FiscalPeriodValidation(
            valid=True,
            period=period.name,
            allowed_actions=list(period.allowed_actions),
        )
