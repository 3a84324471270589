"""
Deployment DTOs

Architectural Intent:
- Data Transfer Objects for deployment use case boundaries
- Input validation at the application boundary
- Decouples external representation from domain model
"""

from dataclasses import dataclass
from typing import Optional

from convoy.domain.entities.deployment_plan import DeploymentPlan
from convoy.domain.entities.deployment_report import DeploymentReport, OverallStatus

ENVIRONMENTS = ("dev", "qa", "prod")


@dataclass(frozen=True)
class DeployServiceRequest:
    service_name: str
    environment: str
    registry: Optional[str] = None
    max_parallel: Optional[int] = None
    canary_fraction: Optional[float] = None
    failure_threshold: Optional[float] = None
    rollback_on_abort: Optional[bool] = None
    dry_run: bool = False

    def __post_init__(self) -> None:
        if not self.service_name:
            raise ValueError("service_name cannot be empty")
        if self.environment not in ENVIRONMENTS:
            raise ValueError(
                f"environment must be one of {', '.join(ENVIRONMENTS)}, got {self.environment!r}"
            )
        if self.max_parallel is not None and self.max_parallel < 1:
            raise ValueError("max_parallel must be >= 1")


@dataclass(frozen=True)
class DeployServiceResponse:
    plan: DeploymentPlan
    report: Optional[DeploymentReport] = None

    @property
    def dry_run(self) -> bool:
        return self.report is None

    @property
    def success(self) -> bool:
        if self.report is None:
            return True
        return self.report.overall_status is OverallStatus.ALL_SUCCEEDED

    @property
    def message(self) -> str:
        if self.report is None:
            return f"Dry run: {len(self.plan.hosts)} host(s) planned, nothing executed"
        status = self.report.overall_status.value
        if self.report.aborted_reason:
            return f"{status} ({self.report.aborted_reason})"
        return status
