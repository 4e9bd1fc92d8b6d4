"""
Models for image verification results.
"""
from typing import List
from pydantic import BaseModel


class CheckResult(BaseModel):
    """
    Outcome of one verification check.
    """
    name: str
    passed: bool
    detail: str = ""


class VerificationReport(BaseModel):
    """
    All checks run against a provisioned image.
    """
    plan_name: str
    fingerprint: str
    checks: List[CheckResult] = []

    @property
    def passed(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def failures(self) -> List[CheckResult]:
        return [c for c in self.checks if not c.passed]
