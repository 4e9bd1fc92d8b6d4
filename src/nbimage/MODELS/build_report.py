"""
Models recording what a provisioning run did and what the image contains.
"""
from typing import Dict, List, Optional
from pydantic import BaseModel


class StepRecord(BaseModel):
    """
    Outcome of a single pipeline step.
    """
    index: int
    kind: str
    commands: List[List[str]] = []
    status: str = "pending"
    duration: float = 0.0
    error: Optional[str] = None


class ImageManifest(BaseModel):
    """
    Package and filesystem state recorded by a build, in install order.
    """
    base_image: str
    environment: Dict[str, str] = {}
    apt_packages: Dict[str, Optional[str]] = {}
    pip_packages: List[str] = []
    dotnet_tools: Dict[str, Optional[str]] = {}
    ownership: Dict[str, str] = {}
    sources_list_sha256: Optional[str] = None


class BuildReport(BaseModel):
    """
    Result of running a plan. `succeeded` is False when any step failed;
    no step after the failing one is recorded as run.
    """
    plan_name: str
    dry_run: bool = False
    steps: List[StepRecord] = []
    manifest: Optional[ImageManifest] = None

    @property
    def succeeded(self) -> bool:
        return all(s.status in ("ok", "skipped") for s in self.steps)

    @property
    def failed_step(self) -> Optional[StepRecord]:
        return next((s for s in self.steps if s.status == "failed"), None)
