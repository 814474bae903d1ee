"""
Contracts the orchestration core expects from external collaborators.

The core never sees provider wire formats: adapters translate between these
shapes and the provider APIs.
"""

from dataclasses import dataclass
from typing import Any, Protocol


class PollStatus:
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PollResult:
    status: str
    result: dict | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (PollStatus.SUCCEEDED, PollStatus.FAILED)


class GenerationProvider(Protocol):
    """Slow external generator driven in two phases."""

    async def submit(self, payload: dict) -> str:
        """Start a generation request and return its correlation id."""
        ...

    async def poll(self, correlation_id: str) -> PollResult:
        ...


class SyncProcessor(Protocol):
    """Generator fast enough to finish inside one worker step."""

    async def process(self, payload: dict) -> dict:
        ...


class CatalogPublisher(Protocol):
    async def push_result(self, kind: str, payload: dict, result: dict, tenant_id: str | None = None) -> str:
        """Apply a result to the external catalog/CMS; returns its reference."""
        ...

    async def get_product(self, product_id: str, tenant_id: str | None = None) -> dict[str, Any]:
        ...

    async def list_collection_products(self, collection_id: str, tenant_id: str | None = None) -> list[str]:
        ...
