"""HTTP client for payout and payslip distribution."""

from __future__ import annotations

import logging

import httpx

from payroll_lifecycle.errors import UpstreamError

logger = logging.getLogger(__name__)


class HttpDistributionClient:
    """Asks the distribution service to pay a locked run and send payslips."""

    ENDPOINT = "/api/v1/distributions"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def distribute_and_generate_payslips(self, run_id: str) -> int:
        url = f"{self.base_url}{self.ENDPOINT}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json={"run_id": run_id})
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise UpstreamError(
                f"Distribution service timed out for run {run_id}", run_id=run_id
            ) from e
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                f"Distribution service returned {e.response.status_code} for run {run_id}",
                run_id=run_id,
            ) from e
        except httpx.RequestError as e:
            raise UpstreamError(
                f"Distribution service unreachable for run {run_id}: {e}", run_id=run_id
            ) from e

        count = int(data.get("payslips_distributed", 0))
        logger.info("Distributed %d payslip(s) for run %s", count, run_id)
        return count
