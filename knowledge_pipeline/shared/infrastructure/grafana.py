"""
Grafana OTLP Metrics Exporter
==============================

Pushes pipeline gauges to Grafana Cloud via OTLP HTTP.

Metrics exported:
- llm_tokens_total / llm_latency_ms: completion usage per call
- embedding_requests / chunks_without_embedding: embedder outcome per run
- ingestion_chunks_persisted / ingestion_latency_ms: per processing run
"""

import base64
import time
from typing import Optional, Dict

import httpx

from knowledge_pipeline.config import settings
from knowledge_pipeline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class GrafanaOTLPExporter:
    """
    Export gauges to Grafana Cloud via the OTLP HTTP endpoint.

    Export failures are logged and reported as ``False``; metrics never
    interrupt the pipeline.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        instance_id: Optional[str] = None
    ):
        self._host = host or settings.grafana_host
        self._api_key = api_key or settings.grafana_api_key
        self._instance_id = instance_id or settings.grafana_instance_id
        self._enabled = bool(self._host and self._api_key and self._instance_id)
        self._url = ""
        self._auth_encoded = ""

        if self._enabled:
            auth_pair = f"{self._instance_id}:{self._api_key}"
            self._auth_encoded = base64.b64encode(auth_pair.encode()).decode()
            # Don't double-append the path if host already includes it
            if "/otlp/v1/metrics" in self._host:
                self._url = self._host
            else:
                self._url = f"{self._host.rstrip('/')}/otlp/v1/metrics"

    def is_enabled(self) -> bool:
        """Check if exporter is properly configured."""
        return self._enabled

    def build_payload(
        self,
        gauges: Dict[str, int],
        attributes: Optional[Dict[str, str]] = None
    ) -> dict:
        """Build an OTLP metrics payload with one data point per gauge."""
        timestamp_ns = int(time.time() * 1_000_000_000)
        metric_attributes = [
            {"key": "service", "value": {"stringValue": settings.app_name}},
        ]
        for key, value in (attributes or {}).items():
            metric_attributes.append({"key": key, "value": {"stringValue": str(value)}})

        metrics = [
            {
                "name": name,
                "unit": "ms" if name.endswith("_ms") else "1",
                "gauge": {
                    "dataPoints": [
                        {
                            "asInt": int(value),
                            "timeUnixNano": timestamp_ns,
                            "attributes": metric_attributes
                        }
                    ]
                }
            }
            for name, value in gauges.items()
        ]

        return {
            "resourceMetrics": [
                {
                    "resource": {
                        "attributes": [
                            {"key": "service.name", "value": {"stringValue": settings.app_name}},
                            {"key": "service.version", "value": {"stringValue": settings.app_version}},
                            {"key": "deployment.environment", "value": {"stringValue": settings.environment}},
                        ]
                    },
                    "scopeMetrics": [{"metrics": metrics}]
                }
            ]
        }

    async def export_gauges(
        self,
        gauges: Dict[str, int],
        attributes: Optional[Dict[str, str]] = None
    ) -> bool:
        """
        Push a set of gauges.

        Returns:
            True if Grafana accepted the payload, False otherwise
        """
        if not self._enabled:
            return False

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._auth_encoded}",
            "X-Grafana-Org-Id": str(self._instance_id)
        }

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(
                    self._url,
                    headers=headers,
                    json=self.build_payload(gauges, attributes)
                )
        except httpx.HTTPError as e:
            logger.error("Error exporting metrics to Grafana", extra={"error": str(e)})
            return False

        if response.status_code in (200, 202):
            logger.debug("Metrics exported to Grafana", extra={"metrics": list(gauges)})
            return True

        logger.warning(
            "Failed to export metrics to Grafana",
            extra={"status_code": response.status_code, "response": response.text[:500]}
        )
        return False

    async def export_llm_metrics(
        self,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int,
        operation: str = "chat_completion"
    ) -> bool:
        """Export token usage and latency of one completion call."""
        return await self.export_gauges(
            {
                "llm_tokens_total": prompt_tokens + completion_tokens,
                "llm_prompt_tokens": prompt_tokens,
                "llm_completion_tokens": completion_tokens,
                "llm_latency_ms": latency_ms,
            },
            {"model": model, "operation": operation}
        )

    async def export_ingestion_metrics(
        self,
        organization_id: str,
        status: str,
        chunks_persisted: int,
        embedded_chunks: int,
        latency_ms: int,
        extraction_method: str
    ) -> bool:
        """Export the outcome of one document processing run."""
        return await self.export_gauges(
            {
                "ingestion_chunks_persisted": chunks_persisted,
                "embedding_requests": embedded_chunks,
                "chunks_without_embedding": max(chunks_persisted - embedded_chunks, 0),
                "ingestion_latency_ms": latency_ms,
            },
            {
                "organization_id": organization_id,
                "status": status,
                "extraction_method": extraction_method,
            }
        )


# Global exporter instance
_grafana_exporter: Optional[GrafanaOTLPExporter] = None


def get_grafana_exporter() -> GrafanaOTLPExporter:
    """Get or create global Grafana exporter instance."""
    global _grafana_exporter
    if _grafana_exporter is None:
        _grafana_exporter = GrafanaOTLPExporter()
    return _grafana_exporter


def init_grafana_exporter(
    host: str,
    api_key: str,
    instance_id: str
) -> GrafanaOTLPExporter:
    """Initialize Grafana exporter with credentials."""
    global _grafana_exporter
    _grafana_exporter = GrafanaOTLPExporter(
        host=host,
        api_key=api_key,
        instance_id=instance_id
    )
    logger.info("Grafana OTLP exporter initialized", extra={"url": _grafana_exporter._url})
    return _grafana_exporter
