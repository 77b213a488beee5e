"""Scrape endpoint serving checkpoints over HTTP using FastAPI."""
import logging
import time
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST

from promcheckpoint.config import ScrapeConfig, load_config, setup_logging
from promcheckpoint.errors import CheckpointError
from promcheckpoint.exporter import MetricSource, PrometheusExporter

logger = logging.getLogger(__name__)


def create_app(exporter: PrometheusExporter, scrape_config: Optional[ScrapeConfig] = None) -> FastAPI:
    """
    Build the scrape application.

    Args:
        exporter: Cycle driver invoked once per scrape request
        scrape_config: Endpoint path and self-metrics options

    Returns:
        FastAPI application exposing the scrape path and /healthz
    """
    scrape_config = scrape_config or ScrapeConfig()
    app = FastAPI(title="Prometheus Checkpoint Exporter")

    @app.get("/healthz")
    async def healthz():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": time.time()}

    if not scrape_config.enabled:
        logger.info("Scrape endpoint disabled")
        return app

    @app.get(scrape_config.path)
    def scrape():
        """Run one collection cycle and return it in exposition format."""
        try:
            body = exporter.collect_cycle()
        except CheckpointError as e:
            raise HTTPException(status_code=500, detail=str(e))

        if scrape_config.expose_self_metrics:
            body += exporter.self_metrics_text()

        return Response(content=body, media_type=CONTENT_TYPE_LATEST)

    logger.info(f"Scrape endpoint registered at {scrape_config.path}")
    return app


def create_app_from_config(source: MetricSource, config_path: str) -> FastAPI:
    """Load configuration, set up logging and build the scrape application."""
    config = load_config(config_path)
    setup_logging(config.global_.log_level, config.global_.log_format)

    exporter = PrometheusExporter.from_config(source, config)
    return create_app(exporter, config.scrape)
