import logging
from typing import Sequence

import uvicorn
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from reader_proxy.routes import router
from reader_proxy.sites import build_site_registry
from reader_proxy.vars import HOST, OTLP_ENDPOINT, OTLP_HEADERS, PORT, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")

app = FastAPI(title=SERVICE_NAME)
app.state.site_registry = build_site_registry()

instrumentator = Instrumentator()
instrumentator.instrument(app).expose(app)


class FilteringSpanExporter(SpanExporter):
    """
    Drops the per-chunk ASGI body spans that every streamed image or download
    would otherwise add to its trace.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        kept = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if kept:
            return self.exporter.export(kept)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=OTLP_HEADERS or None,
    )
    trace.get_tracer_provider().add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )
    logger.info(f"Exporting traces to {OTLP_ENDPOINT}")

FastAPIInstrumentor.instrument_app(app)

app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})

app.include_router(router)


def main():
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    main()
