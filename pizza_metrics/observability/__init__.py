"""Request, business and host metrics for the pizza service.

Request events are folded into a process-local aggregator by an ASGI
middleware; a background exporter snapshots the aggregator on a fixed period
and pushes an OTLP-style JSON document to the configured backend.
"""
