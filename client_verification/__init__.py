"""Verification results consumer for client identity documents.

Modules include configuration, RabbitMQ helpers, result decoding, date
parsing and field matching, the message handler, the results poller and its
supervisor, audit publishing, the client store, metrics and tracing.
"""
