"""Exchange - signed, encrypted bundle ingest and export.

Usage:
    from wg_bridge.exchange import ExchangeIngestPipeline, ExchangeExportPipeline

    ingest = ExchangeIngestPipeline(settings, keyring, audit)
    await ingest.start()
    ...
    path = ExchangeExportPipeline(settings, keyring, audit).export_bundle("wg0", recipient)
"""

from .bundle import BundleContents, pack, unpack, sanitize_meta_name
from .export import ExchangeExportPipeline
from .ingest import ExchangeIngestPipeline, IngestStage, InboxEventHandler, signature_path

__all__ = [
    "BundleContents",
    "pack",
    "unpack",
    "sanitize_meta_name",
    "ExchangeExportPipeline",
    "ExchangeIngestPipeline",
    "IngestStage",
    "InboxEventHandler",
    "signature_path",
]
