"""
Services layer for Cardflow enrichment logic.

MODULES:
- ai/: Multi-provider AI gateway, prompts and response schemas
- enrichment/: Provider-specific and JSON-LD facts for link categories

STANDALONE SERVICES:
- card_store: Storage contract used by the pipeline
- card_service: Card creation and pipeline kick-off
- colors: Color parsing and palette extraction
- quotes: Quote markup detection
- url_utils: URL normalization and SSRF guards
- html_fetcher: Bounded, redirect-validating page fetcher
- link_preview: Link preview scraping and persistence
- scheduler: Delayed job scheduling over arq
- storage: Blob storage for files and thumbnails
- thumbnails: Pillow-based thumbnail generation
- transcription: Speech-to-text for audio cards
- retry_utils: Step retry policies and in-process HTTP retries

ARCHITECTURE:
1. Creation: card_service.create_card → store.insert → start_pipeline
2. Pipeline: classify → categorize (links) → metadata → renderables (visual)
3. Side jobs: link_preview extraction, AI backfill
"""
