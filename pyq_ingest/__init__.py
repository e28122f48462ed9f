"""
PYQ Ingest
==========
Batch ingestion of previous-year examination question papers (PYQs).

Architecture:
    - Link Discoverer: Finds question-paper links on official listing pages
    - Document Fetcher: Downloads documents with bounded timeout and retry
    - Extraction Chain: Native text layer first, then ordered OCR providers
    - Question Segmenter: Line-oriented state machine producing questions
    - Metadata Classifier: Year, paper, theme and source-trust inference
    - Store: SQLite persistence with merge-on-conflict upserts

Version: 1.0.0
"""

__version__ = "1.0.0"
