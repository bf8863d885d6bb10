"""Change detection, job queueing and file processing for ingestion sources."""
