"""Files app: transactional file ingestion and lifecycle."""
