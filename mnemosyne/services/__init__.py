"""Application services: ingestion and migration."""
