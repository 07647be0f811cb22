"""Entry store: durable records of ingested items and their processing state."""
