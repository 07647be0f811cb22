"""External capability providers: content extraction, LLM summarization, research, embeddings."""
