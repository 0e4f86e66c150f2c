"""Business services: chunking, crawling, embedding, indexing, retrieval, ingestion."""
