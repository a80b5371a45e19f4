#!/usr/bin/env python3
"""Example: Seed a knowledge base from a JSON file of facts."""

import os
import sys

from kb_retriever import EmbeddingProvider, KnowledgeStore, build_kb, get_settings, load_chunk_data, load_kb
from kb_retriever.logging_utils import configure_logging


def main():
    settings = get_settings()
    configure_logging(settings.log_level)

    data_file = os.getenv("DATA_FILE", "./examples_data/knowledge.json")
    clear_existing = "--clear" in sys.argv[1:]

    if not os.path.isfile(data_file):
        print(f"Error: Knowledge data file not found: {data_file}")
        print("Set DATA_FILE environment variable or create ./examples_data/knowledge.json")
        sys.exit(1)

    print("=" * 60)
    print("Knowledge Base Seeder")
    print("=" * 60)
    print(f"Data file:        {data_file}")
    print(f"Output directory: {settings.kb_path}")
    print(f"Embedding model:  {settings.embed_model}")
    print(f"Ollama base URL:  {settings.ollama_base_url}")
    print(f"Dimension:        {settings.embedding_dimension}")
    print(f"Clear existing:   {clear_existing}")
    print("=" * 60)
    print()

    try:
        chunks = load_chunk_data(data_file)
        with EmbeddingProvider.from_settings(settings) as embedder:
            current = os.path.join(settings.kb_path, "current")
            if os.path.exists(current) and not clear_existing:
                store = load_kb(current, embedder)
                store.rate_limiter.min_interval = settings.ingest_interval
            else:
                store = KnowledgeStore.from_settings(settings, embedder)

            with store:
                manifest = build_kb(
                    chunks,
                    out_dir=settings.kb_path,
                    embedder=embedder,
                    clear_existing=clear_existing,
                    store=store,
                )

        print()
        print("=" * 60)
        print("Build completed successfully!")
        print("=" * 60)
        print(f"KB version:  {manifest.kb_version}")
        print(f"Chunk count: {manifest.chunk_count}")
        for category, count in manifest.category_counts.items():
            print(f"  {category:<12} {count}")
        print()
        print(f"Knowledge base available at: {settings.kb_path}/current")
        print("=" * 60)

    except Exception as e:
        print(f"\nError during KB build: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
