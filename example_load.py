#!/usr/bin/env python3
"""Example: Load and query a knowledge base."""

import os
import sys

from kb_retriever import EmbeddingProvider, KnowledgeBaseError, Retriever, get_settings, load_kb
from kb_retriever.logging_utils import configure_logging


def main():
    settings = get_settings()
    configure_logging(os.getenv("LOG_LEVEL", "WARNING"))
    kb_path = os.path.join(settings.kb_path, "current")

    if not os.path.exists(kb_path):
        print(f"Error: Knowledge base not found: {kb_path}")
        print("Run example_build.py first or set KB_KB_PATH environment variable")
        sys.exit(1)

    print("=" * 60)
    print("Knowledge Base Query Example")
    print("=" * 60)
    print(f"KB path:         {kb_path}")
    print(f"Embedding model: {settings.embed_model}")
    print(f"Ollama base URL: {settings.ollama_base_url}")
    print()

    embedder = EmbeddingProvider.from_settings(settings)
    store = load_kb(
        kb_path,
        embedder,
        overfetch_multiplier=settings.overfetch_multiplier,
        fallback_score=settings.fallback_score,
        search_timeout=settings.search_timeout,
    )
    retriever = Retriever.from_settings(settings, store)

    print(f"✓ Loaded {store.count()} chunks")
    for category, count in store.category_counts().items():
        print(f"  - {category:<12} {count}")
    print()

    print("=" * 60)
    print("Enter queries (or 'quit' to exit)")
    print("=" * 60)
    print()

    with embedder, store:
        while True:
            query = input("Query: ").strip()
            if not query or query.lower() in ("quit", "exit", "q"):
                break

            print()
            try:
                intent = retriever.detect_intent(query)
                label = intent.category.value if intent.category else "-"
                print(f"Intent: {label} (confidence {intent.confidence:.2f}, priority {intent.priority})")

                results = retriever.hybrid_search(query, k=5)
                if not results:
                    print("No relevant knowledge found.")
                    print()
                    continue

                print(f"Top {len(results)} results:")
                print()
                for rank, chunk in enumerate(results, start=1):
                    print(f"[{rank}] Score: {chunk.score:.4f}")
                    print(f"    Category: {chunk.metadata.category.value} (priority {chunk.metadata.priority})")
                    if chunk.metadata.tags:
                        print(f"    Tags:     {', '.join(chunk.metadata.tags)}")
                    text = chunk.content
                    if len(text) > 150:
                        text = text[:150].rstrip() + "..."
                    print(f"    Text:     {text}")
                    print()

            except KnowledgeBaseError as e:
                print(f"Error: {e}", file=sys.stderr)
                print()

    print("Goodbye!")


if __name__ == "__main__":
    main()
