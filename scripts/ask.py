#!/usr/bin/env python
"""Run one question through the pipeline and show what it retrieved.

Usage:
    python scripts/ask.py "What is the cell phone policy?"
    python scripts/ask.py "Dress code?" --top-k 3
"""
import argparse
import asyncio
import sys

from handbook_qa.config import Settings
from handbook_qa.errors import HandbookQAError
from handbook_qa.log_config import configure_logging
from handbook_qa.rag.pipeline import RagPipeline


async def main():
    parser = argparse.ArgumentParser(description="Debug a RAG query")
    parser.add_argument("question", help="Question to ask")
    parser.add_argument("--top-k", type=int, default=None, help="Chunks to retrieve")
    args = parser.parse_args()

    configure_logging(level="WARNING", json_logs=False)

    print("=" * 60)
    print("RAG Results Debug")
    print("=" * 60)
    print(f'\nQuery: "{args.question}"\n')

    try:
        pipeline = RagPipeline.from_settings(Settings.from_env())
        if args.top_k:
            pipeline.top_k = args.top_k

        embedding = await pipeline.embedder.embed(args.question)
        chunks = await pipeline.retriever.retrieve(embedding, pipeline.top_k)

        for i, chunk in enumerate(chunks, 1):
            print(f"[{i}] {chunk.source_document}")
            print(f"    Page: {chunk.page_number}, Similarity: {chunk.similarity:.4f}")
            print(f'    Content: "{chunk.content[:150]}..."\n')

        print("-" * 60)
        result = await pipeline.answer(args.question)
        print(f"\nAnswer:\n{result.answer}\n")

    except HandbookQAError as e:
        print(f"\nERROR: {e}\n")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
