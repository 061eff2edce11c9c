#!/usr/bin/env python3
"""
Script to warm the translation cache

Fetches each reference from Sefaria and translates it (or each of its
sections), so later requests are served from the store at no cost.

    python run_prefetch.py "Berakhot 2a" "Berakhot 2b" --sections
    python run_prefetch.py "Berakhot 2a" --server http://localhost:8000 --token secret
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import httpx

from api.dependencies import get_dispatcher, get_sefaria_client
from ingestion.normalize import format_reference, join_source_text, section_ref
from translation.dispatcher import TranslationDispatcher
from translation.streaming import iter_translation_text
from utils.errors import TranslationServiceError

logger = logging.getLogger(__name__)


async def prefetch_reference(
    dispatcher: TranslationDispatcher, client, ref: str, sections: bool = False
) -> dict:
    """
    Translates one reference (or each of its sections) through the dispatcher

    Returns:
        Counts: {"translated": n, "cached": n, "cost": total}
    """
    text = client.fetch_source_text(ref)
    if sections and isinstance(text, list):
        units = [(section_ref(ref, i), section) for i, section in enumerate(text) if section]
    else:
        units = [(ref, join_source_text(text))]

    summary = {"translated": 0, "cached": 0, "cost": 0.0}
    for unit_ref, unit_text in units:
        outcome = await dispatcher.translate(unit_ref, unit_text)
        summary["cached" if outcome.cached else "translated"] += 1
        summary["cost"] += outcome.cost
        print(f"  {'=' if outcome.cached else '+'} {unit_ref}")
    return summary


async def stream_from_server(
    base_url: str,
    token: str,
    ref: str,
    source_text: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Streams one translation from a running server, printing it as it arrives"""
    parts = []
    async with httpx.AsyncClient(timeout=None, transport=transport) as http:
        async with http.stream(
            "POST",
            f"{base_url.rstrip('/')}/api/translate-stream",
            json={"reference": ref, "sourceText": source_text},
            headers={"Authorization": f"Bearer {token}"},
        ) as response:
            response.raise_for_status()
            async for piece in iter_translation_text(response.aiter_text()):
                parts.append(piece)
                print(piece, end="", flush=True)
    print()
    return "".join(parts)


async def run(refs: List[str], sections: bool, server: Optional[str], token: str) -> bool:
    client = get_sefaria_client()
    dispatcher = None if server else get_dispatcher()
    total = {"translated": 0, "cached": 0, "cost": 0.0}
    ok = True

    for i, ref in enumerate(refs, 1):
        ref = format_reference(ref)
        print(f"[{i}/{len(refs)}] {ref}")
        try:
            if server:
                text = join_source_text(client.fetch_source_text(ref))
                await stream_from_server(server, token, ref, text)
                continue
            summary = await prefetch_reference(dispatcher, client, ref, sections)
        except (TranslationServiceError, httpx.HTTPError) as e:
            print(f"✗ {ref}: {e}")
            ok = False
            continue
        for key in total:
            total[key] += summary[key]

    if not server:
        print(f"\n{'='*60}")
        print("Prefetch Summary:")
        print(f"  Translated: {total['translated']}")
        print(f"  Already cached: {total['cached']}")
        print(f"  Cost: {total['cost']:.6f}")
        print(f"{'='*60}")
    return ok


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Warm the translation cache")
    parser.add_argument("refs", nargs="+", help='Sefaria references, e.g. "Berakhot 2a"')
    parser.add_argument("--sections", action="store_true", help="Translate each section separately")
    parser.add_argument("--server", help="Stream through a running server instead of translating locally")
    parser.add_argument("--token", default="", help="Bearer token for --server")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.WARNING)
    ok = asyncio.run(run(args.refs, args.sections, args.server, args.token))
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
