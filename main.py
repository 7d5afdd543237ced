"""Deep Research Orchestrator

Simple CLI for running one research session against the configured providers.
"""

import argparse
import asyncio
import uuid

from deep_research.api.deps import build_orchestrator
from deep_research.models.events import DONE_MARKER
from deep_research.models.research import ResearchInput
from deep_research.services.task_store import InMemoryResearchStore


async def run_research(
    query: str,
    model: str | None = None,
    domain: str = "all",
    balance: int = 100,
    jsonl: bool = False,
):
    """Run research on the given query."""
    store = InMemoryResearchStore(default_balance=balance)
    orchestrator = build_orchestrator(store)
    request = ResearchInput(user_id=str(uuid.uuid4()), query=query, model=model, domain=domain)

    if not jsonl:
        print(f"Research query: {query}")
        print("-" * 50)

    async for event in orchestrator.research(request):
        if jsonl:
            print(event.to_json(), flush=True)
            continue

        phase = event.phase.value
        data = event.data

        if event.is_content:
            print(data["content"], end="", flush=True)

        elif phase == "planning":
            print(f"\n[*] {data.get('message')} (type: {data.get('queryType')})")

        elif phase in ("searching", "browsing"):
            print(
                f"  [~] {data.get('message')} | sources={data.get('sourceCount')} "
                f"confidence={data.get('confidence')}"
            )

        elif phase == "validating":
            print(f"\n[+] {data.get('message')}")

        elif phase == "generating":
            print(f"\n[+] {data.get('message')}\n")

        elif phase == "completed":
            print(f"\n\n[*] Research Complete!")
            print(f"   Iterations: {data.get('iterations')} ({data.get('stopReason')})")
            print(f"   Searches: {data.get('searchCount')}  Scrapes: {data.get('scrapeCount')}")
            print(f"   Sources: {len(data.get('sources', []))}")
            print(f"   Credits: {data.get('creditsUsed')}")

        elif phase == "failed":
            print(f"\n[!] Error: {data.get('error', 'Unknown error')}")

    if jsonl:
        print(DONE_MARKER, flush=True)


def main():
    parser = argparse.ArgumentParser(description="Deep Research Orchestrator")
    parser.add_argument("--query", "-q", required=True, help="Research query")
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")
    parser.add_argument("--domain", "-d", default="all", help="Domain focus, e.g. fashion, textile")
    parser.add_argument("--balance", type=int, default=100, help="Starting credit balance")
    parser.add_argument("--jsonl", action="store_true", help="Print raw events as JSON lines")

    args = parser.parse_args()

    asyncio.run(run_research(args.query, args.model, args.domain, args.balance, args.jsonl))


if __name__ == "__main__":
    main()
