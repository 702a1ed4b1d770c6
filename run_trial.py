from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

from loguru import logger

from courtroom.channel import ConsoleChannel
from courtroom.generator import generate_case_premise, generate_evidence, generate_personas
from courtroom.llm import create_content_service
from courtroom.manager import CaseManager
from courtroom.presets import DEFAULT_PRESETS_URL, PresetCatalog
from courtroom.session import TrialSession


DEFAULT_PROMPT = (
    "Be funny, but try to make sense. Create a never seen storyline for a murder case in Ace Attorney."
)


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run an AI courtroom trial against a human Defense player")
    p.add_argument("--prompt", type=str, default=DEFAULT_PROMPT, help="Story prompt used to generate the case")
    p.add_argument("--player-name", type=str, default="Phoenix Wright", help="Display name for the human player")
    p.add_argument("--max-ai-messages", type=int, default=4, help="Max sequential AI messages per player turn")
    p.add_argument("--model", type=str, default=None, help="Chat model id (default: OPENAI_MODEL or gpt-4o-mini)")
    p.add_argument(
        "--presets",
        type=str,
        default=os.getenv("PRESETS_URL", DEFAULT_PRESETS_URL),
        help="Preset catalog: path to a JSON file or an http(s) URL",
    )
    p.add_argument("--settle-delay", type=float, default=0.3, help="Seconds between identity change and speech")
    p.add_argument("--log-level", type=str, default="INFO", help="Loguru level for stdout")
    return p.parse_args()


async def load_catalog(source: str) -> PresetCatalog:
    if source.startswith(("http://", "https://")):
        return await PresetCatalog.fetch(source)
    return PresetCatalog.from_file(Path(source))


async def read_lines(session: TrialSession) -> None:
    while True:
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            return
        line = line.strip()
        if line:
            await session.handle_human_message(line)


async def main() -> None:
    args = parse_args()

    logger.remove()
    logger.add(sys.stdout, level=args.log_level.upper(), colorize=True, format="{time:HH:mm:ss} | {level} | {message}")

    catalog = await load_catalog(args.presets)
    service = create_content_service(model=args.model)

    premise = await generate_case_premise(service, args.prompt)
    logger.info(f"Generated case premise: {premise}")
    evidence = await generate_evidence(service, premise)
    logger.info(f"Generated evidence: {[e.name for e in evidence]}")
    profiles = await generate_personas(
        service, premise + "\n\nEvidence: " + ", ".join(e.name for e in evidence), catalog
    )
    logger.info(f"Generated personas: {[p.name for p in profiles]}")

    manager = CaseManager(catalog, service=service)
    manager.create_case(premise, profiles, evidence)
    for persona in manager.personas.values():
        manager.bind_persona_channel(persona.id, ConsoleChannel(settle_delay=args.settle_delay))

    session = TrialSession(
        manager,
        max_ai_messages=args.max_ai_messages,
        player_name=args.player_name,
        master_channel=ConsoleChannel(settle_delay=0),
        reading_delay=0.3,
        per_char_delay=0.06,
    )
    await session.open_session()
    await read_lines(session)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
