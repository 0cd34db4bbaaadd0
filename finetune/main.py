"""
Clinic consultant fine-tuning CLI.

Usage:
    python -m finetune.main --action prepare --output finetune-data.jsonl
    python -m finetune.main --action upload --file finetune-data.jsonl
    python -m finetune.main --action status --job-id ftjob-abc123
    python -m finetune.main --action activate --job-id ftjob-abc123
"""

import argparse
import asyncio
import logging
import sys

from openai import AsyncOpenAI

from config.settings import get_settings
from database.session import Database

from .jobs import DEFAULT_BASE_MODEL, DEFAULT_EPOCHS, FineTuneJobs

logger = logging.getLogger(__name__)


async def run(args) -> int:
    settings = get_settings()
    if args.action != "prepare" and not settings.openai_api_key:
        logger.error("OPENAI_API_KEY is required for fine-tuning jobs")
        return 1

    database = Database(settings.database_url)
    client = AsyncOpenAI(api_key=settings.openai_api_key) if settings.openai_api_key else None
    jobs = FineTuneJobs(database.session_factory, client, clinic_name=settings.clinic_name)
    try:
        if args.action == "prepare":
            await jobs.prepare(args.output)
        elif args.action == "upload":
            await jobs.upload(args.file or args.output, model=args.model, epochs=args.epochs)
        elif args.action == "status":
            await jobs.status(args.job_id)
        elif args.action == "activate":
            await jobs.activate(args.job_id)
    except ValueError as e:
        logger.error(str(e))
        return 1
    finally:
        await database.close()
    return 0


def main():
    parser = argparse.ArgumentParser(description="Clinic Inbox Model Fine-tuning")
    parser.add_argument(
        "--action",
        choices=["prepare", "upload", "status", "activate"],
        required=True,
        help="Fine-tuning step to run",
    )
    parser.add_argument("--output", default="finetune-data.jsonl", help="Training file written by prepare")
    parser.add_argument("--file", help="Training file to upload (defaults to --output)")
    parser.add_argument("--job-id", help="Fine-tuning job id (status lists recent jobs without it)")
    parser.add_argument("--model", default=DEFAULT_BASE_MODEL, help="Base model to fine-tune")
    parser.add_argument("--epochs", type=int, default=DEFAULT_EPOCHS, help="Training epochs")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.action == "activate" and not args.job_id:
        logger.error("--job-id required for activate")
        sys.exit(1)

    exit_code = asyncio.run(run(args))
    if exit_code:
        sys.exit(exit_code)
    logger.info("Fine-tuning step finished")


if __name__ == "__main__":
    main()
