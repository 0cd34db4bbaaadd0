"""
OpenAI fine-tuning job control.
"""

import logging
from collections import Counter
from pathlib import Path
from typing import Any, List, Optional

from database.repositories import KnowledgeRepository, SettingsRepository

from .dataset import build_examples, write_jsonl

logger = logging.getLogger(__name__)

DEFAULT_BASE_MODEL = "gpt-4o-mini-2024-07-18"
DEFAULT_EPOCHS = 3


class FineTuneJobs:
    """Export, upload and track fine-tuning runs for the consultant model."""

    def __init__(self, session_factory, client, clinic_name: str = "our clinic"):
        """
        Args:
            session_factory: Async session factory for the inbox database
            client: AsyncOpenAI client (or any object with the same files/fine_tuning API)
            clinic_name: Clinic name for the consultant persona
        """
        self.session_factory = session_factory
        self.client = client
        self.clinic_name = clinic_name

    async def prepare(self, output_path: str) -> int:
        """Export the knowledge base to a JSONL training file."""
        async with self.session_factory() as session:
            entries = await KnowledgeRepository(session).list_all()

        logger.info(f"Loaded {len(entries)} knowledge entries")
        distribution = Counter((e.category or "uncategorized").lower() for e in entries)
        for category, count in sorted(distribution.items()):
            logger.info(f"  {category}: {count}")

        examples = build_examples(entries, clinic_name=self.clinic_name)
        if not examples:
            logger.warning("Knowledge base is empty, nothing to train on")
        write_jsonl(examples, output_path)
        return len(examples)

    async def upload(self, path: str, model: str = DEFAULT_BASE_MODEL, epochs: int = DEFAULT_EPOCHS) -> Any:
        """Upload a training file and start a fine-tuning job."""
        with Path(path).open("rb") as f:
            training_file = await self.client.files.create(file=f, purpose="fine-tune")
        logger.info(f"Uploaded training file: {training_file.id}")

        job = await self.client.fine_tuning.jobs.create(
            training_file=training_file.id,
            model=model,
            hyperparameters={"n_epochs": epochs},
        )
        logger.info(f"Fine-tuning job created: {job.id} (status: {job.status})")
        return job

    async def status(self, job_id: Optional[str] = None) -> List[Any]:
        """Report one job, or the ten most recent when no id is given."""
        if job_id:
            jobs = [await self.client.fine_tuning.jobs.retrieve(job_id)]
        else:
            page = await self.client.fine_tuning.jobs.list(limit=10)
            jobs = list(page.data)

        for job in jobs:
            logger.info(f"Job {job.id}: model={job.model} status={job.status}")
            if job.fine_tuned_model:
                logger.info(f"  Fine-tuned model: {job.fine_tuned_model}")
            elif job.status == "failed":
                error = getattr(job, "error", None)
                logger.error(f"  Training failed: {getattr(error, 'message', None) or 'unknown error'}")
        return jobs

    async def activate(self, job_id: str) -> str:
        """
        Point the AI settings at a finished job's model.

        Raises:
            ValueError: If the job has not produced a model yet
        """
        job = await self.client.fine_tuning.jobs.retrieve(job_id)
        if job.status != "succeeded" or not job.fine_tuned_model:
            raise ValueError(f"Job {job_id} has no fine-tuned model yet (status: {job.status})")

        async with self.session_factory() as session:
            async with session.begin():
                await SettingsRepository(session).upsert({
                    "finetuned_model": job.fine_tuned_model,
                    "use_finetuned_model": True,
                })
        logger.info(f"AI settings now use {job.fine_tuned_model}")
        return job.fine_tuned_model
