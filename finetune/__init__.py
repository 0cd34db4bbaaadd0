"""
Fine-tuning tools for the clinic consultant model.

Exports the knowledge base as chat-format JSONL and drives OpenAI
fine-tuning jobs from the command line.
"""

from .dataset import build_examples, write_jsonl
from .jobs import FineTuneJobs

__all__ = ["build_examples", "write_jsonl", "FineTuneJobs"]
