"""
Training data export.

Each knowledge entry becomes one chat example: the consultant persona,
a customer question derived from the entry's category and first word,
and the entry text as the assistant answer.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List

from llm.prompt_templates import PromptTemplates, PromptType

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT = "บริการ"

GENERAL_QUESTION = "คุณช่วยแนะนำเกี่ยวกับบริการของคลินิกได้ไหม"

QUESTION_TEMPLATES = {
    "price": [
        "{product} ราคาเท่าไหร่คะ",
        "บอกราคา{product}หน่อย",
        "อยากรู้ราคา{product}",
    ],
    "procedure": [
        "{product} ทำยังไงบ้างคะ",
        "ขั้นตอนการทำ{product}เป็นอย่างไร",
        "อธิบายวิธีการทำ{product}หน่อย",
    ],
    "promotion": [
        "มีโปรโมชั่นอะไรบ้าง",
        "ช่วงนี้มีโปรอะไรไหม",
        "มีส่วนลดไหมคะ",
    ],
}

CATEGORY_ALIASES = {
    "pricing": "price",
    "prices": "price",
    "promotions": "promotion",
    "procedures": "procedure",
    "treatment": "procedure",
    "treatments": "procedure",
}

OTHER_TEMPLATE = "บอกข้อมูลเกี่ยวกับ{product}"


def product_name(content: str) -> str:
    """First word of the entry's first line."""
    first_line = content.strip().split("\n")[0]
    words = first_line.split()
    return words[0] if words else DEFAULT_PRODUCT


def question_for(content: str, category: str, index: int = 0) -> str:
    """
    Customer question for an entry.

    Templates rotate by the entry's position so repeated categories
    get varied phrasing while the export stays reproducible.
    """
    key = (category or "").strip().lower()
    key = CATEGORY_ALIASES.get(key, key)
    if key == "general":
        return GENERAL_QUESTION

    templates = QUESTION_TEMPLATES.get(key, [OTHER_TEMPLATE])
    return templates[index % len(templates)].format(product=product_name(content))


def build_examples(entries: Iterable, clinic_name: str = "our clinic") -> List[Dict[str, Any]]:
    """
    Build chat-format training examples.

    Args:
        entries: Knowledge entries with content and category
        clinic_name: Clinic name for the consultant persona

    Returns:
        One {"messages": [...]} example per non-empty entry
    """
    system = PromptTemplates.get_system_prompt(PromptType.CONSULTANT, clinic_name)
    examples = []
    for index, entry in enumerate(entries):
        content = (entry.content or "").strip()
        if not content:
            continue
        examples.append({
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": question_for(content, entry.category, index)},
                {"role": "assistant", "content": content},
            ]
        })
    return examples


def write_jsonl(examples: List[Dict[str, Any]], path: str) -> Path:
    """Write examples one JSON object per line, keeping Thai text readable."""
    output = Path(path)
    with output.open("w", encoding="utf-8") as f:
        for example in examples:
            f.write(json.dumps(example, ensure_ascii=False) + "\n")

    size_kb = output.stat().st_size / 1024
    logger.info(f"Wrote {len(examples)} examples to {output} ({size_kb:.2f} KB)")
    return output
