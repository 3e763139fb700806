"""
Prompt templates and their JSON persistence.

The templates can be edited in ``prompts.json``; missing or broken files fall
back to the built-in defaults.
"""

import datetime
import json
import logging
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant with access to a knowledge base. "
    "Answer precisely and take the whole conversation into account."
)

DEFAULT_RAG_TEMPLATE = """You are a helpful AI assistant with access to a knowledge base.

Previous conversation:
{history}

Information from the knowledge base for the current question:
{context}

Current user question: {query}

Take the conversation history and the knowledge base information into account.
If the knowledge base contains the answer, use it.
If the information is insufficient, use your own knowledge.
Answer accurately and informatively.

Answer:"""

DEFAULT_FALLBACK_TEMPLATE = """Conversation history:
{history}

Current user question: {query}

Answer the question using your own knowledge and the conversation history:"""

REQUIRED_PLACEHOLDERS = {
    "rag_template": ("{history}", "{context}", "{query}"),
    "fallback_template": ("{history}", "{query}"),
}

# short names used by the front ends
TEMPLATE_NAMES = {
    "system": "system_prompt",
    "rag": "rag_template",
    "fallback": "fallback_template",
}


@dataclass
class PromptTemplates:
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    rag_template: str = DEFAULT_RAG_TEMPLATE
    fallback_template: str = DEFAULT_FALLBACK_TEMPLATE

    def validate(self) -> None:
        for name, placeholders in REQUIRED_PLACEHOLDERS.items():
            template = getattr(self, name)
            missing = [p for p in placeholders if p not in template]
            if missing:
                raise ValueError(f"{name} is missing placeholders: {', '.join(missing)}")

    def with_template(self, name: str, text: str) -> "PromptTemplates":
        """
        Copy with one template replaced.

        Args:
            name: ``system``, ``rag`` or ``fallback``
            text: New template text

        Raises:
            ValueError: For an unknown name, empty text or missing placeholders
        """
        if name not in TEMPLATE_NAMES:
            raise ValueError(f"Unknown prompt '{name}'. Choose from: {', '.join(TEMPLATE_NAMES)}")
        if not text or not text.strip():
            raise ValueError("Prompt text cannot be empty")
        updated = replace(self, **{TEMPLATE_NAMES[name]: text.strip()})
        updated.validate()
        return updated

    def render_rag(self, history: str, context: str, query: str) -> str:
        # str.replace keeps braces in user text or code from breaking the template
        return (self.rag_template
                .replace("{history}", history)
                .replace("{context}", context)
                .replace("{query}", query))

    def render_fallback(self, history: str, query: str) -> str:
        return self.fallback_template.replace("{history}", history).replace("{query}", query)


class PromptStore:
    """Reads and writes PromptTemplates as JSON."""

    def __init__(self, path: Union[str, Path] = "prompts.json"):
        self.path = Path(path)

    def load(self) -> PromptTemplates:
        if not self.path.exists() or self.path.stat().st_size == 0:
            return PromptTemplates()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Cannot load prompts from {self.path}: {e}; using defaults")
            return PromptTemplates()
        if not isinstance(data, dict):
            logger.error(f"Prompts file {self.path} does not hold an object; using defaults")
            return PromptTemplates()

        known = {f.name for f in fields(PromptTemplates)}
        templates = PromptTemplates(**{k: str(v) for k, v in data.items() if k in known})
        try:
            templates.validate()
        except ValueError as e:
            logger.error(f"Invalid prompts in {self.path}: {e}; using defaults")
            return PromptTemplates()
        return templates

    def save(self, templates: PromptTemplates) -> None:
        templates.validate()
        self.path.write_text(json.dumps(asdict(templates), indent=4, ensure_ascii=False), encoding="utf-8")
        logger.info(f"Prompts saved to {self.path}")

    def reset(self) -> PromptTemplates:
        """Delete the prompts file and return the defaults."""
        if self.path.exists():
            self.path.unlink()
            logger.info(f"Prompts file {self.path} removed")
        return PromptTemplates()

    def file_info(self) -> str:
        if not self.path.exists():
            return "Prompts file not found (using defaults)"
        stat = self.path.stat()
        modified = datetime.datetime.fromtimestamp(stat.st_mtime).strftime("%d.%m.%Y %H:%M:%S")
        return f"File: {self.path}, Size: {stat.st_size} bytes, Modified: {modified}"
