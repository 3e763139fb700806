"""
Chat history persistence and retention.

The transcript is stored in its own binary file (magic "CHAT") using the same
length-prefixed records as the knowledge base: role name, content and a JSON
metadata blob per message. Every save rewrites the whole file.
"""

import json
import logging
from pathlib import Path
from typing import List, Union

from .binary_codec import (
    RecordReader,
    RecordWriter,
    iter_records,
    pack_header,
    unpack_header,
    write_atomic,
)
from .exceptions import MalformedPersistedDataError
from .models import Message, Role

logger = logging.getLogger(__name__)

MAGIC = 0x43484154  # "CHAT"
VERSION = 1
DEFAULT_HISTORY_LIMIT = 50


def apply_retention(history: List[Message], limit: int = DEFAULT_HISTORY_LIMIT) -> List[Message]:
    """
    Trim a transcript to ``limit`` entries.

    The first message (the system prompt) is always kept, followed by the
    most recent ``limit - 1`` messages in their original order. Shorter
    transcripts are returned unchanged.
    """
    if limit < 2:
        raise ValueError("limit must be at least 2")
    if len(history) <= limit:
        return history
    return [history[0]] + history[-(limit - 1):]


class ChatHistoryStore:
    """Binary file holding the ordered conversation transcript."""

    def __init__(self, storage_path: Union[str, Path] = "chat_history.bin"):
        self.storage_path = Path(storage_path)

    def save(self, history: List[Message]) -> bool:
        """Rewrite the file with ``history``. Failures are logged, not raised."""
        chunks = [pack_header(MAGIC, VERSION, len(history))]
        for message in history:
            chunks.append(
                RecordWriter()
                .write_text(message.role.name)
                .write_text(message.content)
                .write_text(json.dumps(message.metadata, ensure_ascii=False))
                .to_bytes()
            )
        try:
            write_atomic(self.storage_path, b"".join(chunks))
        except OSError as e:
            logger.error(f"Failed to save chat history to {self.storage_path}: {e}")
            return False
        logger.debug(f"Chat history saved: {len(history)} messages")
        return True

    def load(self) -> List[Message]:
        """
        Read the transcript back.

        Returns an empty list if the file is absent, empty, too short or has
        a bad magic number. Undecodable records are skipped.
        """
        if not self.storage_path.exists():
            return []

        try:
            data = self.storage_path.read_bytes()
        except OSError as e:
            logger.error(f"Cannot read chat history {self.storage_path}: {e}")
            return []
        if not data:
            return []

        try:
            count = unpack_header(data, MAGIC, VERSION)
        except MalformedPersistedDataError as e:
            logger.error(f"Invalid chat history file {self.storage_path}: {e}")
            return []

        history = []
        for index, body in iter_records(data, count):
            if isinstance(body, MalformedPersistedDataError):
                logger.error(f"Chat history truncated at message {index}: {body}")
                break
            try:
                history.append(self._decode(body))
            except (MalformedPersistedDataError, KeyError, ValueError) as e:
                logger.warning(f"Skipping chat message {index}: {e}")

        logger.info(f"Loaded {len(history)} chat messages from {self.storage_path}")
        return history

    @staticmethod
    def _decode(body: bytes) -> Message:
        reader = RecordReader(body)
        role = Role[reader.read_text()]
        content = reader.read_text()
        metadata = json.loads(reader.read_text())
        if not isinstance(metadata, dict):
            raise ValueError("metadata is not an object")
        return Message(role, content, {str(k): str(v) for k, v in metadata.items()})

    def clear(self) -> None:
        """Delete the history file."""
        try:
            self.storage_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Cannot delete chat history {self.storage_path}: {e}")
