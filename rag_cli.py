"""
RAG Assistant CLI - Main entry point for the local RAG assistant
Command: rag_cli --query "..." → retrieve relevant knowledge → stream answer with sources.
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from rag_assistant.cli import main

if __name__ == "__main__":
    main()
