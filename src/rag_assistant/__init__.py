"""
RAG Assistant - Local Retrieval-Augmented Generation over an Ollama server

A local assistant that keeps a small knowledge base of text documents with
vector embeddings, retrieves the documents most relevant to a question and
streams an answer from an Ollama-hosted language model, remembering the
conversation across restarts.

Core Components:
    - knowledge_store: in-memory documents and embeddings with a binary file format
    - chat_history: binary-persisted transcript and the retention policy
    - rag_pipeline: retrieval, prompt assembly and streaming generation
    - assistant: facade used by the command line and web front ends
    - embeddings / ollama_client: HTTP clients for the Ollama API
    - narration: sentence-by-sentence text-to-speech of streamed answers
    - performance_monitor: answer latency and process resource tracking
    - cli: Command-line interface for system interaction

Key Features:
    - Exact cosine similarity search with inclusive thresholds and stable ordering
    - Write-through persistence of every knowledge and history change
    - Streaming responses with fenced code blocks kept out of speech
    - Deterministic fallback embeddings when the embedding endpoint is down
    - Model management (pull, delete, copy, inspect) through the Ollama API

Usage:
    The system can be used through the command-line interface (rag_cli.py),
    the Streamlit web page (streamlit_app.py) or programmatically:

    ```python
    from rag_assistant.assistant import create_assistant

    with create_assistant() as assistant:
        assistant.add_knowledge("Ollama serves models on port 11434", "notes")
        print(assistant.ask_question("Which port does Ollama use?"))
    ```

Dependencies:
    - requests: HTTP calls to the Ollama server
    - numpy: Vector arithmetic and float64 serialization
    - click / rich: Command-line interface and console output
    - python-dotenv: Configuration from .env files
    - psutil: Process resource statistics
    - streamlit: Web front end

Version: 1.0.0
"""

__version__ = "1.0.0"
__description__ = "Local RAG assistant with persistent knowledge base and chat history"
