"""
Scripts Package - Utility scripts for the RAG assistant

Available Scripts:
    - seed_knowledge.py: Bulk loading of the knowledge base from the built-in
      facts or a directory of text files

Usage:
    python scripts/seed_knowledge.py --dir ./notes
"""
