"""
Streamlit Frontend for the RAG Assistant
A web chat page over the same knowledge base and chat history as the CLI.

Run with:
    streamlit run streamlit_app.py
"""

import sys
from pathlib import Path

import streamlit as st

# Add the src directory to the path to import the assistant
sys.path.insert(0, str(Path(__file__).parent / "src"))

from rag_assistant.assistant import Assistant, create_assistant
from rag_assistant.exceptions import InvalidVectorDimensionError, ProviderUnavailableError
from rag_assistant.models import Role
from rag_assistant.prompts import TEMPLATE_NAMES

# Page configuration
st.set_page_config(
    page_title="RAG Assistant - Local Knowledge Chat",
    page_icon="🤖",
    layout="wide",
    initial_sidebar_state="expanded"
)

st.markdown("""
<style>
    .main-header {
        font-size: 2.2rem;
        font-weight: bold;
        color: #1f77b4;
        text-align: center;
        margin-bottom: 0.5rem;
    }
    .sub-header {
        font-size: 1.1rem;
        color: #666;
        text-align: center;
        margin-bottom: 1rem;
    }
</style>
""", unsafe_allow_html=True)


@st.cache_resource
def get_assistant() -> Assistant:
    """One assistant shared by every browser session of this server"""
    return create_assistant()


def render_sidebar(assistant: Assistant):
    st.sidebar.header("Knowledge Base")
    stats = assistant.get_statistics()
    col1, col2 = st.sidebar.columns(2)
    col1.metric("Documents", stats["total_documents"])
    col2.metric("Messages", stats["chat_history_size"])
    st.sidebar.caption(f"Memory estimate: {stats['memory_usage']}")
    st.sidebar.caption(f"Average answer: {stats['performance']['average_latency_ms']:.0f} ms")

    speech = st.sidebar.toggle("Narrate answers", value=assistant.is_speech_enabled())
    if speech != assistant.is_speech_enabled():
        assistant.set_speech_enabled(speech)

    st.sidebar.header("Models")
    try:
        models = assistant.get_available_models()
    except ProviderUnavailableError as e:
        st.sidebar.error(f"Ollama unavailable: {e}")
        models = []
    current = assistant.get_current_model()
    if models:
        index = models.index(current) if current in models else 0
        selected = st.sidebar.selectbox("Answer model", models, index=index)
        if selected != current and assistant.switch_model(selected):
            st.sidebar.success(f"Switched to {selected}")
    st.sidebar.caption(f"Embedding model: {assistant.get_embedding_model()}")

    st.sidebar.header("Add Knowledge")
    with st.sidebar.form("add_knowledge", clear_on_submit=True):
        content = st.text_area("Content", height=120)
        source = st.text_input("Source", value="web input")
        if st.form_submit_button("Add"):
            if content.strip():
                document = assistant.add_knowledge(content, source)
                st.success(f"Added document {document.id[:8]}")
            else:
                st.warning("Content cannot be empty")

    st.sidebar.header("Search")
    query = st.sidebar.text_input("Search the knowledge base")
    if query:
        try:
            results = assistant.search_knowledge(query, 3)
        except InvalidVectorDimensionError as e:
            st.sidebar.error(str(e))
            results = []
        if not results:
            st.sidebar.info("No matching documents")
        for result in results:
            with st.sidebar.expander(f"{result.similarity:.3f} - {result.document.source}"):
                st.write(result.document.content)

    st.sidebar.header("Prompts")
    name = st.sidebar.selectbox("Template", sorted(TEMPLATE_NAMES))
    with st.sidebar.form("edit_prompt"):
        current = getattr(assistant.templates, TEMPLATE_NAMES[name])
        text = st.text_area("Template text", value=current, height=200)
        if st.form_submit_button("Save prompt"):
            try:
                assistant.update_prompt(name, text)
                st.success(f"Prompt '{name}' saved")
            except ValueError as e:
                st.error(str(e))
    if st.sidebar.button("Reset prompts"):
        assistant.reset_prompts()
        st.rerun()

    if st.sidebar.button("Clear chat history"):
        assistant.clear_chat_history()
        st.rerun()


def main():
    st.markdown('<div class="main-header">RAG Assistant</div>', unsafe_allow_html=True)
    st.markdown('<div class="sub-header">Answers grounded in your local knowledge base</div>',
                unsafe_allow_html=True)

    assistant = get_assistant()
    render_sidebar(assistant)

    for message in assistant.get_chat_history():
        if message.role is Role.SYSTEM:
            continue
        with st.chat_message(message.role.value):
            st.markdown(message.content)

    question = st.chat_input("Ask a question")
    if not question:
        return

    with st.chat_message("user"):
        st.markdown(question)

    with st.chat_message("assistant"):
        placeholder = st.empty()
        tokens = []

        def show_token(token):
            tokens.append(token)
            placeholder.markdown("".join(tokens) + "▌")

        try:
            response = assistant.ask(question, on_token=show_token)
        except InvalidVectorDimensionError as e:
            placeholder.error(f"Embedding model mismatch: {e}")
            return

        placeholder.markdown(response.answer)
        if response.sources:
            with st.expander("Sources", expanded=False):
                for source in response.sources:
                    st.write(f"{source['source']} (similarity {source['similarity']:.3f})")
        if response.cancelled:
            st.warning("Generation timed out; the answer is partial")


if __name__ == "__main__":
    main()
