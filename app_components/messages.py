import streamlit as st

from core.schema import DecoratedTurn

AVATARS = {"user": "🧑", "assistant": "🤖"}


def render_turn(view: DecoratedTurn, container=None):
    """Draw one user/assistant turn. Text is shown as-is, not rendered as markdown."""
    container = container if container is not None else st.container()
    with container:
        if view.role == "user":
            st.text(view.answer_text)
            return

        if view.is_thinking:
            st.caption("Thinking...")

        if view.reasoning_text and view.reasoning_text.strip():
            with st.expander("thoughts", expanded=not st.session_state.collapse_thoughts):
                st.text(view.reasoning_text.strip())

        if view.answer_text:
            st.text(view.answer_text.strip())


def display_history(views):
    for view in views:
        with st.chat_message(view.role, avatar=AVATARS.get(view.role)):
            render_turn(view)
