import logging
import os
from dataclasses import replace

import streamlit as st

from app_components.messages import AVATARS, display_history, render_turn
from client_config import build_pipeline, get_ollama_client, load_config
from clients.base_llm_client import TransportError
from components.system_prompt import edit_system_prompt, init_system_prompt, select_model
from core.conversation import SessionBusyError
from core.fragments import BackendError, MalformedFragmentError
from core.pipeline import run_submit

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%H:%M:%S'
)

CONFIG_PATH = os.getenv("CHAT_CONFIG", "configs/default.yaml")


# initialise session state with default values
def init_session_state(default_states):
    for state, default in default_states.items():
        if state not in st.session_state:
            st.session_state[state] = default


st.set_page_config(layout="centered", page_title="Local DeepSeek Chat", page_icon=":robot_face:")

config = load_config(CONFIG_PATH if os.path.exists(CONFIG_PATH) else None)

init_session_state({
    "collapse_thoughts": False,
    "generation_params": {},
    "key_suffix": 0,
    "model": config.model,
    "pipeline": None,
    "premise": None,
})

init_system_prompt(config)

if st.session_state.pipeline is None:
    st.session_state.pipeline = build_pipeline(config)
pipeline = st.session_state.pipeline
busy = pipeline.busy

with st.sidebar:
    st.header("Settings")
    select_model(pipeline.backend, disabled=busy)
    edit_system_prompt(disabled=busy)
    st.session_state.collapse_thoughts = st.toggle("Hide thoughts", value=st.session_state.collapse_thoughts)
    if st.button("Clear conversation", disabled=busy or not pipeline.state.history):
        pipeline.state.reset()
        st.rerun()

st.header("Local DeepSeek Chat")

display_history(pipeline.state.visible_turns())

# cancellations (stop button, page reruns) are not Exceptions and are not shown
if isinstance(pipeline.state.last_error, Exception):
    st.error(f"The last response failed: {pipeline.state.last_error}")

prompt = st.chat_input("Ask your local DeepSeek...", disabled=busy)

if prompt:
    session_config = replace(config, model=st.session_state.model, **st.session_state.generation_params)
    pipeline.backend = get_ollama_client(session_config)

    with st.chat_message("user", avatar=AVATARS["user"]):
        st.text(prompt)

    with st.chat_message("assistant", avatar=AVATARS["assistant"]):
        st.button("Stop", key="stop_generation")
        placeholder = st.empty()
        try:
            run_submit(
                pipeline,
                prompt,
                premise=st.session_state.premise,
                on_update=lambda view: render_turn(view, placeholder.container()),
            )
        except (TransportError, BackendError, MalformedFragmentError, SessionBusyError) as e:
            st.error(e)
            st.stop()

    st.rerun()
