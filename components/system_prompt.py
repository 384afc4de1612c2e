import streamlit as st

from clients.base_llm_client import TransportError
from client_config import DEFAULT_PREMISE

DEFAULT_SLIDER_PARAMS = {
    "temperature": {"label": "Temperature", "min": 0.0, "max": 2.0, "step": 0.1},
    "repeat_penalty": {"label": "Repeat Penalty", "min": 0.5, "max": 2.0, "step": 0.05},
}


def init_system_prompt(config):
    if not st.session_state.generation_params:
        st.session_state.generation_params = {k: getattr(config, k) for k in DEFAULT_SLIDER_PARAMS}

    if st.session_state.premise is None:
        st.session_state.premise = config.premise


def edit_system_prompt(disabled=False):
    st.session_state.premise = st.text_area(
        "System Prompt",
        value=st.session_state.premise,
        height=100,
        disabled=disabled,
        key=f"premise_{st.session_state.key_suffix}",
    )

    with st.expander("Generation parameters", expanded=False):

        # reset premise and sampling params to default values
        if st.button("Reset to default", key="reset_system_prompt", disabled=disabled):
            st.session_state.premise = DEFAULT_PREMISE
            st.session_state.generation_params = {}
            st.session_state.key_suffix += 1
            st.rerun()

        for k, v in DEFAULT_SLIDER_PARAMS.items():
            st.session_state.generation_params[k] = st.slider(
                v["label"],
                min_value=v["min"],
                max_value=v["max"],
                value=float(st.session_state.generation_params[k]),
                step=v["step"],
                disabled=disabled,
                key=f"{k}_{st.session_state.key_suffix}",
            )


def select_model(backend, disabled=False):
    """Pick the model from the ones Ollama has pulled; free text if it is unreachable."""
    try:
        models = backend.list_models()
    except TransportError as e:
        st.warning(f"Could not reach Ollama to list models: {e}")
        models = []

    if models:
        index = models.index(st.session_state.model) if st.session_state.model in models else 0
        st.session_state.model = st.selectbox("Model", models, index=index, disabled=disabled)
    else:
        st.session_state.model = st.text_input("Model", value=st.session_state.model, disabled=disabled)
