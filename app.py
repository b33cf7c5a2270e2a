"""Streamlit UI — operator console for driving a loan-forms chat session by hand.

The runtime lives on a private event loop that only advances inside
`run_until_complete`, so the inactivity timer fires during the next user
action rather than on its own. Use "Finalize previews" in the sidebar to save
and regenerate previews immediately.
"""

import asyncio

import streamlit as st

from bootstrap import build_runtime
from config import DATABASE_PATH
from errors import TurnFailed
from forms.schema import DocumentType
from graph.llm import build_chat_model
from services.broadcast import LogBroadcaster

# ── Page config ─────────────────────────────────────────────────────────
st.set_page_config(page_title="Loan Forms Agent", page_icon="🏦", layout="centered")

st.markdown("""
<style>
    .stApp { max-width: 860px; margin: 0 auto; }
    div[data-testid="stChatMessage"] {
        border-radius: 12px;
        margin-bottom: 8px;
    }
    .tool-chip {
        display: inline-block; padding: 3px 10px; border-radius: 8px;
        margin: 2px 4px; font-size: 0.78em; font-weight: 500;
    }
    .tool-ok   { background: #D1FAE5; color: #065F46; }
    .tool-fail { background: #FEE2E2; color: #991B1B; }
</style>
""", unsafe_allow_html=True)


# ── Session state init ──────────────────────────────────────────────────
def _init_session():
    if "runtime" not in st.session_state:
        # One loop for the whole browser session: the model client and the
        # inactivity timers are bound to the loop they were created on.
        st.session_state.loop = asyncio.new_event_loop()
        st.session_state.runtime = build_runtime(build_chat_model(), LogBroadcaster(), database_path=DATABASE_PATH)
        st.session_state.session_id = None
        st.session_state.messages = []
        st.session_state.fields = None


def _run(coro):
    return st.session_state.loop.run_until_complete(coro)


_init_session()
orchestrator = st.session_state.runtime.orchestrator


def _new_session():
    session = _run(orchestrator.create_session("streamlit-user"))
    st.session_state.session_id = session.session_id
    st.session_state.messages = []
    st.session_state.fields = None


if st.session_state.session_id is None:
    _new_session()


# ── Sidebar ─────────────────────────────────────────────────────────────
with st.sidebar:
    st.markdown("### 🏦 Loan Forms")
    st.caption(f"Session: `{st.session_state.session_id}`")

    snapshot = st.session_state.fields
    if snapshot:
        for doc in DocumentType:
            info = snapshot.get(doc.value, {})
            progress = info.get("progress", 0)
            st.progress(progress / 100, text=f"{doc.value}: {progress}%")
            if info.get("submittable"):
                st.success(f"✅ {doc.value} ready to submit")

            filled = {k: v for k, v in info.get("fields", {}).items() if v not in ("", False)}
            if filled:
                with st.expander(f"📝 {doc.value} fields", expanded=False):
                    for name, value in filled.items():
                        st.caption(f"**{name}**: {value}")
    else:
        st.caption("No application linked yet.")

    if st.button("📄 Finalize previews"):
        result = _run(orchestrator.finalize(st.session_state.session_id))
        if result.get("artifacts"):
            st.success(f"Wrote {len(result['artifacts'])} preview file(s)")
        else:
            st.info(result.get("message", "Nothing to finalize"))

    if st.button("🔄 New session"):
        _run(orchestrator.delete_session(st.session_state.session_id))
        _new_session()
        st.rerun()


# ── Main ────────────────────────────────────────────────────────────────
st.title("🏦 SBA Loan Forms Assistant")
st.caption("Chat to check SBA eligibility and fill Forms 1919 and 413 together.")

for msg in st.session_state.messages:
    with st.chat_message(msg["role"], avatar=msg.get("avatar")):
        st.markdown(msg["content"], unsafe_allow_html=msg.get("html", False))

if user_text := st.chat_input("Type your message..."):
    st.session_state.messages.append({"role": "user", "content": user_text, "avatar": "👤"})
    try:
        with st.spinner("Thinking..."):
            result = _run(orchestrator.handle_message(st.session_state.session_id, user_text))
    except TurnFailed as e:
        st.session_state.messages.append({"role": "assistant", "content": f"⚠️ {e}", "avatar": "🏦"})
    else:
        if result.tool_results:
            chips = " ".join(
                f'<span class="tool-chip {"tool-ok" if r["success"] else "tool-fail"}">{r["name"]}</span>'
                for r in result.tool_results
            )
            st.session_state.messages.append({"role": "assistant", "content": chips, "avatar": "🛠️", "html": True})
        st.session_state.messages.append({"role": "assistant", "content": result.reply, "avatar": "🏦"})
        if result.fields is not None:
            st.session_state.fields = result.fields
    st.rerun()
