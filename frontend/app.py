import time
from typing import Optional

import requests
import streamlit as st
from pydantic import ValidationError

from config.logging_setup import setup_logging
from config.settings import settings
from frontend.api import fetch_generations
from frontend.controller import GenerationStatus, Phase
from frontend.errors import UploadError
from frontend.image_utils import format_file_size, prepare_upload
from frontend.session import StudioSession
from shared.schema import MAX_PROMPT_LENGTH, STYLE_OPTIONS, GenerationRequest, UploadedFile

POLL_INTERVAL = 0.5  # giây
STYLE_LABELS = dict(STYLE_OPTIONS)

setup_logging()


def get_session() -> StudioSession:
    # Session sống theo st.session_state; khi Streamlit bỏ state, GC dừng luôn loop nền
    if "studio" not in st.session_state:
        st.session_state["studio"] = StudioSession()
    return st.session_state["studio"]


def handle_upload(uploaded) -> Optional[UploadedFile]:
    """Xử lý file upload 1 lần, cache theo (name, size) để không resize lại mỗi lần rerun"""
    if uploaded is None:
        st.session_state.pop("upload", None)
        return st.session_state.get("restored_upload")

    st.session_state.pop("restored_upload", None)

    cache_key = (uploaded.name, uploaded.size)
    cached = st.session_state.get("upload")
    if cached and cached[0] == cache_key:
        return cached[1]

    try:
        result = prepare_upload(uploaded.name, uploaded.type or "", uploaded.getvalue())
    except UploadError as e:
        st.error(f"❌ Upload Error: {e.message}")
        return None

    st.session_state["upload"] = (cache_key, result)
    st.toast(f"{uploaded.name} uploaded successfully")
    return result


def restore_from_history(generation_id: str) -> None:
    """on_click của nút Restore: đổ prompt/style/ảnh gốc của item vào form"""
    restored = get_session().restore(generation_id)
    if restored is None:
        return

    st.session_state["prompt"] = restored.prompt
    st.session_state["style"] = restored.style
    st.session_state["restored_upload"] = restored.upload
    # đổi key để file_uploader reset, ảnh restore mới được dùng
    st.session_state["uploader_key"] = st.session_state.get("uploader_key", 0) + 1
    if restored.upload is None:
        st.toast("Original image is not available, please upload it again")


def render_status(status: GenerationStatus) -> None:
    if status.phase is Phase.ATTEMPTING:
        st.info(f"🎨 Generating... (attempt {status.retry_count + 1})")
    elif status.phase is Phase.RETRY_PENDING:
        st.warning(f"⏳ {status.error}")
    elif status.phase is Phase.FAILED:
        st.error(f"❌ Generation Failed: {status.error}")
    elif status.phase is Phase.ABORTED:
        st.info("Generation cancelled.")


# ==========================
# Cấu hình
# ==========================
st.set_page_config(
    page_title="AI Studio",
    page_icon="🎨",
    layout="wide",
)

st.title("🎨 AI Studio")
st.caption("Upload an image, pick a style and transform it")

session = get_session()
status = session.status

# ==========================
# Sidebar: history
# ==========================
with st.sidebar:
    st.header("🕘 History")

    history = session.history_items
    if not history:
        st.caption("No generations yet")
    for item in history:
        st.image(item.image_url, use_container_width=True)
        st.caption(f"**{STYLE_LABELS.get(item.style, item.style)}** · {item.prompt[:60]}")
        st.button(
            "↩️ Restore",
            key=f"restore-{item.id}",
            on_click=restore_from_history,
            args=(item.id,),
            use_container_width=True,
        )

    if history and st.button("🗑️ Clear history", use_container_width=True):
        session.clear_history()
        st.rerun()

    st.markdown("---")
    with st.expander("Recent on server"):
        try:
            for item in fetch_generations(limit=settings.MAX_HISTORY_ITEMS):
                st.caption(f"{item.id[:8]} · {item.style} · {item.prompt[:40]}")
        except requests.RequestException as e:
            st.caption(f"Backend unavailable: {e}")

    st.markdown("---")
    st.write("🔗 Backend:", settings.BACKEND_URL)

# ==========================
# Form
# ==========================
col_form, col_preview = st.columns([1, 1])

with col_form:
    uploaded = st.file_uploader(
        "📤 Image (PNG/JPG, max 10MB)",
        type=["png", "jpg", "jpeg"],
        key=f"uploader-{st.session_state.get('uploader_key', 0)}",
    )
    upload = handle_upload(uploaded)

    prompt = st.text_area(
        "💭 Prompt",
        max_chars=MAX_PROMPT_LENGTH,
        placeholder="Describe how the image should look...",
        key="prompt",
    )
    style = st.selectbox(
        "🎯 Style",
        options=[value for value, _ in STYLE_OPTIONS],
        format_func=lambda value: STYLE_LABELS[value],
        key="style",
    )
    creativity = st.slider("Creativity", 0, 100, 50)
    strength = st.slider("Strength", 0, 100, 75)

    # Live summary
    st.markdown("##### Summary")
    st.markdown(
        f"- **Image:** {upload.original_name + ' (' + format_file_size(upload.size) + ')' if upload else '—'}\n"
        f"- **Prompt:** {len(prompt)}/{MAX_PROMPT_LENGTH} characters\n"
        f"- **Style:** {STYLE_LABELS[style]}\n"
        f"- **Creativity / Strength:** {creativity} / {strength}"
    )

    c1, c2, c3 = st.columns(3)
    with c1:
        if st.button("✨ Generate", disabled=status.is_loading, use_container_width=True):
            if upload is None:
                st.error("Please upload an image first")
            else:
                try:
                    request = GenerationRequest(
                        image_data_url=upload.data_url,
                        prompt=prompt.strip(),
                        style=style,
                        creativity=creativity,
                        strength=strength,
                    )
                except ValidationError as e:
                    st.error(f"❌ {e.errors()[0]['msg']}")
                else:
                    session.generate(request)
                    time.sleep(0.1)
                    st.rerun()
    with c2:
        if st.button("⛔ Abort", disabled=not status.can_abort, use_container_width=True):
            session.abort()
            st.toast("The generation request has been cancelled.")
            st.rerun()
    with c3:
        if st.button(
            "🔁 Retry",
            disabled=status.phase is not Phase.FAILED,
            use_container_width=True,
        ):
            session.retry()
            time.sleep(0.1)
            st.rerun()

    render_status(status)

# ==========================
# Preview
# ==========================
with col_preview:
    if upload:
        st.image(upload.data_url, caption="Original", use_container_width=True)
    if status.result is not None:
        st.image(status.result.image_url, caption="✨ Result", use_container_width=True)
        st.markdown(f"🔗 [Open image]({status.result.image_url})")

# Đang chạy thì poll lại state của controller
if status.is_loading:
    time.sleep(POLL_INTERVAL)
    st.rerun()
