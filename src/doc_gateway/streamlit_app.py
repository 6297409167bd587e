import io
import os

import requests
import streamlit as st

API_BASE = os.getenv("DOC_GATEWAY_API_BASE", os.getenv("API_BASE", "http://localhost:3000")).rstrip("/")
API_TOKEN = os.getenv("DOC_GATEWAY_TOKEN", os.getenv("AUTH_TOKEN", ""))
REQUEST_TIMEOUT = float(os.getenv("DOC_GATEWAY_UI_TIMEOUT", "120"))

UPLOAD_TYPES = ["doc", "docx", "odt", "rtf", "xls", "xlsx", "ods", "ppt", "pptx", "odp"]


def _reset_state():
    for key in ["pdf_bytes", "pdf_name", "error", "error_body"]:
        if key in st.session_state:
            del st.session_state[key]
    # Bump the uploader key to clear any previously uploaded file widget state
    if "upload_key" in st.session_state:
        st.session_state["upload_key"] += 1
    else:
        st.session_state["upload_key"] = 1


def _error_body(resp: requests.Response) -> dict[str, object]:
    try:
        data = resp.json()
    except ValueError:
        return {"error": resp.text}
    return data if isinstance(data, dict) else {"error": str(data)}


def _convert(uploaded_file: io.BytesIO, token: str) -> bytes | None:
    headers = {"Authorization": f"Bearer {token}"}
    files = {"file": (uploaded_file.name, uploaded_file.getvalue(), uploaded_file.type or "application/octet-stream")}
    try:
        resp = requests.post(f"{API_BASE}/convert", files=files, headers=headers, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        st.session_state["error"] = f"Failed to connect to API: {e}"
        return None
    if resp.status_code != 200:
        body = _error_body(resp)
        st.session_state["error"] = f"Conversion failed: {resp.status_code} {body.get('error', '')}"
        st.session_state["error_body"] = body
        return None
    return resp.content


def _check_health() -> str:
    try:
        resp = requests.get(f"{API_BASE}/health", timeout=5)
    except requests.RequestException as e:
        return f"unreachable ({e})"
    if resp.status_code != 200:
        return f"unhealthy ({resp.status_code})"
    return str(resp.json().get("status", "unknown"))


def main() -> None:
    st.set_page_config(page_title="Document Conversion Gateway", page_icon="📄", layout="centered")
    st.title("📄 Document Conversion Gateway")
    st.caption(f"API base: {API_BASE} · health: {_check_health()}")

    if st.button("Restart", type="secondary"):
        _reset_state()
        st.rerun()

    token = st.text_input("API token", value=API_TOKEN, type="password")

    # Use a dynamic key so that restarting bumps the key and clears the previous upload
    if "upload_key" not in st.session_state:
        st.session_state["upload_key"] = 0
    uploaded = st.file_uploader(
        "Upload a document (DOCX, ODT, XLSX, PPTX, etc.)",
        type=UPLOAD_TYPES,  # type: ignore[arg-type]
        key=f"uploader-{st.session_state['upload_key']}",
    )

    if uploaded and st.button("Convert to PDF", type="primary", disabled=not token):
        st.session_state.pop("error", None)
        st.session_state.pop("error_body", None)
        with st.spinner("Converting..."):
            pdf = _convert(uploaded, token)
        if pdf is not None:
            st.session_state["pdf_bytes"] = pdf
            st.session_state["pdf_name"] = os.path.splitext(uploaded.name)[0] + ".pdf"
            st.toast("Conversion complete", icon="✅")

    if "pdf_bytes" in st.session_state:
        st.success(f"Converted {len(st.session_state['pdf_bytes'])} bytes")
        st.download_button(
            label="Download PDF",
            data=st.session_state["pdf_bytes"],
            file_name=st.session_state["pdf_name"],
            mime="application/pdf",
        )

    if err := st.session_state.get("error"):
        st.error(err)
        body = st.session_state.get("error_body")
        if body and any(k in body for k in ("details", "stdout", "stderr")):
            with st.expander("Server diagnostics"):
                st.json(body)


if __name__ == "__main__":
    main()
