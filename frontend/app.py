import os
import json
import time
import datetime
from typing import Dict, List, Optional

import requests
import streamlit as st

BACKEND_URL = os.getenv("BACKEND_URL", "http://127.0.0.1:8000")

RESOLUTIONS = [
    ("1024x1024", "1024x1024 (1:1)"),
    ("864x1152", "864x1152 (3:4)"),
    ("1152x864", "1152x864 (4:3)"),
    ("1248x832", "1248x832 (3:2)"),
    ("832x1248", "832x1248 (2:3)"),
    ("1280x720", "1280x720 (16:9)"),
    ("720x1280", "720x1280 (9:16)"),
    ("1344x576", "1344x576 (21:9)"),
    ("576x1344", "576x1344 (9:21)"),
]
RESOLUTION_LABELS = {value: label for value, label in RESOLUTIONS}

DESIGN_VIEW = "🎨 Design"
HISTORY_VIEW = "🕘 History"


def fetch_categories() -> List[Dict]:
    resp = requests.get(f"{BACKEND_URL}/categories", timeout=10)
    resp.raise_for_status()
    return resp.json()


def save_categories(categories: List[Dict]) -> List[Dict]:
    resp = requests.put(f"{BACKEND_URL}/categories", json=categories, timeout=10)
    resp.raise_for_status()
    return resp.json()


def fetch_selections(randomize: bool = False) -> Dict[str, str]:
    """GET /selections -> first item (or a random one) per category"""
    resp = requests.get(f"{BACKEND_URL}/selections", params={"random": randomize}, timeout=10)
    resp.raise_for_status()
    return resp.json()


def preview_prompt(selections: Dict[str, str]) -> str:
    resp = requests.post(f"{BACKEND_URL}/prompt", json={"selections": selections}, timeout=10)
    resp.raise_for_status()
    return resp.json()["prompt"]


def call_generate(user_id: str, prompt: str, resolution: str, seed: Optional[int], enhance: bool) -> str:
    """POST /generate -> job_id"""
    payload = {
        "user_id": user_id,
        "prompt": prompt,
        "resolution": resolution,
        "seed": seed,
        "random_seed": seed is None,
        "enhance": enhance,
    }
    resp = requests.post(f"{BACKEND_URL}/generate", json=payload, timeout=30)
    resp.raise_for_status()
    return resp.json()["job_id"]


def call_cancel(job_id: str) -> None:
    requests.post(f"{BACKEND_URL}/cancel/{job_id}", timeout=10)


def get_result(job_id: str) -> Optional[Dict]:
    resp = requests.get(f"{BACKEND_URL}/result/{job_id}", timeout=10)
    if resp.status_code == 404:
        return None
    resp.raise_for_status()
    return resp.json()


def wait_for_result(job_id: str, progress_bar, timeout_sec: float = 260.0, poll_interval: float = 1.0):
    """Poll GET /result/{job_id} until done/error/cancelled."""
    start = time.time()
    while True:
        data = get_result(job_id)
        if data is None:
            return None

        status = data.get("status")
        progress_bar.progress(int(data.get("progress") or 0))
        if status in ("done", "error", "cancelled"):
            return data

        if time.time() - start > timeout_sec:
            return None

        time.sleep(poll_interval)


def fetch_history(user_id: str) -> List[Dict]:
    resp = requests.get(f"{BACKEND_URL}/history/{user_id}", timeout=10)
    resp.raise_for_status()
    return resp.json()


def delete_history(user_id: str, item_id: str) -> None:
    requests.delete(f"{BACKEND_URL}/history/{user_id}/{item_id}", timeout=10)


# ==========================
# Widget callbacks (run before the page re-renders)
# ==========================
def apply_selections(selections: Dict[str, str]) -> None:
    st.session_state["selections"] = selections
    for cat_id, choice in selections.items():
        st.session_state[f"cat_{cat_id}"] = choice
    st.session_state["prompt_text"] = preview_prompt(selections)


def on_pick(cat_id: str) -> None:
    selections = dict(st.session_state["selections"])
    selections[cat_id] = st.session_state[f"cat_{cat_id}"]
    apply_selections(selections)


def on_randomize() -> None:
    apply_selections(fetch_selections(randomize=True))


def on_restore(item: Dict) -> None:
    st.session_state["prompt_text"] = item["prompt"]
    if item.get("seed") is not None:
        st.session_state["seed_value"] = int(item["seed"])
        st.session_state["random_seed"] = False
    st.session_state["resolution_label"] = RESOLUTION_LABELS.get(item["resolution"], RESOLUTIONS[0][1])
    st.session_state["view"] = DESIGN_VIEW
    st.session_state["last_result"] = {
        "status": "done",
        "image_url": item["image_url"],
        "seed": item.get("seed"),
        "prompt": item["prompt"],
    }


# ==========================
# Page setup
# ==========================
st.set_page_config(page_title="Knit Design Studio", page_icon="🧶", layout="wide")

st.title("🧶 Knit Design Studio")
st.caption("Pick the attributes of a sweater and let Z-Image-Turbo render it")

# ==========================
# State
# ==========================
if "user_id" not in st.session_state:
    st.session_state["user_id"] = f"user_{int(time.time())}"
if "categories" not in st.session_state:
    try:
        st.session_state["categories"] = fetch_categories()
        st.session_state["selections"] = fetch_selections()
        st.session_state["prompt_text"] = preview_prompt(st.session_state["selections"])
    except requests.RequestException as e:
        st.error(f"Cannot load categories from backend: {e}")
        st.session_state["categories"] = []
        st.session_state["selections"] = {}
        st.session_state["prompt_text"] = ""
if "active_job" not in st.session_state:
    st.session_state["active_job"] = None
if "last_result" not in st.session_state:
    st.session_state["last_result"] = None
st.session_state.setdefault("resolution_label", RESOLUTIONS[0][1])
st.session_state.setdefault("random_seed", True)
st.session_state.setdefault("seed_value", 42)
st.session_state.setdefault("view", DESIGN_VIEW)

categories = st.session_state["categories"]

# ==========================
# Sidebar
# ==========================
with st.sidebar:
    st.header("⚙️ Settings")

    user_id = st.text_input("👤 User ID", value=st.session_state["user_id"])
    st.session_state["user_id"] = user_id

    resolution_labels = [label for _, label in RESOLUTIONS]
    chosen_label = st.selectbox("📐 Resolution", resolution_labels, key="resolution_label")
    resolution = RESOLUTIONS[resolution_labels.index(chosen_label)][0]

    random_seed = st.checkbox("🎲 Random seed", key="random_seed")
    seed_value = st.number_input("Seed", min_value=0, step=1, disabled=random_seed, key="seed_value")

    enhance = st.checkbox("✨ Enhance prompt", value=False)

    st.markdown("---")
    view = st.radio("View", [DESIGN_VIEW, HISTORY_VIEW], key="view")

    with st.expander("🗂️ Edit categories"):
        edited = st.text_area(
            "Categories (JSON)",
            value=json.dumps(categories, ensure_ascii=False, indent=2),
            height=240,
        )
        if st.button("💾 Save categories"):
            try:
                st.session_state["categories"] = save_categories(json.loads(edited))
                apply_selections(fetch_selections())
                st.rerun()
            except ValueError as e:
                st.error(f"Invalid JSON: {e}")
            except requests.RequestException as e:
                st.error(f"Cannot save categories: {e}")

    st.markdown("---")
    st.write("🔗 Backend:", BACKEND_URL)

# ==========================
# History view
# ==========================
if view == HISTORY_VIEW:
    try:
        items = fetch_history(user_id)
    except requests.RequestException as e:
        st.error(f"Cannot load history: {e}")
        items = []

    st.subheader(f"History ({len(items)} / 100)")
    if not items:
        st.info("No designs yet.")
    for item in items:
        col1, col2 = st.columns([1, 2])
        with col1:
            st.image(item["image_url"], use_container_width=True)
        with col2:
            ts = datetime.datetime.fromtimestamp(item["timestamp"] / 1000)
            st.markdown(f"**{ts:%Y-%m-%d %H:%M}** · {item['resolution']} · seed `{item.get('seed')}`")
            st.caption(item["prompt"])
            b_restore, b_delete = st.columns(2)
            b_restore.button("↩️ Restore", key=f"restore_{item['id']}", on_click=on_restore, args=(item,))
            if b_delete.button("🗑️ Delete", key=f"del_{item['id']}"):
                delete_history(user_id, item["id"])
                st.rerun()
    st.stop()

# ==========================
# Design view
# ==========================
left, right = st.columns([1, 1])

with left:
    st.subheader("Attributes")
    st.button("🎲 Randomize", key="randomize", on_click=on_randomize)

    for cat in categories:
        if not cat["items"]:
            continue
        key = f"cat_{cat['id']}"
        if st.session_state.get(key) not in cat["items"]:
            current = st.session_state["selections"].get(cat["id"])
            st.session_state[key] = current if current in cat["items"] else cat["items"][0]
        st.selectbox(cat["label"], cat["items"], key=key, on_change=on_pick, args=(cat["id"],))

    prompt = st.text_area("Prompt", height=140, key="prompt_text")

    col_gen, col_cancel = st.columns(2)
    generate_clicked = col_gen.button("🚀 Generate", use_container_width=True)
    cancel_clicked = col_cancel.button("⛔ Cancel", use_container_width=True)

with right:
    st.subheader("Result")

    if cancel_clicked and st.session_state["active_job"]:
        call_cancel(st.session_state["active_job"])
        st.info("Cancellation requested.")

    if generate_clicked:
        if not prompt.strip():
            st.error("Prompt must not be empty")
        else:
            try:
                job_id = call_generate(
                    user_id, prompt, resolution, None if random_seed else int(seed_value), enhance
                )
                st.session_state["active_job"] = job_id
                bar = st.progress(0)
                with st.spinner("🧶 Rendering your sweater..."):
                    result = wait_for_result(job_id, bar)
                st.session_state["active_job"] = None

                if not result:
                    st.error("⏱️ Timed out, please retry later.")
                elif result["status"] == "cancelled":
                    st.warning("Generation cancelled.")
                elif result["status"] == "error":
                    st.error(f"❌ {result.get('error_message') or 'Generation failed'}")
                else:
                    st.session_state["last_result"] = result
            except requests.RequestException as e:
                st.error(f"❌ Backend error: {e}")

    last = st.session_state["last_result"]
    if last and last.get("image_url"):
        st.image(last["image_url"], caption=f"seed {last.get('seed')}", use_container_width=True)
        st.markdown(f"🔗 [Open original]({last['image_url']})")
